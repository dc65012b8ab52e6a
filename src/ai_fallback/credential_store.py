from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import httpx
import structlog

from .config import OrchestratorConfig
from .crypto import decrypt_bytes, encrypt_bytes
from .providers import ProviderId, parse_provider_id

log = structlog.get_logger()


@dataclass(frozen=True)
class StoredCredential:
    provider: str
    api_key: str


class CredentialStore(Protocol):
    async def fetch_all(self) -> list[StoredCredential]: ...


class SupabaseCredentialStore:
    """
    Reads operator keys from the hosted datastore's REST endpoint.

    Uses the service role key, so rows are visible regardless of row-level
    policies. Read-only.
    """

    def __init__(
        self,
        url: str,
        service_role_key: str,
        *,
        table: str = "ai_api_keys",
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ):
        self.url = url.rstrip("/")
        self.service_role_key = service_role_key
        self.table = table
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_all(self) -> list[StoredCredential]:
        resp = await self._client.get(
            f"{self.url}/rest/v1/{self.table}",
            params={"select": "provider,api_key"},
            headers={
                "apikey": self.service_role_key,
                "Authorization": f"Bearer {self.service_role_key}",
                "Accept": "application/json",
            },
        )
        resp.raise_for_status()
        rows = resp.json()
        if not isinstance(rows, list):
            raise ValueError("Credential rows must be a JSON array.")
        return [
            StoredCredential(provider=str(row.get("provider", "")), api_key=str(row.get("api_key") or ""))
            for row in rows
            if isinstance(row, dict)
        ]


class EncryptedCredentialStore:
    """
    Simple encrypted-at-rest credential store.

    Stores ONE blob at `path`:
      - encrypted JSON object {provider: api_key} (Fernet)

    The file is re-read on every fetch so edits apply to the next request.
    """

    def __init__(self, path: str, fernet_key: str):
        self.path = Path(path)
        self.fernet_key = fernet_key

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> dict[str, str]:
        if not self.exists():
            return {}
        raw = decrypt_bytes(self.fernet_key, self.path.read_bytes())
        payload: Any = json.loads(raw.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("Credential payload must be a JSON object.")
        return {str(k): str(v) for k, v in payload.items()}

    def save(self, keys: dict[str, str]) -> None:
        raw = json.dumps(keys).encode("utf-8")
        self.path.write_bytes(encrypt_bytes(self.fernet_key, raw))

    def set_key(self, provider: ProviderId, api_key: str) -> None:
        api_key = api_key.strip()
        if not api_key:
            raise ValueError("api_key must be non-empty.")
        keys = self.load()
        keys[provider.value] = api_key
        self.save(keys)

    def delete_key(self, provider: ProviderId) -> bool:
        keys = self.load()
        if keys.pop(provider.value, None) is None:
            return False
        self.save(keys)
        return True

    async def fetch_all(self) -> list[StoredCredential]:
        return [StoredCredential(provider=p, api_key=k) for p, k in self.load().items()]


def build_credential_store(cfg: OrchestratorConfig) -> CredentialStore | None:
    if cfg.supabase_url and cfg.supabase_service_role_key:
        return SupabaseCredentialStore(cfg.supabase_url, cfg.supabase_service_role_key, table=cfg.credentials_table)
    if cfg.fernet_key:
        return EncryptedCredentialStore(cfg.credentials_path, cfg.fernet_key)
    return None


async def resolve_credentials(store: CredentialStore | None) -> dict[ProviderId, str]:
    """Snapshot the operator's keys. Never raises for an unavailable store."""
    if store is None:
        return {}
    try:
        rows = await store.fetch_all()
    except Exception as e:
        log.warning("credential_store_unavailable", store=type(store).__name__, error=str(e))
        return {}

    resolved: dict[ProviderId, str] = {}
    for row in rows:
        provider = parse_provider_id(row.provider)
        if provider is None:
            log.debug("credential_unknown_provider", provider=row.provider)
            continue
        if not row.api_key:
            continue
        resolved[provider] = row.api_key
    return resolved
