import httpx
import pytest

from ai_fallback.config import OrchestratorConfig
from ai_fallback.credential_store import (
    EncryptedCredentialStore,
    StoredCredential,
    SupabaseCredentialStore,
    build_credential_store,
    resolve_credentials,
)
from ai_fallback.crypto import generate_fernet_key
from ai_fallback.providers import ProviderId


class ListStore:
    def __init__(self, rows):
        self.rows = rows

    async def fetch_all(self):
        return self.rows


@pytest.mark.asyncio
async def test_supabase_store_reads_rows_with_service_role_key():
    observed = {}

    def handler(request: httpx.Request) -> httpx.Response:
        observed["path"] = request.url.path
        observed["select"] = request.url.params.get("select")
        observed["apikey"] = request.headers.get("apikey")
        observed["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json=[{"provider": "groq", "api_key": "gsk_1"}, {"provider": "openai", "api_key": None}])

    store = SupabaseCredentialStore(
        "https://project.supabase.co/",
        "service-role",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    try:
        rows = await store.fetch_all()
    finally:
        await store.close()

    assert observed == {
        "path": "/rest/v1/ai_api_keys",
        "select": "provider,api_key",
        "apikey": "service-role",
        "auth": "Bearer service-role",
    }
    assert rows == [StoredCredential("groq", "gsk_1"), StoredCredential("openai", "")]


@pytest.mark.asyncio
async def test_supabase_store_raises_on_error_status():
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="paused")

    store = SupabaseCredentialStore(
        "https://project.supabase.co", "k", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )
    try:
        with pytest.raises(httpx.HTTPStatusError):
            await store.fetch_all()
        assert await resolve_credentials(store) == {}
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_resolve_ignores_unknown_providers_and_empty_keys():
    store = ListStore(
        [
            StoredCredential("groq", "g"),
            StoredCredential("mistral", "m"),
            StoredCredential("Anthropic", "a"),
            StoredCredential("openai", ""),
        ]
    )
    assert await resolve_credentials(store) == {ProviderId.GROQ: "g", ProviderId.ANTHROPIC: "a"}


@pytest.mark.asyncio
async def test_resolve_without_store_is_empty():
    assert await resolve_credentials(None) == {}


@pytest.mark.asyncio
async def test_encrypted_store_set_and_delete_are_visible_on_next_fetch(tmp_path):
    store = EncryptedCredentialStore(str(tmp_path / "keys.enc"), generate_fernet_key())
    assert await store.fetch_all() == []

    store.set_key(ProviderId.OPENROUTER, "  sk-or-123  ")
    assert await resolve_credentials(store) == {ProviderId.OPENROUTER: "sk-or-123"}
    assert b"sk-or-123" not in (tmp_path / "keys.enc").read_bytes()

    assert store.delete_key(ProviderId.OPENROUTER) is True
    assert store.delete_key(ProviderId.OPENROUTER) is False
    assert await resolve_credentials(store) == {}


def test_encrypted_store_rejects_blank_key(tmp_path):
    store = EncryptedCredentialStore(str(tmp_path / "keys.enc"), generate_fernet_key())
    with pytest.raises(ValueError):
        store.set_key(ProviderId.GROQ, "   ")


@pytest.mark.asyncio
async def test_encrypted_store_with_wrong_key_resolves_to_empty(tmp_path):
    path = str(tmp_path / "keys.enc")
    EncryptedCredentialStore(path, generate_fernet_key()).set_key(ProviderId.GOOGLE, "g")

    other = EncryptedCredentialStore(path, generate_fernet_key())
    with pytest.raises(ValueError):
        other.load()
    assert await resolve_credentials(other) == {}


def test_build_credential_store_prefers_hosted_store(tmp_path):
    hosted = build_credential_store(
        OrchestratorConfig(supabase_url="https://p.supabase.co", supabase_service_role_key="k", fernet_key=None)
    )
    assert isinstance(hosted, SupabaseCredentialStore)

    local = build_credential_store(
        OrchestratorConfig(
            supabase_url=None,
            supabase_service_role_key=None,
            fernet_key=generate_fernet_key(),
            credentials_path=str(tmp_path / "k.enc"),
        )
    )
    assert isinstance(local, EncryptedCredentialStore)

    assert build_credential_store(OrchestratorConfig(supabase_url=None, fernet_key=None)) is None
