from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .providers import DEFAULT_PROVIDER_ORDER, PROVIDER_SPECS, ProviderId, ProviderSpec

DEFAULT_GATEWAY_URL = "https://ai.gateway.lovable.dev/v1/chat/completions"
DEFAULT_GATEWAY_MODEL = "google/gemini-2.5-flash"


def _optional_float(value: str | None) -> float | None:
    if not value:
        return None
    return float(value)


class OrchestratorConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Platform gateway (last resort)
    gateway_url: str = Field(default_factory=lambda: os.getenv("AI_GATEWAY_URL", DEFAULT_GATEWAY_URL))
    gateway_api_key: str | None = Field(default_factory=lambda: os.getenv("AI_GATEWAY_API_KEY"))
    gateway_default_model: str = Field(
        default_factory=lambda: os.getenv("AI_GATEWAY_DEFAULT_MODEL", DEFAULT_GATEWAY_MODEL)
    )

    # Operator providers; code-only, never read from the environment
    provider_order: tuple[ProviderId, ...] = DEFAULT_PROVIDER_ORDER
    provider_specs: dict[ProviderId, ProviderSpec] = Field(default_factory=lambda: dict(PROVIDER_SPECS))

    # Credential storage
    supabase_url: str | None = Field(default_factory=lambda: os.getenv("SUPABASE_URL"))
    supabase_service_role_key: str | None = Field(default_factory=lambda: os.getenv("SUPABASE_SERVICE_ROLE_KEY"))
    credentials_table: str = Field(default_factory=lambda: os.getenv("AI_CREDENTIALS_TABLE", "ai_api_keys"))
    credentials_path: str = Field(default_factory=lambda: os.getenv("CREDENTIALS_PATH", "credentials.enc"))
    fernet_key: str | None = Field(default_factory=lambda: os.getenv("CREDENTIALS_FERNET_KEY"))

    # Unset means no client-side timeout; callers cancel instead.
    upstream_timeout_seconds: float | None = Field(
        default_factory=lambda: _optional_float(os.getenv("UPSTREAM_TIMEOUT_SECONDS"))
    )

    # Observability
    enable_metrics: bool = Field(
        default_factory=lambda: os.getenv("ENABLE_METRICS", "false").lower() == "true"
    )
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))

    # Server hardening
    server_auth_token: str | None = Field(default_factory=lambda: os.getenv("SERVER_AUTH_TOKEN"))
    max_request_body_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MAX_REQUEST_BODY_BYTES", str(8 * 1024 * 1024)))
    )
    max_messages: int = Field(default_factory=lambda: int(os.getenv("MAX_MESSAGES", "64")))
    max_total_message_chars: int = Field(
        default_factory=lambda: int(os.getenv("MAX_TOTAL_MESSAGE_CHARS", "200000"))
    )
    chat_completions_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("CHAT_COMPLETIONS_TIMEOUT_SECONDS", "120"))
    )

    @model_validator(mode="after")
    def _validate_providers(self) -> "OrchestratorConfig":
        if set(self.provider_order) != set(ProviderId) or len(self.provider_order) != len(ProviderId):
            raise ValueError("provider_order must list every provider exactly once.")
        missing = [p.value for p in ProviderId if p not in self.provider_specs]
        if missing:
            raise ValueError(f"provider_specs is missing: {', '.join(missing)}")
        return self

    def secrets(self) -> list[str]:
        return [
            s
            for s in (self.gateway_api_key, self.supabase_service_role_key, self.fernet_key, self.server_auth_token)
            if s
        ]
