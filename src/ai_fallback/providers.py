from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class ProviderId(str, Enum):
    GROQ = "groq"
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    GOOGLE = "google"
    ANTHROPIC = "anthropic"


class WireFormat(str, Enum):
    OPENAI_COMPATIBLE = "openai-compatible"
    ANTHROPIC = "anthropic"


@dataclass(frozen=True)
class ProviderSpec:
    endpoint: str
    default_model: str
    wire_format: WireFormat


# Priority order for operator keys. Must list every ProviderId exactly once.
DEFAULT_PROVIDER_ORDER: tuple[ProviderId, ...] = (
    ProviderId.GROQ,
    ProviderId.OPENAI,
    ProviderId.OPENROUTER,
    ProviderId.GOOGLE,
    ProviderId.ANTHROPIC,
)

PROVIDER_SPECS: Mapping[ProviderId, ProviderSpec] = MappingProxyType(
    {
        ProviderId.GROQ: ProviderSpec(
            endpoint="https://api.groq.com/openai/v1/chat/completions",
            default_model="llama-3.3-70b-versatile",
            wire_format=WireFormat.OPENAI_COMPATIBLE,
        ),
        ProviderId.OPENAI: ProviderSpec(
            endpoint="https://api.openai.com/v1/chat/completions",
            default_model="gpt-4o-mini",
            wire_format=WireFormat.OPENAI_COMPATIBLE,
        ),
        ProviderId.OPENROUTER: ProviderSpec(
            endpoint="https://openrouter.ai/api/v1/chat/completions",
            default_model="google/gemini-2.5-flash",
            wire_format=WireFormat.OPENAI_COMPATIBLE,
        ),
        ProviderId.GOOGLE: ProviderSpec(
            endpoint="https://generativelanguage.googleapis.com/v1beta/openai/chat/completions",
            default_model="gemini-2.5-flash",
            wire_format=WireFormat.OPENAI_COMPATIBLE,
        ),
        ProviderId.ANTHROPIC: ProviderSpec(
            endpoint="https://api.anthropic.com/v1/messages",
            default_model="claude-sonnet-4-20250514",
            wire_format=WireFormat.ANTHROPIC,
        ),
    }
)


def parse_provider_id(value: str) -> ProviderId | None:
    try:
        return ProviderId(value.strip().lower())
    except ValueError:
        return None
