from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .openai_compat import ChatMessage


@dataclass(frozen=True)
class CompletionRequest:
    messages: tuple[ChatMessage, ...]
    model: str | None = None
    cancel_event: asyncio.Event | None = field(default=None, compare=False)

    @classmethod
    def from_messages(
        cls,
        messages: Iterable[ChatMessage | Mapping[str, Any]],
        *,
        model: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> "CompletionRequest":
        parsed = tuple(m if isinstance(m, ChatMessage) else ChatMessage.model_validate(m) for m in messages)
        return cls(messages=parsed, model=model, cancel_event=cancel_event)

    def wire_messages(self) -> list[dict[str, Any]]:
        return [m.to_wire() for m in self.messages]


@dataclass(frozen=True)
class CompletionResult:
    provider_name: str
    actual_model: str
    content: str
    latency_seconds: float
    used_fallback: bool = False
    failed_providers: tuple[str, ...] = ()
