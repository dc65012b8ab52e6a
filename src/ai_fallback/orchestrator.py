from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable, Mapping
from typing import Any, assert_never

import httpx
import structlog

from .adapters import AnthropicAdapter, OpenAICompatibleAdapter, WireAdapter
from .config import OrchestratorConfig
from .credential_store import CredentialStore, resolve_credentials
from .errors import (
    CompletionCancelledError,
    ConfigurationError,
    InsufficientCreditsError,
    NoProviderAvailableError,
    ProviderError,
    RateLimitError,
)
from .metrics import gateway_requests_total, provider_attempts_total, provider_latency_seconds
from .openai_compat import ChatMessage
from .providers import ProviderId, WireFormat
from .router_contracts import CompletionRequest, CompletionResult

log = structlog.get_logger()

GATEWAY_PROVIDER_NAME = "gateway"


def _raise_if_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise CompletionCancelledError()


class AiCompletionOrchestrator:
    """
    Tries the operator's own provider keys in a fixed priority order, then
    the platform gateway.

    Operator-key failures are logged and skipped. Gateway failures reach the
    caller as classified `ProviderError` subclasses. Credentials are resolved
    on every call.
    """

    name = "AiCompletionOrchestrator"

    def __init__(
        self,
        cfg: OrchestratorConfig,
        *,
        store: CredentialStore | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.cfg = cfg
        self.store = store
        self._client = client or httpx.AsyncClient(timeout=cfg.upstream_timeout_seconds)
        self._openai = OpenAICompatibleAdapter(self._client)
        self._anthropic = AnthropicAdapter(self._client)

    async def close(self) -> None:
        await self._client.aclose()
        close_store = getattr(self.store, "close", None)
        if callable(close_store):
            await close_store()

    def _adapter_for(self, wire_format: WireFormat) -> WireAdapter:
        match wire_format:
            case WireFormat.OPENAI_COMPATIBLE:
                return self._openai
            case WireFormat.ANTHROPIC:
                return self._anthropic
            case _:
                assert_never(wire_format)

    async def create_async(
        self,
        messages: Iterable[ChatMessage | Mapping[str, Any]],
        *,
        model: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        request = CompletionRequest.from_messages(messages, model=model, cancel_event=cancel_event)
        return await self.complete(request)

    async def complete(self, request: CompletionRequest) -> str:
        res = await self.run(request)
        return res.content

    async def run(self, request: CompletionRequest) -> CompletionResult:
        start = time.monotonic()
        credentials = await resolve_credentials(self.store)
        candidates = [p for p in self.cfg.provider_order if p in credentials]

        if not candidates and not self.cfg.gateway_api_key:
            raise ConfigurationError("AI_GATEWAY_API_KEY is not configured and no provider keys are available.")

        messages = request.wire_messages()
        failures: list[tuple[str, str]] = []

        for provider in candidates:
            _raise_if_cancelled(request.cancel_event)
            text = await self._attempt(provider, credentials[provider], messages, request.cancel_event, failures)
            if text:
                return CompletionResult(
                    provider_name=provider.value,
                    actual_model=self.cfg.provider_specs[provider].default_model,
                    content=text,
                    latency_seconds=time.monotonic() - start,
                    failed_providers=tuple(name for name, _ in failures),
                )

        content, model = await self._complete_via_gateway(request, messages, failures)
        return CompletionResult(
            provider_name=GATEWAY_PROVIDER_NAME,
            actual_model=model,
            content=content,
            latency_seconds=time.monotonic() - start,
            used_fallback=True,
            failed_providers=tuple(name for name, _ in failures),
        )

    async def _attempt(
        self,
        provider: ProviderId,
        api_key: str,
        messages: list[dict[str, Any]],
        cancel_event: asyncio.Event | None,
        failures: list[tuple[str, str]],
    ) -> str:
        spec = self.cfg.provider_specs[provider]
        log.info("provider_attempt", provider=provider.value, model=spec.default_model)
        try:
            with provider_latency_seconds.labels(provider=provider.value).time():
                text = await self._adapter_for(spec.wire_format).send(
                    spec.endpoint,
                    api_key,
                    spec.default_model,
                    messages,
                    cancel_event=cancel_event,
                )
        except CompletionCancelledError:
            provider_attempts_total.labels(provider=provider.value, outcome="cancelled").inc()
            raise
        except Exception as e:
            provider_attempts_total.labels(provider=provider.value, outcome="error").inc()
            log.warning("provider_failed", provider=provider.value, error=str(e))
            failures.append((provider.value, str(e)))
            return ""

        if not text:
            provider_attempts_total.labels(provider=provider.value, outcome="empty").inc()
            log.warning("provider_empty_response", provider=provider.value)
            failures.append((provider.value, "empty response"))
            return ""

        provider_attempts_total.labels(provider=provider.value, outcome="success").inc()
        log.info("provider_succeeded", provider=provider.value)
        return text

    async def _complete_via_gateway(
        self,
        request: CompletionRequest,
        messages: list[dict[str, Any]],
        failures: list[tuple[str, str]],
    ) -> tuple[str, str]:
        if not self.cfg.gateway_api_key:
            raise NoProviderAvailableError(failures)
        _raise_if_cancelled(request.cancel_event)

        model = request.model or self.cfg.gateway_default_model
        log.info("gateway_fallback", model=model, failed_providers=[name for name, _ in failures])
        try:
            text = await self._openai.send(
                self.cfg.gateway_url,
                self.cfg.gateway_api_key,
                model,
                messages,
                cancel_event=request.cancel_event,
            )
        except CompletionCancelledError:
            gateway_requests_total.labels(outcome="cancelled").inc()
            raise
        except RateLimitError:
            gateway_requests_total.labels(outcome="rate_limited").inc()
            log.warning("gateway_rate_limited", model=model)
            raise
        except InsufficientCreditsError:
            gateway_requests_total.labels(outcome="insufficient_credits").inc()
            log.warning("gateway_insufficient_credits", model=model)
            raise
        except ProviderError as e:
            gateway_requests_total.labels(outcome="error").inc()
            log.error("gateway_error", model=model, status_code=e.status_code, body=(e.body or "")[:500])
            raise

        if not text:
            gateway_requests_total.labels(outcome="empty").inc()
            raise ProviderError("no content", status_code=200)

        gateway_requests_total.labels(outcome="success").inc()
        return text, model
