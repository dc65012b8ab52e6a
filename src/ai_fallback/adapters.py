from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Protocol

import httpx
import structlog

from .errors import CompletionCancelledError, ProviderError, UpstreamProtocolError, error_for_status

log = structlog.get_logger()

ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_MAX_TOKENS = 4096


class WireAdapter(Protocol):
    async def send(
        self,
        endpoint: str,
        api_key: str,
        model: str,
        messages: list[dict[str, Any]],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> str: ...


class _HttpAdapter:
    """
    One POST per call, no retries.

    Non-2xx responses become classified errors; the caller decides whether to
    swallow them (operator keys) or surface them (gateway).
    """

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def _post(
        self,
        url: str,
        *,
        headers: dict[str, str],
        payload: dict[str, Any],
        cancel_event: asyncio.Event | None,
    ) -> dict[str, Any]:
        if cancel_event is not None and cancel_event.is_set():
            raise CompletionCancelledError()

        try:
            if cancel_event is None:
                resp = await self._client.post(url, headers=headers, json=payload)
            else:
                resp = await self._post_cancellable(url, headers=headers, payload=payload, cancel_event=cancel_event)
        except httpx.TimeoutException as e:
            raise ProviderError("Upstream request timed out.") from e
        except httpx.HTTPError as e:
            raise ProviderError("Upstream request failed.") from e

        if not resp.is_success:
            raise error_for_status(resp.status_code, resp.text, retry_after=resp.headers.get("retry-after"))

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamProtocolError(
                "Upstream returned a non-JSON body.", status_code=resp.status_code, body=resp.text[:500]
            ) from e
        if not isinstance(data, dict):
            raise UpstreamProtocolError("Upstream returned a non-object JSON body.", status_code=resp.status_code)
        return data

    async def _post_cancellable(
        self,
        url: str,
        *,
        headers: dict[str, str],
        payload: dict[str, Any],
        cancel_event: asyncio.Event,
    ) -> httpx.Response:
        send = asyncio.ensure_future(self._client.post(url, headers=headers, json=payload))
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({send, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            if not send.done():
                send.cancel()

        if send in done:
            return send.result()

        # Let the aborted request unwind before reporting.
        with contextlib.suppress(asyncio.CancelledError):
            await send
        log.info("upstream_request_cancelled", url=url)
        raise CompletionCancelledError()


class OpenAICompatibleAdapter(_HttpAdapter):
    async def send(
        self,
        endpoint: str,
        api_key: str,
        model: str,
        messages: list[dict[str, Any]],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        data = await self._post(
            endpoint,
            headers=headers,
            payload={"model": model, "messages": messages},
            cancel_event=cancel_event,
        )

        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return ""
        message = choices[0].get("message")
        if not isinstance(message, dict):
            return ""
        content = message.get("content")
        return content if isinstance(content, str) else ""


def split_system_message(messages: list[dict[str, Any]]) -> tuple[Any | None, list[dict[str, Any]]]:
    """Return the first system message's content and the non-system messages.

    Later system messages are dropped.
    """
    system: Any | None = None
    rest: list[dict[str, Any]] = []
    for msg in messages:
        if msg.get("role") == "system":
            if system is None:
                system = msg.get("content")
            continue
        rest.append(msg)
    return system, rest


class AnthropicAdapter(_HttpAdapter):
    async def send(
        self,
        endpoint: str,
        api_key: str,
        model: str,
        messages: list[dict[str, Any]],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        system, chat_messages = split_system_message(messages)

        payload: dict[str, Any] = {
            "model": model,
            "max_tokens": ANTHROPIC_MAX_TOKENS,
            "messages": chat_messages,
        }
        if system:
            payload["system"] = system

        # x-api-key, not a bearer token.
        headers = {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }
        data = await self._post(endpoint, headers=headers, payload=payload, cancel_event=cancel_event)

        blocks = data.get("content")
        if not isinstance(blocks, list) or not blocks or not isinstance(blocks[0], dict):
            return ""
        text = blocks[0].get("text")
        return text if isinstance(text, str) else ""
