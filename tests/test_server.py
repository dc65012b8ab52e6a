import asyncio

import httpx
import pytest

from ai_fallback.config import OrchestratorConfig
from ai_fallback.errors import (
    CompletionCancelledError,
    ConfigurationError,
    InsufficientCreditsError,
    NoProviderAvailableError,
    ProviderError,
    RateLimitError,
)
from ai_fallback.router_contracts import CompletionResult

BODY = {"model": "m", "messages": [{"role": "user", "content": "hi"}]}


def _cfg(**overrides):
    base = {"enable_metrics": False, "server_auth_token": None, "gateway_api_key": "gw"}
    base.update(overrides)
    return OrchestratorConfig(**base)


class FakeOrchestrator:
    def __init__(self, outcome=None):
        self.outcome = outcome
        self.requests = []

    async def run(self, request):
        self.requests.append(request)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return CompletionResult(
            provider_name="groq",
            actual_model="llama-3.3-70b-versatile",
            content="ok",
            latency_seconds=0.01,
        )

    async def close(self):
        return None


async def _post(app, body=BODY, headers=None):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.post("/v1/chat/completions", json=body, headers=headers or {})


@pytest.mark.asyncio
async def test_server_returns_completion_and_forwards_model_override():
    pytest.importorskip("fastapi")
    from ai_fallback.server import create_app

    orch = FakeOrchestrator()
    resp = await _post(create_app(cfg=_cfg(), orchestrator=orch))

    assert resp.status_code == 200
    data = resp.json()
    assert data["choices"][0]["message"]["content"] == "ok"
    assert data["provider"] == "groq"
    assert orch.requests[0].model == "m"
    assert orch.requests[0].cancel_event is not None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "exc, status, error_type",
    [
        (RateLimitError(retry_after_seconds=7), 429, "rate_limit_error"),
        (InsufficientCreditsError(), 402, "insufficient_credits"),
        (ConfigurationError("no key"), 500, "configuration_error"),
        (NoProviderAvailableError([("groq", "500")]), 503, "upstream_error"),
        (CompletionCancelledError(), 504, "upstream_error"),
        (ProviderError("Upstream error 500: boom", status_code=500, body="boom"), 502, "upstream_error"),
    ],
)
async def test_server_maps_classified_errors(exc, status, error_type):
    pytest.importorskip("fastapi")
    from ai_fallback.server import create_app

    app = create_app(cfg=_cfg(), orchestrator=FakeOrchestrator(exc))
    resp = await _post(app, headers={"X-Request-Id": "req_12345678"})

    assert resp.status_code == status
    assert resp.json()["error"]["type"] == error_type
    assert resp.json()["error"]["code"] == "req_12345678"
    if status == 429:
        assert resp.headers.get("Retry-After") == "7"


@pytest.mark.asyncio
async def test_server_deadline_fires_cancel_event():
    pytest.importorskip("fastapi")
    from ai_fallback.server import create_app

    class SlowOrchestrator(FakeOrchestrator):
        async def run(self, request):
            await asyncio.wait_for(request.cancel_event.wait(), timeout=5)
            raise CompletionCancelledError()

    app = create_app(cfg=_cfg(chat_completions_timeout_seconds=0.01), orchestrator=SlowOrchestrator())
    resp = await _post(app)
    assert resp.status_code == 504


@pytest.mark.asyncio
async def test_server_rejects_too_many_messages_as_400():
    pytest.importorskip("fastapi")
    from ai_fallback.server import create_app

    orch = FakeOrchestrator()
    app = create_app(cfg=_cfg(max_messages=1), orchestrator=orch)
    body = {"messages": [{"role": "user", "content": "a"}, {"role": "user", "content": "b"}]}
    resp = await _post(app, body=body)

    assert resp.status_code == 400
    assert resp.json()["error"]["type"] == "invalid_request_error"
    assert orch.requests == []


@pytest.mark.asyncio
async def test_server_requires_bearer_token_when_configured():
    pytest.importorskip("fastapi")
    from ai_fallback.server import create_app

    app = create_app(cfg=_cfg(server_auth_token="sekret"), orchestrator=FakeOrchestrator())
    resp = await _post(app)
    assert resp.status_code == 401
    assert resp.headers.get("WWW-Authenticate", "").lower().startswith("bearer")

    resp_ok = await _post(app, headers={"Authorization": "Bearer sekret"})
    assert resp_ok.status_code == 200


@pytest.mark.asyncio
async def test_server_enforces_max_body_size_413():
    pytest.importorskip("fastapi")
    from ai_fallback.server import create_app

    app = create_app(cfg=_cfg(max_request_body_bytes=60), orchestrator=FakeOrchestrator())
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        payload = b'{"messages":[{"role":"user","content":"' + (b"x" * 200) + b'"}]}'
        resp = await client.post(
            "/v1/chat/completions",
            content=payload,
            headers={"Content-Type": "application/json"},
        )
    assert resp.status_code == 413
    assert resp.json()["error"]["type"] == "invalid_request_error"


@pytest.mark.asyncio
async def test_server_sets_security_headers_and_request_id():
    pytest.importorskip("fastapi")
    from ai_fallback.server import create_app

    app = create_app(cfg=_cfg(), orchestrator=FakeOrchestrator())
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/healthz", headers={"X-Request-Id": "req_12345678"})
        assert resp.status_code == 200
        assert resp.headers.get("X-Request-Id") == "req_12345678"
        assert resp.headers.get("X-Content-Type-Options") == "nosniff"
        assert resp.headers.get("X-Frame-Options") == "DENY"

        resp2 = await client.post("/v1/chat/completions", json=BODY)
        assert resp2.headers.get("Cache-Control") == "no-store"
