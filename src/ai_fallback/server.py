from __future__ import annotations

import asyncio
import os
import time
from contextlib import asynccontextmanager

from .config import OrchestratorConfig
from .credential_store import build_credential_store
from .errors import (
    CompletionCancelledError,
    ConfigurationError,
    InsufficientCreditsError,
    InvalidRequestError,
    NoProviderAvailableError,
    ProviderError,
    RateLimitError,
)
from .http_security import install_middlewares
from .logging import configure_logging
from .metrics import maybe_start_metrics, server_errors_total, server_request_latency_seconds, server_requests_total
from .openai_compat import ChatCompletionRequest, ChatCompletionResponse, make_chat_completion_response, make_openai_error_response
from .orchestrator import AiCompletionOrchestrator
from .router_contracts import CompletionRequest


def create_app(cfg: OrchestratorConfig | None = None, orchestrator: AiCompletionOrchestrator | None = None):
    try:
        from fastapi import FastAPI
        from fastapi.responses import JSONResponse
    except ImportError as e:  # pragma: no cover
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    cfg = cfg or OrchestratorConfig()
    configure_logging(level=cfg.log_level, fmt=cfg.log_format, secrets=cfg.secrets())
    orchestrator = orchestrator or AiCompletionOrchestrator(cfg, store=build_credential_store(cfg))

    def _request_id(request) -> str | None:
        return getattr(getattr(request, "state", None), "request_id", None)

    def _observe(path: str, status_code: int, started_at: float) -> None:
        server_requests_total.labels(path=path, status=str(status_code)).inc()
        server_request_latency_seconds.labels(path=path).observe(max(0.0, time.monotonic() - started_at))

    def _error(request, *, status_code: int, message: str, type: str, headers: dict[str, str] | None = None):
        server_errors_total.labels(type=type).inc()
        return JSONResponse(
            status_code=status_code,
            content=make_openai_error_response(message=message, type=type, code=_request_id(request)).model_dump(),
            headers=headers,
        )

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        try:
            yield
        finally:
            await orchestrator.close()

    app = FastAPI(title="ai-fallback", version="0.1.0", lifespan=lifespan)
    install_middlewares(app, cfg=cfg)

    @app.exception_handler(RateLimitError)
    async def _rate_limit_error_handler(request, exc: RateLimitError):
        headers = {}
        if exc.retry_after_seconds is not None:
            headers["Retry-After"] = str(exc.retry_after_seconds)
        return _error(request, status_code=429, message=str(exc), type="rate_limit_error", headers=headers)

    @app.exception_handler(InsufficientCreditsError)
    async def _credits_error_handler(request, exc: InsufficientCreditsError):
        return _error(request, status_code=402, message=str(exc), type="insufficient_credits")

    @app.exception_handler(InvalidRequestError)
    async def _invalid_request_handler(request, exc: InvalidRequestError):
        return _error(request, status_code=400, message=str(exc), type="invalid_request_error")

    @app.exception_handler(ConfigurationError)
    async def _config_error_handler(request, exc: ConfigurationError):
        return _error(request, status_code=500, message=str(exc), type="configuration_error")

    @app.exception_handler(NoProviderAvailableError)
    async def _no_provider_handler(request, exc: NoProviderAvailableError):
        return _error(request, status_code=503, message=str(exc), type="upstream_error")

    @app.exception_handler(CompletionCancelledError)
    async def _cancelled_handler(request, exc: CompletionCancelledError):
        return _error(request, status_code=504, message="Request timed out.", type="upstream_error")

    @app.exception_handler(ProviderError)
    async def _provider_error_handler(request, exc: ProviderError):
        return _error(request, status_code=502, message=str(exc), type="upstream_error")

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/v1/chat/completions", response_model=ChatCompletionResponse)
    async def chat_completions(req: ChatCompletionRequest):
        started_at = time.monotonic()
        if len(req.messages) > cfg.max_messages:
            raise InvalidRequestError("Too many messages.")
        if sum(m.text_length() for m in req.messages) > cfg.max_total_message_chars:
            raise InvalidRequestError("Message content too large.")

        # The deadline is enforced by firing the request's cancel event.
        cancel_event = asyncio.Event()
        deadline = None
        if cfg.chat_completions_timeout_seconds > 0:
            deadline = asyncio.get_running_loop().call_later(cfg.chat_completions_timeout_seconds, cancel_event.set)
        try:
            result = await orchestrator.run(
                CompletionRequest(messages=tuple(req.messages), model=req.model, cancel_event=cancel_event)
            )
        finally:
            if deadline is not None:
                deadline.cancel()

        _observe("/v1/chat/completions", 200, started_at)
        return make_chat_completion_response(
            model=result.actual_model,
            provider=result.provider_name,
            content=result.content,
        )

    return app


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    main()
