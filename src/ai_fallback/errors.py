from __future__ import annotations


class ProviderError(Exception):
    """Base error for provider failures.

    Also raised directly for an upstream non-success that has no more specific
    class, and for a gateway success that carried no content.
    """

    def __init__(
        self,
        message: str = "Provider error",
        *,
        status_code: int | None = None,
        body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ConfigurationError(ProviderError):
    """No gateway key and no operator credentials: nothing can be called."""


class InvalidRequestError(ProviderError):
    pass


class RateLimitError(ProviderError):
    def __init__(
        self,
        retry_after_seconds: int | None = None,
        message: str = "Rate limited",
        *,
        body: str | None = None,
    ):
        super().__init__(message, status_code=429, body=body)
        self.retry_after_seconds = retry_after_seconds


class InsufficientCreditsError(ProviderError):
    def __init__(self, message: str = "Insufficient credits", *, body: str | None = None):
        super().__init__(message, status_code=402, body=body)


class UpstreamProtocolError(ProviderError):
    """Unexpected upstream response shape / contract mismatch."""


class NoProviderAvailableError(ProviderError):
    def __init__(
        self,
        failures: list[tuple[str, str]] | None = None,
        message: str = "Every configured provider failed and no gateway key is configured",
    ):
        super().__init__(message)
        self.failures = list(failures or [])


class CompletionCancelledError(ProviderError):
    """The caller's cancel event fired while a completion was in progress."""

    def __init__(self, message: str = "Completion cancelled"):
        super().__init__(message)


def _parse_retry_after(value: str | None) -> int | None:
    if value and value.isdigit():
        return int(value)
    return None


def error_for_status(status_code: int, body: str, *, retry_after: str | None = None) -> ProviderError:
    if status_code == 429:
        return RateLimitError(retry_after_seconds=_parse_retry_after(retry_after), body=body)
    if status_code == 402:
        return InsufficientCreditsError(body=body)
    return ProviderError(f"Upstream error {status_code}: {body[:500]}", status_code=status_code, body=body)
