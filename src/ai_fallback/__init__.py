from .config import OrchestratorConfig
from .credential_store import EncryptedCredentialStore, StoredCredential, SupabaseCredentialStore
from .errors import (
    CompletionCancelledError,
    ConfigurationError,
    InsufficientCreditsError,
    NoProviderAvailableError,
    ProviderError,
    RateLimitError,
)
from .orchestrator import AiCompletionOrchestrator
from .providers import ProviderId, WireFormat
from .router_contracts import CompletionRequest, CompletionResult

__all__ = [
    "AiCompletionOrchestrator",
    "CompletionCancelledError",
    "CompletionRequest",
    "CompletionResult",
    "ConfigurationError",
    "EncryptedCredentialStore",
    "InsufficientCreditsError",
    "NoProviderAvailableError",
    "OrchestratorConfig",
    "ProviderError",
    "ProviderId",
    "RateLimitError",
    "StoredCredential",
    "SupabaseCredentialStore",
    "WireFormat",
]
