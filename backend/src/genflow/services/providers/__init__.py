from genflow.services.providers.base import (
    CallbackOutcome,
    GenerationProvider,
    ProviderStatus,
    ProviderSubmission,
)
from genflow.services.providers.registry import (
    ProviderName,
    ProviderRegistry,
    build_provider_registry,
)

__all__ = [
    "CallbackOutcome",
    "GenerationProvider",
    "ProviderName",
    "ProviderRegistry",
    "ProviderStatus",
    "ProviderSubmission",
    "build_provider_registry",
]
