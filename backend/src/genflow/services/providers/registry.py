"""Provider selection by resource kind."""

from enum import Enum
from typing import Any, Iterator

import structlog

from genflow.core.config import Settings
from genflow.models.generation import ResourceKind
from genflow.services.exceptions import UnknownProviderError, ValidationError
from genflow.services.providers.base import (
    CallbackOutcome,
    GenerationProvider,
    default_interpret_callback,
)
from genflow.services.providers.fal import FalProvider
from genflow.services.providers.replicate import ReplicateProvider

logger = structlog.get_logger()


class ProviderName(str, Enum):
    """Known provider backends."""

    FAL = "fal"
    REPLICATE = "replicate"


# Replicate tunings go through the trainings API, which needs a destination model
REPLICATE_KINDS = frozenset({ResourceKind.IMAGE, ResourceKind.VIDEO, ResourceKind.AUDIO})


class ProviderRegistry:
    """Active provider adapter for each resource kind.

    Built once at startup; read-only afterwards.
    """

    def __init__(self, providers: dict[ResourceKind, GenerationProvider]):
        self._providers = dict(providers)

    def __iter__(self) -> Iterator[GenerationProvider]:
        return iter(self._providers.values())

    def for_kind(self, resource_kind: str) -> GenerationProvider:
        """Return the active adapter for a resource kind.

        Raises:
            ValidationError: Unknown resource kind, or kind with no active provider
        """
        try:
            kind = ResourceKind(resource_kind)
        except ValueError as e:
            raise ValidationError(f"Unknown resource kind: {resource_kind!r}") from e

        provider = self._providers.get(kind)
        if provider is None:
            raise ValidationError(f"No provider configured for {kind.value}")
        return provider

    def interpret_callback(
        self, resource_kind: ResourceKind, provider_name: str, body: dict[str, Any]
    ) -> CallbackOutcome:
        """Interpret a callback with the adapter that accepted the job.

        Falls back to generic failure detection when the recorded provider is no
        longer the active one for the kind.
        """
        provider = self._providers.get(resource_kind)
        if provider is not None and provider.name == provider_name:
            return provider.interpret_callback(body)
        return default_interpret_callback(body)


def _build_provider(
    settings: Settings, kind: ResourceKind, provider_name: str
) -> GenerationProvider:
    try:
        name = ProviderName(provider_name.lower())
    except ValueError as e:
        raise UnknownProviderError(
            f"Unknown provider {provider_name!r} for {kind.value}; "
            f"expected one of {[p.value for p in ProviderName]}"
        ) from e

    if name is ProviderName.FAL:
        return FalProvider(
            resource_kind=kind,
            model_id=getattr(settings, f"fal_{kind.value}_model_id"),
            api_key=settings.fal_api_key,
            queue_url=settings.fal_queue_url,
            timeout=settings.fal_request_timeout_seconds,
        )

    if kind not in REPLICATE_KINDS:
        raise UnknownProviderError(f"Replicate adapter does not support {kind.value}")
    return ReplicateProvider(
        resource_kind=kind,
        model_id=getattr(settings, f"replicate_{kind.value}_model"),
        api_token=settings.replicate_api_token,
    )


def build_provider_registry(settings: Settings) -> ProviderRegistry:
    """Instantiate the configured adapter for every resource kind.

    Raises:
        UnknownProviderError: A configured provider has no adapter
    """
    providers = {}
    for kind_value, provider_name in settings.active_providers().items():
        kind = ResourceKind(kind_value)
        providers[kind] = _build_provider(settings, kind, provider_name)

    logger.info(
        "providers.loaded",
        providers={kind.value: p.name for kind, p in providers.items()},
    )
    return ProviderRegistry(providers)
