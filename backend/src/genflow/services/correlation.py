"""Ownership checks for entities referenced by a submission.

Templates, characters and platforms are owned by the catalog service. A
submission may reference them in correlation_refs; every referenced entity
must belong to the submitting owner or the submission is rejected as not
found, so existence of other users' entities is not leaked.
"""

from typing import Any, Optional, Protocol

import httpx
import structlog

from genflow.services.exceptions import CollaboratorUnavailableError, NotFoundError

logger = structlog.get_logger()

# correlation_refs entries that name catalog-owned entities
OWNED_REF_FIELDS = ("template_id", "character_id", "platform_id", "tuning_session_id")


class CorrelationValidator(Protocol):
    async def validate(self, owner_ref: str, correlation_refs: dict[str, Any]) -> None:
        """Raise NotFoundError if any referenced entity is not owned by owner_ref."""
        ...


def owned_refs(correlation_refs: dict[str, Any]) -> dict[str, Any]:
    return {
        field: correlation_refs[field]
        for field in OWNED_REF_FIELDS
        if correlation_refs.get(field) is not None
    }


class TrustingCorrelationValidator:
    """Accepts every reference. Used when no catalog service is configured."""

    async def validate(self, owner_ref: str, correlation_refs: dict[str, Any]) -> None:
        return None


class HttpCorrelationValidator:
    """Verifies ownership against the catalog service over HTTP."""

    def __init__(
        self,
        catalog_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.catalog_url = catalog_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def validate(self, owner_ref: str, correlation_refs: dict[str, Any]) -> None:
        """Check ownership of every catalog entity in correlation_refs.

        Args:
            owner_ref: Submitting owner
            correlation_refs: Opaque submission references

        Raises:
            NotFoundError: At least one entity is missing or owned by someone else
            CollaboratorUnavailableError: Catalog service unreachable or failing
        """
        refs = owned_refs(correlation_refs)
        if not refs:
            return

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.catalog_url}/ownership/verify",
                    json={"owner_ref": owner_ref, "refs": refs},
                )
        except httpx.HTTPError as e:
            raise CollaboratorUnavailableError(f"Catalog service unreachable: {e}") from e

        if response.status_code == 404:
            raise NotFoundError("Referenced entity not found")
        if response.status_code >= 400:
            raise CollaboratorUnavailableError(
                f"Catalog service error ({response.status_code}): {response.text}"
            )

        body = response.json()
        if not body.get("valid", False):
            logger.info(
                "correlation.ownership_mismatch",
                owner_ref=owner_ref,
                missing=body.get("missing"),
            )
            raise NotFoundError("Referenced entity not found")


def build_correlation_validator(catalog_url: str) -> CorrelationValidator:
    if not catalog_url:
        return TrustingCorrelationValidator()
    return HttpCorrelationValidator(catalog_url)
