"""Versioned payload schemas for ledger events.

Every event type carries its own payload shape. Payloads are validated when
written and again when read back, so a malformed historical row fails loudly
instead of yielding missing fields.
"""

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from genflow.models.generation import ResourceKind
from genflow.models.generation_event import GenerationEventType
from genflow.services.exceptions import MalformedEventPayloadError

PAYLOAD_SCHEMA_VERSION = 1


class GenerationContext(BaseModel):
    """Submission context carried by every event for downstream consumers."""

    owner_ref: str = Field(..., min_length=1)
    resource_kind: ResourceKind
    correlation_refs: dict[str, Any] = Field(default_factory=dict)


class _EventPayload(BaseModel):
    schema_version: Literal[1] = PAYLOAD_SCHEMA_VERSION

    def public_view(self) -> Optional[dict[str, Any]]:
        """Client-visible part of the payload (None when nothing is exposed)."""
        return None

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class SubmittedPayload(_EventPayload):
    context: GenerationContext
    provider: str
    request_id: Optional[str] = None
    provider_status: Optional[str] = None
    input: dict[str, Any] = Field(default_factory=dict)
    webhook_url: str


class InProgressPayload(_EventPayload):
    context: GenerationContext
    provider_status: str
    provider_payload: Optional[dict[str, Any]] = None


class PostProcessingPayload(_EventPayload):
    context: GenerationContext
    provider_payload: dict[str, Any]
    source: Literal["webhook", "poll"] = "webhook"

    def public_view(self) -> Optional[dict[str, Any]]:
        return self.provider_payload


class CompletedPayload(_EventPayload):
    """Written by the downstream post-processing pipeline."""

    model_config = ConfigDict(extra="allow")

    context: Optional[GenerationContext] = None
    output: dict[str, Any] = Field(default_factory=dict)

    def public_view(self) -> Optional[dict[str, Any]]:
        return self.model_dump(mode="json", exclude={"schema_version", "context"})


class FailedPayload(_EventPayload):
    context: GenerationContext
    error: str = Field(..., min_length=1)
    stage: Literal["submission", "callback", "poll"]
    provider_payload: Optional[dict[str, Any]] = None


EventPayload = Union[
    SubmittedPayload, InProgressPayload, PostProcessingPayload, CompletedPayload, FailedPayload
]

PAYLOAD_SCHEMAS: dict[GenerationEventType, type[_EventPayload]] = {
    GenerationEventType.SUBMITTED: SubmittedPayload,
    GenerationEventType.IN_PROGRESS: InProgressPayload,
    GenerationEventType.POST_PROCESSING: PostProcessingPayload,
    GenerationEventType.COMPLETED: CompletedPayload,
    GenerationEventType.FAILED: FailedPayload,
}


def parse_event_payload(event_type: str, raw: Any) -> EventPayload:
    """Validate a stored payload against the schema of its event type.

    Args:
        event_type: Ledger event type (enum member or its string value)
        raw: Payload as stored in the ledger

    Returns:
        Typed payload model

    Raises:
        MalformedEventPayloadError: Unknown event type or payload that does not
            match the schema for its type
    """
    try:
        schema = PAYLOAD_SCHEMAS[GenerationEventType(event_type)]
    except ValueError as e:
        raise MalformedEventPayloadError(f"Unknown event type: {event_type!r}") from e

    if not isinstance(raw, dict):
        raise MalformedEventPayloadError(
            f"{event_type} payload must be an object, got {type(raw).__name__}"
        )

    try:
        return schema.model_validate(raw)  # type: ignore[return-value]
    except ValidationError as e:
        raise MalformedEventPayloadError(f"Malformed {event_type} payload: {e}") from e
