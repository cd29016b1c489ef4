"""GenerationRecord entity - one asynchronous job submitted to a provider."""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from genflow.core.timezone import utcnow


class ResourceKind(str, Enum):
    """Kind of resource a generation produces."""

    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    TUNING = "tuning"

    @property
    def webhook_domain(self) -> str:
        """Path segment used in the provider callback URL."""
        return _WEBHOOK_DOMAINS[self]

    @property
    def topic_domain(self) -> str:
        """Domain segment used in Kafka topic names."""
        return "model_tuning" if self is ResourceKind.TUNING else "generation"

    @classmethod
    def from_webhook_domain(cls, domain: str) -> "ResourceKind | None":
        for kind, path in _WEBHOOK_DOMAINS.items():
            if path == domain:
                return kind
        return None


_WEBHOOK_DOMAINS = {
    ResourceKind.IMAGE: "image-generations",
    ResourceKind.VIDEO: "video-generations",
    ResourceKind.AUDIO: "audio-generations",
    ResourceKind.TUNING: "tuning-sessions",
}


class GenerationRecord(SQLModel, table=True):
    """Identity of a generation. Written once at submission, never mutated."""

    __tablename__ = "generations"  # type: ignore[assignment]

    generation_id: str = Field(primary_key=True, max_length=64)
    owner_ref: str = Field(max_length=255, index=True)
    resource_kind: ResourceKind = Field(index=True)
    provider: str = Field(max_length=50)
    correlation_refs: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    # Naive UTC, stored as a plain DateTime column
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=False), nullable=False)
    )
