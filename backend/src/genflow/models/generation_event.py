"""GenerationEvent entity - one immutable lifecycle fact in the ledger."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, DateTime, Index
from sqlmodel import Field, SQLModel


class GenerationEventType(str, Enum):
    """Lifecycle event types."""

    SUBMITTED = "SUBMITTED"
    IN_PROGRESS = "IN_PROGRESS"
    POST_PROCESSING = "POST_PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_EVENT_TYPES = frozenset({GenerationEventType.COMPLETED, GenerationEventType.FAILED})

# Once any of these is the latest event, provider callbacks are acknowledged without writes
CALLBACK_SETTLED_EVENT_TYPES = TERMINAL_EVENT_TYPES | {GenerationEventType.POST_PROCESSING}

# Event types whose payload may be shown to the owner
PAYLOAD_VISIBLE_EVENT_TYPES = frozenset(
    {GenerationEventType.COMPLETED, GenerationEventType.POST_PROCESSING}
)

OPEN_EVENT_TYPES = frozenset({GenerationEventType.SUBMITTED, GenerationEventType.IN_PROGRESS})


class GenerationEvent(SQLModel, table=True):
    """Append-only ledger row.

    Rows are never updated or deleted. Current state is the row with the
    greatest (created_at, seq) for a generation_id.
    """

    __tablename__ = "generation_events"  # type: ignore[assignment]
    __table_args__ = (
        Index("ix_generation_events_generation_order", "generation_id", "created_at", "seq"),
    )

    # Insertion order, breaks created_at ties
    seq: Optional[int] = Field(default=None, primary_key=True)
    event_id: UUID = Field(default_factory=uuid4, unique=True)
    generation_id: str = Field(max_length=64)
    event_type: GenerationEventType = Field(index=True)
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    # Naive UTC; assigned by the repository at write time
    created_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=False), nullable=False)
    )
