"""Event Ledger repository.

Append-only storage of generation lifecycle events. The ledger is a single
flat log: generation_id is not a foreign key, rows are only ever inserted,
and current state is derived by ordering on (created_at, seq).

Storage errors propagate unchanged; the ledger never retries.
"""

from datetime import datetime

import structlog
from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from genflow.core.clock import MonotonicClock, ledger_clock
from genflow.models.generation import GenerationRecord
from genflow.models.generation_event import (
    OPEN_EVENT_TYPES,
    GenerationEvent,
    GenerationEventType,
)

logger = structlog.get_logger()


class GenerationEventRepository:
    """Repository for the generation event ledger."""

    def __init__(self, session: AsyncSession, clock: MonotonicClock = ledger_clock):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
            clock: Source of write-time timestamps (process-wide monotonic clock)
        """
        self.session = session
        self.clock = clock

    async def append(self, event: GenerationEvent) -> GenerationEvent:
        """Insert one event.

        created_at is assigned here at write time. There is deliberately no
        uniqueness constraint across event types for a generation, so
        concurrent writers never conflict.

        Args:
            event: Event to append (event_id is generated by the model)

        Returns:
            Persisted event with seq and created_at populated
        """
        event.created_at = self.clock.now()
        self.session.add(event)
        await self.session.flush()

        logger.debug(
            "ledger.appended",
            generation_id=event.generation_id,
            event_type=event.event_type,
            event_id=str(event.event_id),
        )
        return event

    async def latest(self, generation_id: str) -> GenerationEvent | None:
        """Return the current state event for a generation.

        Args:
            generation_id: Generation identifier

        Returns:
            Event with maximum created_at (ties broken by insertion order),
            None if the generation has no events
        """
        result = await self.session.execute(
            select(GenerationEvent)
            .where(GenerationEvent.generation_id == generation_id)  # type: ignore[arg-type]
            .order_by(GenerationEvent.created_at.desc(), GenerationEvent.seq.desc())  # type: ignore[union-attr]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def all_events(self, generation_id: str) -> list[GenerationEvent]:
        """Return every event for a generation, oldest first.

        Args:
            generation_id: Generation identifier

        Returns:
            Events ordered ascending by created_at, then insertion order
        """
        result = await self.session.execute(
            select(GenerationEvent)
            .where(GenerationEvent.generation_id == generation_id)  # type: ignore[arg-type]
            .order_by(GenerationEvent.created_at.asc(), GenerationEvent.seq.asc())  # type: ignore[union-attr]
        )
        return list(result.scalars().all())

    async def first_of_type(
        self, generation_id: str, event_type: GenerationEventType
    ) -> GenerationEvent | None:
        """Return the earliest event of one type (used to read back SUBMITTED context)."""
        result = await self.session.execute(
            select(GenerationEvent)
            .where(
                GenerationEvent.generation_id == generation_id,  # type: ignore[arg-type]
                GenerationEvent.event_type == event_type,  # type: ignore[arg-type]
            )
            .order_by(GenerationEvent.created_at.asc(), GenerationEvent.seq.asc())  # type: ignore[union-attr]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def ownership_matches(self, generation_id: str, owner_ref: str) -> bool:
        """Check that a generation belongs to owner_ref.

        Args:
            generation_id: Generation identifier
            owner_ref: Requesting user/admin identifier

        Returns:
            True if the generation exists and was submitted by owner_ref
        """
        result = await self.session.execute(
            select(
                exists().where(
                    GenerationRecord.generation_id == generation_id,  # type: ignore[arg-type]
                    GenerationRecord.owner_ref == owner_ref,  # type: ignore[arg-type]
                )
            )
        )
        return bool(result.scalar())

    async def list_open(self, older_than: datetime, limit: int = 50) -> list[GenerationEvent]:
        """Find generations still waiting on their provider.

        Returns the latest event of each generation whose current state is
        SUBMITTED or IN_PROGRESS and was written before older_than. Used by
        reconciliation to recover lost webhooks.

        Args:
            older_than: Only consider latest events created before this time
            limit: Maximum number of generations to return

        Returns:
            Latest events ordered oldest first
        """
        # Same ordering as latest(): created_at, then insertion order
        ranked = select(
            GenerationEvent.seq,
            func.row_number()
            .over(
                partition_by=GenerationEvent.generation_id,
                order_by=(GenerationEvent.created_at.desc(), GenerationEvent.seq.desc()),  # type: ignore[union-attr]
            )
            .label("row_rank"),
        ).subquery()

        result = await self.session.execute(
            select(GenerationEvent)
            .join(ranked, GenerationEvent.seq == ranked.c.seq)  # type: ignore[arg-type]
            .where(
                ranked.c.row_rank == 1,
                GenerationEvent.event_type.in_(list(OPEN_EVENT_TYPES)),  # type: ignore[attr-defined]
                GenerationEvent.created_at < older_than,  # type: ignore[operator]
            )
            .order_by(GenerationEvent.created_at.asc())  # type: ignore[union-attr]
            .limit(limit)
        )
        return list(result.scalars().all())
