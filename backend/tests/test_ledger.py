"""Event ledger tests.

Tests focus on append-only storage and state derivation:
- Events read back in write order, SUBMITTED first
- Latest event wins, insertion order breaks timestamp ties
- Ownership checks against the generation record
- Open-generation scan used by reconciliation
- UnitOfWork commit/rollback
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import DateTime

from genflow.core.clock import MonotonicClock
from genflow.core.timezone import utcnow
from genflow.models.generation import GenerationRecord, ResourceKind
from genflow.models.generation_event import GenerationEvent, GenerationEventType
from genflow.repositories.generation_event import GenerationEventRepository


class FixedClock:
    """Clock that always returns the same instant."""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant


def make_record(generation_id: str, owner_ref: str = "u1") -> GenerationRecord:
    return GenerationRecord(
        generation_id=generation_id,
        owner_ref=owner_ref,
        resource_kind=ResourceKind.IMAGE,
        provider="fal",
        correlation_refs={},
    )


def make_event(generation_id: str, event_type: GenerationEventType) -> GenerationEvent:
    return GenerationEvent(generation_id=generation_id, event_type=event_type, payload={})


@pytest.mark.asyncio
async def test_all_events_ascending_with_submitted_first(uow_factory):
    """Events come back oldest first and the first one is SUBMITTED."""
    async with await uow_factory() as uow:
        await uow.generations.add(make_record("gen-1"))
        await uow.events.append(make_event("gen-1", GenerationEventType.SUBMITTED))
        await uow.events.append(make_event("gen-1", GenerationEventType.IN_PROGRESS))
        await uow.events.append(make_event("gen-1", GenerationEventType.POST_PROCESSING))

    async with await uow_factory() as uow:
        events = await uow.events.all_events("gen-1")

    assert [e.event_type for e in events] == [
        GenerationEventType.SUBMITTED,
        GenerationEventType.IN_PROGRESS,
        GenerationEventType.POST_PROCESSING,
    ]
    timestamps = [e.created_at for e in events]
    assert timestamps == sorted(timestamps)
    assert all(e.seq is not None for e in events)


@pytest.mark.asyncio
async def test_append_assigns_event_id_and_created_at(uow_factory):
    async with await uow_factory() as uow:
        event = await uow.events.append(make_event("gen-1", GenerationEventType.SUBMITTED))

        assert event.event_id is not None
        assert event.created_at is not None
        assert event.seq is not None


@pytest.mark.asyncio
async def test_latest_returns_most_recent_event(uow_factory):
    async with await uow_factory() as uow:
        await uow.events.append(make_event("gen-1", GenerationEventType.SUBMITTED))
        await uow.events.append(make_event("gen-1", GenerationEventType.POST_PROCESSING))
        await uow.events.append(make_event("gen-2", GenerationEventType.SUBMITTED))

    async with await uow_factory() as uow:
        latest = await uow.events.latest("gen-1")

    assert latest is not None
    assert latest.event_type == GenerationEventType.POST_PROCESSING


@pytest.mark.asyncio
async def test_latest_breaks_timestamp_ties_by_insertion_order(session):
    """Two events with identical created_at resolve to the one written last."""
    repo = GenerationEventRepository(session, clock=FixedClock(datetime(2026, 1, 1, 12, 0, 0)))

    await repo.append(make_event("gen-1", GenerationEventType.SUBMITTED))
    await repo.append(make_event("gen-1", GenerationEventType.FAILED))
    await session.commit()

    latest = await repo.latest("gen-1")
    assert latest is not None
    assert latest.event_type == GenerationEventType.FAILED


@pytest.mark.asyncio
async def test_latest_returns_none_for_unknown_generation(uow_factory):
    async with await uow_factory() as uow:
        assert await uow.events.latest("missing") is None
        assert await uow.events.all_events("missing") == []


@pytest.mark.asyncio
async def test_first_of_type(uow_factory):
    async with await uow_factory() as uow:
        await uow.events.append(make_event("gen-1", GenerationEventType.SUBMITTED))
        await uow.events.append(make_event("gen-1", GenerationEventType.IN_PROGRESS))

    async with await uow_factory() as uow:
        submitted = await uow.events.first_of_type("gen-1", GenerationEventType.SUBMITTED)
        completed = await uow.events.first_of_type("gen-1", GenerationEventType.COMPLETED)

    assert submitted is not None
    assert submitted.event_type == GenerationEventType.SUBMITTED
    assert completed is None


@pytest.mark.asyncio
async def test_ownership_matches(uow_factory):
    async with await uow_factory() as uow:
        await uow.generations.add(make_record("gen-1", owner_ref="u1"))

    async with await uow_factory() as uow:
        assert await uow.events.ownership_matches("gen-1", "u1") is True
        assert await uow.events.ownership_matches("gen-1", "u2") is False
        assert await uow.events.ownership_matches("missing", "u1") is False


@pytest.mark.asyncio
async def test_list_open_returns_only_stale_open_generations(session):
    """Generations whose latest event is SUBMITTED/IN_PROGRESS and older than the cutoff."""
    old = utcnow() - timedelta(hours=2)
    old_repo = GenerationEventRepository(session, clock=FixedClock(old))  # type: ignore[arg-type]

    # Stale and still open
    await old_repo.append(make_event("stale-submitted", GenerationEventType.SUBMITTED))
    await old_repo.append(make_event("stale-running", GenerationEventType.SUBMITTED))
    await old_repo.append(make_event("stale-running", GenerationEventType.IN_PROGRESS))
    # Stale but already past the provider stage
    await old_repo.append(make_event("stale-done", GenerationEventType.SUBMITTED))
    await old_repo.append(make_event("stale-done", GenerationEventType.POST_PROCESSING))
    await old_repo.append(make_event("stale-failed", GenerationEventType.SUBMITTED))
    await old_repo.append(make_event("stale-failed", GenerationEventType.FAILED))

    # Open but recent
    recent_repo = GenerationEventRepository(session)
    await recent_repo.append(make_event("recent", GenerationEventType.SUBMITTED))
    await session.commit()

    cutoff = utcnow() - timedelta(minutes=10)
    open_events = await recent_repo.list_open(older_than=cutoff, limit=50)

    ids = sorted(e.generation_id for e in open_events)
    assert ids == ["stale-running", "stale-submitted"]
    running = next(e for e in open_events if e.generation_id == "stale-running")
    assert running.event_type == GenerationEventType.IN_PROGRESS


@pytest.mark.asyncio
async def test_list_open_agrees_with_latest_when_timestamps_disagree_with_seq(session):
    """An event written later with an older timestamp does not reopen a generation."""
    now = utcnow()
    await GenerationEventRepository(session, clock=FixedClock(now - timedelta(hours=1))).append(
        make_event("gen-1", GenerationEventType.POST_PROCESSING)
    )
    repo = GenerationEventRepository(session, clock=FixedClock(now - timedelta(hours=3)))
    await repo.append(make_event("gen-1", GenerationEventType.IN_PROGRESS))
    await session.commit()

    latest = await repo.latest("gen-1")
    assert latest is not None
    assert latest.event_type == GenerationEventType.POST_PROCESSING
    assert await repo.list_open(older_than=now, limit=50) == []


@pytest.mark.asyncio
async def test_list_open_respects_limit(session):
    repo = GenerationEventRepository(session, clock=FixedClock(utcnow() - timedelta(hours=1)))
    for i in range(5):
        await repo.append(make_event(f"gen-{i}", GenerationEventType.SUBMITTED))
    await session.commit()

    open_events = await repo.list_open(older_than=utcnow(), limit=3)
    assert len(open_events) == 3


@pytest.mark.asyncio
async def test_uow_commits_record_and_event_together(uow_factory):
    async with await uow_factory() as uow:
        await uow.generations.add(make_record("gen-1"))
        await uow.events.append(make_event("gen-1", GenerationEventType.SUBMITTED))

    async with await uow_factory() as uow:
        assert await uow.generations.get_by_id("gen-1") is not None
        assert len(await uow.events.all_events("gen-1")) == 1


@pytest.mark.asyncio
async def test_uow_rollback_on_exception(uow_factory):
    """An exception inside the UoW discards the record and its events, and propagates."""
    with pytest.raises(ValueError, match="Simulated error"):
        async with await uow_factory() as uow:
            await uow.generations.add(make_record("gen-1"))
            await uow.events.append(make_event("gen-1", GenerationEventType.SUBMITTED))
            raise ValueError("Simulated error")

    async with await uow_factory() as uow:
        assert await uow.generations.get_by_id("gen-1") is None
        assert await uow.events.all_events("gen-1") == []


@pytest.mark.asyncio
async def test_created_at_stored_as_naive_utc(uow_factory):
    """Timestamps are naive UTC datetimes in a plain DateTime column."""
    for model in (GenerationRecord, GenerationEvent):
        column = model.__table__.c.created_at  # type: ignore[attr-defined]
        assert isinstance(column.type, DateTime)
        assert column.type.timezone is False
        assert column.nullable is False

    async with await uow_factory() as uow:
        await uow.generations.add(make_record("gen-1"))
        appended = await uow.events.append(make_event("gen-1", GenerationEventType.SUBMITTED))
        written_at = appended.created_at

    async with await uow_factory() as uow:
        record = await uow.generations.get_by_id("gen-1")
        event = await uow.events.latest("gen-1")

    assert record is not None and record.created_at.tzinfo is None
    assert event is not None and event.created_at == written_at
    assert event.created_at.tzinfo is None


def test_monotonic_clock_never_goes_backwards():
    clock = MonotonicClock()
    readings = [clock.now() for _ in range(1000)]

    assert all(later > earlier for earlier, later in zip(readings, readings[1:]))
