"""Reconciliation of generations whose webhook never arrived."""

from dataclasses import dataclass, field
from datetime import timedelta

import structlog

from genflow.core.timezone import utcnow
from genflow.services.exceptions import GenflowError
from genflow.services.status import StatusQueryService
from genflow.uow import UnitOfWorkFactory

logger = structlog.get_logger()


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass."""

    scanned: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: list[str] = field(default_factory=list)


async def reconcile_open_generations(
    status_service: StatusQueryService,
    uow_factory: UnitOfWorkFactory,
    older_than_seconds: int = 600,
    limit: int = 50,
    dry_run: bool = False,
) -> ReconcileResult:
    """Poll providers for stale open generations.

    Finds generations whose latest event is SUBMITTED or IN_PROGRESS and older
    than the cutoff, and refreshes each through the status polling path. A
    failure for one generation is recorded and does not stop the pass.

    Args:
        status_service: Status service with polling configured
        uow_factory: Factory for UnitOfWork instances
        older_than_seconds: Minimum age of the latest event
        limit: Maximum generations per pass
        dry_run: List candidates without polling or writing

    Returns:
        ReconcileResult with counts and per-generation errors
    """
    cutoff = utcnow() - timedelta(seconds=older_than_seconds)
    async with await uow_factory() as uow:
        stale = await uow.events.list_open(older_than=cutoff, limit=limit)

    result = ReconcileResult(scanned=len(stale))
    logger.info("reconcile.scan", candidates=len(stale), cutoff=cutoff.isoformat())

    for event in stale:
        if dry_run:
            logger.info(
                "reconcile.dry_run_candidate",
                generation_id=event.generation_id,
                event_type=event.event_type.value,
                created_at=event.created_at.isoformat() if event.created_at else None,
            )
            result.unchanged += 1
            continue

        try:
            written = await status_service.refresh(event.generation_id)
        except GenflowError as e:
            result.errors.append(f"{event.generation_id}: {e}")
            logger.warning(
                "reconcile.refresh_failed",
                generation_id=event.generation_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            continue

        if written is None:
            result.unchanged += 1
        else:
            result.updated += 1
            logger.info(
                "reconcile.updated",
                generation_id=event.generation_id,
                event_type=written.value,
            )

    logger.info(
        "reconcile.complete",
        scanned=result.scanned,
        updated=result.updated,
        unchanged=result.unchanged,
        errors=len(result.errors),
    )
    return result
