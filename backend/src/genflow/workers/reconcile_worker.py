"""Reconcile worker for generations with lost webhooks.

Periodically refreshes open generations older than the configured cutoff
through the provider polling path.
"""

import asyncio

import structlog

from genflow.core.config import Settings
from genflow.services.reconcile import reconcile_open_generations
from genflow.services.status import StatusQueryService
from genflow.uow import UnitOfWorkFactory

logger = structlog.get_logger()


async def run_reconcile_worker(
    status_service: StatusQueryService,
    uow_factory: UnitOfWorkFactory,
    settings: Settings,
) -> None:
    """Main entry point for reconcile worker.

    Infinite polling loop that:
    1. Finds generations still SUBMITTED/IN_PROGRESS after the cutoff
    2. Polls their provider and records POST_PROCESSING/FAILED/IN_PROGRESS

    Worker lifecycle:
    - Started from the FastAPI lifespan when RECONCILE_INTERVAL_SECONDS > 0
    - Runs until asyncio.CancelledError (app shutdown)

    Args:
        status_service: Status service with polling configured
        uow_factory: Factory for UnitOfWork instances
        settings: Application settings (interval, cutoff, batch size)
    """
    interval = settings.reconcile_interval_seconds

    logger.info(
        "worker.started",
        worker="reconcile_worker",
        interval=interval,
        older_than_seconds=settings.reconcile_older_than_seconds,
        batch_size=settings.reconcile_batch_size,
    )

    try:
        while True:
            try:
                await reconcile_open_generations(
                    status_service,
                    uow_factory,
                    older_than_seconds=settings.reconcile_older_than_seconds,
                    limit=settings.reconcile_batch_size,
                )

            except asyncio.CancelledError:
                raise

            except Exception as e:
                # Unexpected error in polling loop - log and continue with backoff
                logger.error(
                    "worker.error",
                    worker_type="reconcile_worker",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(5)

            await asyncio.sleep(interval)

    except asyncio.CancelledError:
        logger.info(
            "worker.stopped",
            worker="reconcile_worker",
            message="Graceful shutdown requested",
        )
        raise
