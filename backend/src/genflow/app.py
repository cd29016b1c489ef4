"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from genflow.api.routes import generations, webhooks
from genflow.core import timezone  # noqa: F401  (sets TZ=UTC)
from genflow.core.config import Settings, configure_logging
from genflow.core.database import create_all_tables, setup_db_session
from genflow.services.correlation import build_correlation_validator
from genflow.services.events.publisher import EventPublisher
from genflow.services.exceptions import ConnectionFatalError
from genflow.services.providers.registry import build_provider_registry
from genflow.services.status import StatusQueryService
from genflow.services.storage import R2StorageSigner
from genflow.services.submission import SubmissionService
from genflow.services.tokens import AesGcmTokenCodec
from genflow.services.webhook import WebhookGateway
from genflow.uow import create_uow_factory
from genflow.workers.reconcile_worker import run_reconcile_worker

logger = structlog.get_logger()


WORKER_RESTART_DELAY_SECONDS = 1


def create_resilient_worker(
    worker_factory: Callable[[], Awaitable[None]],
    worker_name: str,
    shutdown_event: asyncio.Event,
) -> asyncio.Task:
    """Run a background worker and restart it whenever it dies.

    Args:
        worker_factory: Zero-argument callable returning a fresh worker coroutine
        worker_name: Name used in log events
        shutdown_event: Once set, finished workers are no longer restarted

    Returns:
        Task of the first worker run
    """

    def restart_on_exit(task: asyncio.Task) -> None:
        if shutdown_event.is_set() or task.cancelled():
            logger.info("worker.exited", worker=worker_name, cancelled=task.cancelled())
            return

        exc = task.exception()
        if exc is not None:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=WORKER_RESTART_DELAY_SECONDS,
                exc_info=exc,
            )
        else:
            # Workers loop forever; a clean return is still unexpected
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=WORKER_RESTART_DELAY_SECONDS,
            )

        async def restart() -> None:
            await asyncio.sleep(WORKER_RESTART_DELAY_SECONDS)
            if shutdown_event.is_set():
                return
            logger.info("worker.restarting", worker=worker_name)
            start()

        asyncio.create_task(restart())

    def start() -> asyncio.Task:
        task = asyncio.create_task(worker_factory())
        task.add_done_callback(restart_on_exit)
        return task

    return start()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: settings, logging, database, provider registry, broker connection,
      services, reconcile worker
    - Shutdown: stop worker, disconnect from the broker

    Startup fails if the broker stays unreachable after the configured retries.
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    if settings.database_url.startswith("sqlite"):
        # Local runs without Postgres; production schema is managed by Alembic
        await create_all_tables(session_factory.kw["bind"])
    uow_factory = create_uow_factory(session_factory)

    providers = build_provider_registry(settings)
    token_codec = AesGcmTokenCodec.from_base64_key(settings.generation_token_key)
    storage = R2StorageSigner.from_settings(settings)

    publisher = EventPublisher.from_settings(settings)
    try:
        await publisher.start()
    except ConnectionFatalError as e:
        logger.error("startup.broker_unavailable", error=str(e))
        raise

    gateway = WebhookGateway(
        uow_factory=uow_factory,
        token_codec=token_codec,
        providers=providers,
        publisher=publisher,
    )
    status_service = StatusQueryService(
        uow_factory=uow_factory,
        storage=storage,
        url_expiry_seconds=settings.presigned_url_expiry_seconds,
        providers=providers,
        gateway=gateway,
        poll_fallback=settings.status_poll_fallback,
    )
    submission_service = SubmissionService(
        uow_factory=uow_factory,
        providers=providers,
        publisher=publisher,
        token_codec=token_codec,
        correlation=build_correlation_validator(settings.catalog_url),
        api_domain_url=settings.api_domain_url,
    )

    # Store in app.state for access in routes
    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.publisher = publisher
    app.state.webhook_gateway = gateway
    app.state.status_service = status_service
    app.state.submission_service = submission_service

    shutdown_event = asyncio.Event()
    reconcile_task = None
    if settings.reconcile_interval_seconds > 0:
        # Reconciliation always polls, independent of STATUS_POLL_FALLBACK
        reconcile_status_service = StatusQueryService(
            uow_factory=uow_factory,
            storage=storage,
            url_expiry_seconds=settings.presigned_url_expiry_seconds,
            providers=providers,
            gateway=gateway,
            poll_fallback=True,
        )
        reconcile_task = create_resilient_worker(
            lambda: run_reconcile_worker(reconcile_status_service, uow_factory, settings),
            "reconcile",
            shutdown_event,
        )

    logger.info("application.startup", db_url=settings.database_url.split("@")[-1])

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    if reconcile_task is not None:
        reconcile_task.cancel()
        await asyncio.gather(reconcile_task, return_exceptions=True)

    await publisher.stop()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="genflow API",
        description="Asynchronous generation job orchestration",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register API routers
    app.include_router(generations.router)  # prefix="/api/generations" in definition
    app.include_router(webhooks.router, tags=["webhooks"])

    # Health check endpoint with database validation
    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
