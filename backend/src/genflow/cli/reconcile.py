"""CLI command for reconciling generations whose provider webhook was lost.

Usage:
    python -m genflow.cli.reconcile [OPTIONS]

Examples:
    # Refresh generations open for more than 10 minutes (default)
    python -m genflow.cli.reconcile

    # Custom cutoff and batch size
    python -m genflow.cli.reconcile --older-than-seconds 3600 --limit 200

    # Dry run (list candidates, no provider calls, no writes)
    python -m genflow.cli.reconcile --dry-run

    # Verbose logging
    python -m genflow.cli.reconcile -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from genflow.core import timezone  # noqa: F401
from genflow.core.config import Settings, configure_logging
from genflow.core.database import setup_db_session
from genflow.services.events.publisher import EventPublisher
from genflow.services.exceptions import ConnectionFatalError
from genflow.services.providers.registry import build_provider_registry
from genflow.services.reconcile import reconcile_open_generations
from genflow.services.status import StatusQueryService
from genflow.services.storage import R2StorageSigner
from genflow.services.tokens import AesGcmTokenCodec
from genflow.services.webhook import WebhookGateway
from genflow.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Poll providers for generations stuck in SUBMITTED/IN_PROGRESS",
    )

    parser.add_argument(
        "--older-than-seconds",
        type=int,
        default=None,
        help="Only refresh generations whose latest event is older than this "
        "(default: RECONCILE_OLDER_THAN_SECONDS)",
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum generations to refresh (default: RECONCILE_BATCH_SIZE)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List candidates without polling providers or writing events",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (partial success)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    older_than = (
        args.older_than_seconds
        if args.older_than_seconds is not None
        else settings.reconcile_older_than_seconds
    )
    limit = args.limit if args.limit is not None else settings.reconcile_batch_size

    logger.info(
        "reconcile_cli.start", older_than_seconds=older_than, limit=limit, dry_run=args.dry_run
    )

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    providers = build_provider_registry(settings)
    publisher = EventPublisher.from_settings(settings)

    if not args.dry_run:
        try:
            await publisher.start()
        except ConnectionFatalError as e:
            logger.error("reconcile_cli.broker_unavailable", error=str(e))
            return 1

    try:
        gateway = WebhookGateway(
            uow_factory=uow_factory,
            token_codec=AesGcmTokenCodec.from_base64_key(settings.generation_token_key),
            providers=providers,
            publisher=publisher,
        )
        status_service = StatusQueryService(
            uow_factory=uow_factory,
            storage=R2StorageSigner.from_settings(settings),
            url_expiry_seconds=settings.presigned_url_expiry_seconds,
            providers=providers,
            gateway=gateway,
            poll_fallback=True,
        )

        result = await reconcile_open_generations(
            status_service,
            uow_factory,
            older_than_seconds=older_than,
            limit=limit,
            dry_run=args.dry_run,
        )

    except KeyboardInterrupt:
        logger.warning("reconcile_cli.interrupted", message="Reconciliation interrupted by user")
        return 2

    except Exception as e:
        logger.error("reconcile_cli.fatal_error", error=str(e), exc_info=True)
        return 1

    finally:
        await publisher.stop()

    print()
    print("=" * 60)
    print("RECONCILIATION SUMMARY" + (" (DRY RUN)" if args.dry_run else ""))
    print("=" * 60)
    print(f"Scanned:   {result.scanned}")
    print(f"Updated:   {result.updated}")
    print(f"Unchanged: {result.unchanged}")
    print(f"Errors:    {len(result.errors)}")
    for error in result.errors:
        print(f"  - {error}")
    print("=" * 60)

    if result.errors:
        return 2 if result.updated or result.unchanged else 1
    return 0


def main() -> int:
    """Synchronous wrapper for async main."""
    return asyncio.run(async_main())


if __name__ == "__main__":
    sys.exit(main())
