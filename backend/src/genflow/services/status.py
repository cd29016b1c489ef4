"""Status Query Service.

Reads the current state of a generation from the ledger. Only completed or
post-processing generations expose a payload, and every storage reference in
it is replaced by a signed URL before it leaves the service.

When polling fallback is enabled, the service also acts as a secondary
writer: open generations are checked against the provider and results are
recorded through the Webhook Gateway, so a lost webhook does not leave a job
stuck forever.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import structlog

from genflow.models.generation_event import (
    OPEN_EVENT_TYPES,
    PAYLOAD_VISIBLE_EVENT_TYPES,
    GenerationEvent,
    GenerationEventType,
)
from genflow.models.payloads import InProgressPayload, SubmittedPayload, parse_event_payload
from genflow.services.exceptions import NotFoundError, ProviderQueryError
from genflow.services.providers.base import CallbackOutcome
from genflow.services.providers.registry import ProviderRegistry
from genflow.services.storage import StorageSigner, materialize_output_refs
from genflow.services.webhook import WebhookGateway
from genflow.uow import UnitOfWorkFactory

logger = structlog.get_logger()


@dataclass
class GenerationStatusView:
    generation_id: str
    event_type: GenerationEventType
    created_at: datetime
    payload: Optional[dict[str, Any]] = None


@dataclass
class GenerationEventView:
    event_id: str
    event_type: GenerationEventType
    created_at: datetime
    payload: Optional[dict[str, Any]] = None


class StatusQueryService:
    """Current-state and audit views over the ledger."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        storage: StorageSigner,
        url_expiry_seconds: int = 900,
        providers: Optional[ProviderRegistry] = None,
        gateway: Optional[WebhookGateway] = None,
        poll_fallback: bool = False,
    ):
        """Initialize status service.

        Args:
            uow_factory: Factory for UnitOfWork instances
            storage: Signed-URL capability
            url_expiry_seconds: Lifetime of signed download URLs
            providers: Provider registry (required for polling)
            gateway: Webhook gateway that records polled results (required for polling)
            poll_fallback: Poll providers for open generations on status reads
        """
        self.uow_factory = uow_factory
        self.storage = storage
        self.url_expiry_seconds = url_expiry_seconds
        self.providers = providers
        self.gateway = gateway
        self.poll_fallback = poll_fallback and providers is not None and gateway is not None

    async def _latest_visible(
        self, generation_id: str, requester_ref: str, is_admin: bool
    ) -> GenerationEvent:
        async with await self.uow_factory() as uow:
            if not is_admin and not await uow.events.ownership_matches(
                generation_id, requester_ref
            ):
                raise NotFoundError(f"Generation {generation_id} not found")

            latest = await uow.events.latest(generation_id)
            if latest is None:
                raise NotFoundError(f"Generation {generation_id} not found")
            return latest

    async def get_status(
        self, generation_id: str, requester_ref: str, is_admin: bool = False
    ) -> GenerationStatusView:
        """Return the current state of a generation.

        Args:
            generation_id: Generation identifier
            requester_ref: Requesting owner
            is_admin: Administrators may read any generation

        Returns:
            GenerationStatusView; payload only for COMPLETED/POST_PROCESSING

        Raises:
            NotFoundError: Unknown generation or not owned by requester
        """
        latest = await self._latest_visible(generation_id, requester_ref, is_admin)

        if self.poll_fallback and latest.event_type in OPEN_EVENT_TYPES:
            try:
                if await self.refresh(generation_id) is not None:
                    latest = await self._latest_visible(generation_id, requester_ref, is_admin)
            except ProviderQueryError as e:
                logger.warning("status.poll_failed", generation_id=generation_id, error=str(e))

        view = GenerationStatusView(
            generation_id=generation_id,
            event_type=latest.event_type,
            created_at=latest.created_at,  # type: ignore[arg-type]
        )
        if latest.event_type in PAYLOAD_VISIBLE_EVENT_TYPES:
            public = parse_event_payload(latest.event_type, latest.payload).public_view()
            if public is not None:
                view.payload = await materialize_output_refs(
                    public, self.storage, self.url_expiry_seconds
                )
        return view

    async def list_events(
        self, generation_id: str, requester_ref: str, is_admin: bool = False
    ) -> list[GenerationEventView]:
        """Audit view of a generation's lifecycle, oldest first.

        Owners see event types and timestamps; administrators also see the raw
        stored payloads.

        Raises:
            NotFoundError: Unknown generation or not owned by requester
        """
        async with await self.uow_factory() as uow:
            if not is_admin and not await uow.events.ownership_matches(
                generation_id, requester_ref
            ):
                raise NotFoundError(f"Generation {generation_id} not found")
            events = await uow.events.all_events(generation_id)

        if not events:
            raise NotFoundError(f"Generation {generation_id} not found")

        return [
            GenerationEventView(
                event_id=str(event.event_id),
                event_type=event.event_type,
                created_at=event.created_at,  # type: ignore[arg-type]
                payload=event.payload if is_admin else None,
            )
            for event in events
        ]

    async def refresh(self, generation_id: str) -> Optional[GenerationEventType]:
        """Poll the provider for an open generation and record what changed.

        Args:
            generation_id: Generation identifier

        Returns:
            Type of the event written, None if nothing was written

        Raises:
            NotFoundError: Unknown generation
            ProviderQueryError: Provider status or result lookup failed
        """
        if self.providers is None or self.gateway is None:
            return None

        async with await self.uow_factory() as uow:
            latest = await uow.events.latest(generation_id)
            if latest is None:
                raise NotFoundError(f"Generation {generation_id} not found")
            if latest.event_type not in OPEN_EVENT_TYPES:
                return None
            submitted_event = await uow.events.first_of_type(
                generation_id, GenerationEventType.SUBMITTED
            )

        if submitted_event is None:
            return None
        submitted = parse_event_payload(submitted_event.event_type, submitted_event.payload)
        if not isinstance(submitted, SubmittedPayload) or submitted.request_id is None:
            return None

        provider = self.providers.for_kind(submitted.context.resource_kind.value)
        if provider.name != submitted.provider:
            logger.info(
                "status.poll_skipped",
                generation_id=generation_id,
                reason="provider_changed",
                provider=submitted.provider,
            )
            return None

        status = await provider.check_status(submitted.request_id)
        logger.debug(
            "status.polled",
            generation_id=generation_id,
            request_id=submitted.request_id,
            provider_status=status.status,
        )

        if status.completed:
            result = await provider.get_result(submitted.request_id)
            ack = await self.gateway.ingest(
                generation_id,
                {"payload": result},
                source="poll",
                outcome=CallbackOutcome(failed=False),
            )
            return ack.event_type if ack.status == "accepted" else None

        if status.failed:
            error = status.error or f"provider status {status.status}"
            ack = await self.gateway.ingest(
                generation_id,
                {"payload": status.raw, "error": error},
                source="poll",
                outcome=CallbackOutcome(failed=True, error=error),
            )
            return ack.event_type if ack.status == "accepted" else None

        if latest.event_type != GenerationEventType.SUBMITTED:
            return None

        async with await self.uow_factory() as uow:
            current = await uow.events.latest(generation_id)
            if current is None or current.event_type != GenerationEventType.SUBMITTED:
                return None
            await uow.events.append(
                GenerationEvent(
                    generation_id=generation_id,
                    event_type=GenerationEventType.IN_PROGRESS,
                    payload=InProgressPayload(
                        context=submitted.context,
                        provider_status=status.status,
                        provider_payload=status.raw or None,
                    ).to_row(),
                )
            )

        logger.info("status.in_progress_recorded", generation_id=generation_id)
        return GenerationEventType.IN_PROGRESS
