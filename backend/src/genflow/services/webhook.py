"""Webhook Ingestion Gateway.

Providers deliver callbacks at least once. Each callback is recorded as a
POST_PROCESSING or FAILED ledger event unless the generation has already
moved past the provider stage, in which case it is acknowledged as a
duplicate without any write. The provider-polling fallback records its
results through the same ingest path.
"""

from dataclasses import dataclass
from typing import Any, Literal, Optional

import structlog

from genflow.models.generation import ResourceKind
from genflow.models.generation_event import (
    CALLBACK_SETTLED_EVENT_TYPES,
    GenerationEvent,
    GenerationEventType,
)
from genflow.models.payloads import (
    FailedPayload,
    PostProcessingPayload,
    SubmittedPayload,
    parse_event_payload,
)
from genflow.services.events.publisher import EventPublisher
from genflow.services.exceptions import (
    MalformedEventPayloadError,
    NotFoundError,
    PublishError,
    ValidationError,
)
from genflow.services.providers.base import CallbackOutcome
from genflow.services.providers.registry import ProviderRegistry
from genflow.services.tokens import TokenCodec
from genflow.uow import UnitOfWorkFactory

logger = structlog.get_logger()


@dataclass
class CallbackAck:
    status: Literal["accepted", "duplicate"]
    generation_id: str
    event_type: GenerationEventType


def extract_provider_payload(body: dict[str, Any]) -> dict[str, Any]:
    """Provider result carried by a callback body.

    Bodies shaped {"payload": {...}, ...} carry the result under "payload";
    bodies without it (Replicate sends the prediction itself) are the result.
    """
    payload = body.get("payload")
    if isinstance(payload, dict):
        return payload
    return body


class WebhookGateway:
    """Idempotent ingestion of provider callbacks."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        token_codec: TokenCodec,
        providers: ProviderRegistry,
        publisher: EventPublisher,
    ):
        self.uow_factory = uow_factory
        self.token_codec = token_codec
        self.providers = providers
        self.publisher = publisher

    async def handle_callback(
        self,
        token: str,
        body: dict[str, Any],
        expected_kind: Optional[ResourceKind] = None,
    ) -> CallbackAck:
        """Record a provider callback.

        Args:
            token: Callback token from the webhook URL
            body: Parsed callback body
            expected_kind: Resource kind named by the webhook domain, if any

        Returns:
            CallbackAck; "duplicate" when nothing was written

        Raises:
            InvalidTokenError: Token cannot be decoded
            NotFoundError: Generation has no ledger events
            ValidationError: Generation belongs to a different resource kind
        """
        generation_id = self.token_codec.decode(token)
        return await self.ingest(
            generation_id, body, source="webhook", expected_kind=expected_kind
        )

    async def ingest(
        self,
        generation_id: str,
        body: dict[str, Any],
        source: Literal["webhook", "poll"] = "webhook",
        outcome: Optional[CallbackOutcome] = None,
        expected_kind: Optional[ResourceKind] = None,
    ) -> CallbackAck:
        """Record a provider result for a generation.

        Args:
            generation_id: Generation identifier
            body: Callback body (or polled result wrapped as {"payload": ...})
            source: Which path delivered the result
            outcome: Pre-computed outcome (polling); interpreted from body if None
            expected_kind: Reject the result unless the generation is of this kind

        Returns:
            CallbackAck describing what was recorded

        Raises:
            NotFoundError: Generation has no ledger events
            ValidationError: Generation is not of expected_kind
            MalformedEventPayloadError: SUBMITTED event missing or unreadable
        """
        async with await self.uow_factory() as uow:
            latest = await uow.events.latest(generation_id)
            if latest is None:
                raise NotFoundError(f"Generation {generation_id} not found")

            if expected_kind is not None:
                record = await uow.generations.get_by_id(generation_id)
                if record is None or record.resource_kind != expected_kind:
                    raise ValidationError(
                        f"Generation {generation_id} is not a {expected_kind.value} generation"
                    )

            # Read-then-write: a concurrent duplicate may slip through; the
            # post-process command carries event_id so consumers can dedupe
            if latest.event_type in CALLBACK_SETTLED_EVENT_TYPES:
                logger.info(
                    "webhook.duplicate",
                    generation_id=generation_id,
                    latest_event_type=latest.event_type.value,
                    source=source,
                )
                return CallbackAck(
                    status="duplicate",
                    generation_id=generation_id,
                    event_type=latest.event_type,
                )

            submitted_event = await uow.events.first_of_type(
                generation_id, GenerationEventType.SUBMITTED
            )
            if submitted_event is None:
                raise MalformedEventPayloadError(
                    f"Generation {generation_id} has no SUBMITTED event"
                )
            submitted = parse_event_payload(submitted_event.event_type, submitted_event.payload)
            if not isinstance(submitted, SubmittedPayload):
                raise MalformedEventPayloadError(
                    f"Unexpected SUBMITTED payload for {generation_id}"
                )
            context = submitted.context

            if outcome is None:
                outcome = self.providers.interpret_callback(
                    context.resource_kind, submitted.provider, body
                )
            provider_payload = extract_provider_payload(body)

            if outcome.failed:
                payload = FailedPayload(
                    context=context,
                    error=outcome.error or "provider reported failure",
                    stage="callback" if source == "webhook" else "poll",
                    provider_payload=provider_payload,
                )
                event_type = GenerationEventType.FAILED
            else:
                payload = PostProcessingPayload(
                    context=context, provider_payload=provider_payload, source=source
                )
                event_type = GenerationEventType.POST_PROCESSING

            event = await uow.events.append(
                GenerationEvent(
                    generation_id=generation_id,
                    event_type=event_type,
                    payload=payload.to_row(),
                )
            )

        logger.info(
            "webhook.recorded",
            generation_id=generation_id,
            event_type=event_type.value,
            source=source,
        )
        await self._publish(generation_id, event, payload)

        return CallbackAck(status="accepted", generation_id=generation_id, event_type=event_type)

    async def _publish(
        self,
        generation_id: str,
        event: GenerationEvent,
        payload: PostProcessingPayload | FailedPayload,
    ) -> None:
        context = payload.context
        data: dict[str, Any] = {
            "generation_id": generation_id,
            "event_id": str(event.event_id),
            "context": context.model_dump(mode="json"),
        }
        try:
            if isinstance(payload, FailedPayload):
                data.update(stage=payload.stage, error=payload.error)
                await self.publisher.publish_failed(context.resource_kind, generation_id, data)
            else:
                data["provider_payload"] = payload.provider_payload
                await self.publisher.publish_post_process(
                    context.resource_kind, generation_id, data
                )
        except PublishError as e:
            logger.warning("webhook.publish_failed", generation_id=generation_id, error=str(e))
