"""Submission of generation jobs to providers.

The ledger is written only after the provider has answered, so the first
event always records the provider outcome. The record and its first event
(and the FAILED event, when the provider rejects the job) commit in one
transaction. Publishing to the bus happens after commit and is best effort.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from genflow.models.generation import GenerationRecord, ResourceKind
from genflow.models.generation_event import GenerationEvent, GenerationEventType
from genflow.models.payloads import FailedPayload, GenerationContext, SubmittedPayload
from genflow.services.correlation import CorrelationValidator
from genflow.services.events.publisher import EventPublisher
from genflow.services.exceptions import ProviderSubmissionError, PublishError, ValidationError
from genflow.services.providers.registry import ProviderRegistry
from genflow.services.tokens import TokenCodec
from genflow.uow import UnitOfWorkFactory

logger = structlog.get_logger()


@dataclass
class SubmissionResult:
    generation_id: str
    request_id: str
    published: bool
    publish_error: Optional[str] = None


def build_webhook_url(api_domain_url: str, kind: ResourceKind, token: str) -> str:
    return f"{api_domain_url.rstrip('/')}/{kind.webhook_domain}/{token}/webhook"


class SubmissionService:
    """Validates, submits and records new generation jobs."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        providers: ProviderRegistry,
        publisher: EventPublisher,
        token_codec: TokenCodec,
        correlation: CorrelationValidator,
        api_domain_url: str,
    ):
        """Initialize submission service.

        Args:
            uow_factory: Factory for UnitOfWork instances
            providers: Active provider adapter per resource kind
            publisher: Event bus publisher
            token_codec: Codec sealing generation_id into callback tokens
            correlation: Ownership check for referenced catalog entities
            api_domain_url: Public base URL providers call back into
        """
        self.uow_factory = uow_factory
        self.providers = providers
        self.publisher = publisher
        self.token_codec = token_codec
        self.correlation = correlation
        self.api_domain_url = api_domain_url

    async def submit(
        self,
        owner_ref: str,
        resource_kind: str,
        input_params: Any,
        correlation_refs: Any = None,
        generation_id: Optional[str] = None,
    ) -> SubmissionResult:
        """Submit a job to the active provider and record it.

        Args:
            owner_ref: Submitting owner
            resource_kind: image, video, audio or tuning
            input_params: Non-empty model input object
            correlation_refs: Opaque references carried through the lifecycle
            generation_id: Caller-supplied identifier (UUID4 generated if None)

        Returns:
            SubmissionResult with the generation_id and provider request_id

        Raises:
            ValidationError: Malformed input (nothing written)
            NotFoundError: Referenced entity not owned by owner_ref (nothing written)
            ProviderSubmissionError: Provider rejected the job (FAILED recorded first)
        """
        if not owner_ref:
            raise ValidationError("owner_ref is required")
        provider = self.providers.for_kind(resource_kind)
        kind = provider.resource_kind
        if not isinstance(input_params, dict) or not input_params:
            raise ValidationError("input_params must be a non-empty object")
        if correlation_refs is None:
            correlation_refs = {}
        if not isinstance(correlation_refs, dict):
            raise ValidationError("correlation_refs must be an object")

        await self.correlation.validate(owner_ref, correlation_refs)

        if generation_id is None:
            generation_id = str(uuid.uuid4())
        else:
            async with await self.uow_factory() as uow:
                if await uow.generations.exists(generation_id):
                    raise ValidationError(f"Generation {generation_id} already exists")

        webhook_url = build_webhook_url(
            self.api_domain_url, kind, self.token_codec.encode(generation_id)
        )
        context = GenerationContext(
            owner_ref=owner_ref, resource_kind=kind, correlation_refs=correlation_refs
        )
        record = GenerationRecord(
            generation_id=generation_id,
            owner_ref=owner_ref,
            resource_kind=kind,
            provider=provider.name,
            correlation_refs=correlation_refs,
        )

        try:
            submission = await provider.submit(input_params, {"webhook_url": webhook_url})
        except ProviderSubmissionError as e:
            await self._record_rejection(record, context, input_params, webhook_url, e)
            raise
        except Exception as e:
            # Adapter bug or unclassified failure: still leaves a FAILED trace
            error = ProviderSubmissionError(
                f"{provider.name} adapter error: {type(e).__name__}: {e}", provider=provider.name
            )
            await self._record_rejection(record, context, input_params, webhook_url, error)
            raise error from e

        submitted = SubmittedPayload(
            context=context,
            provider=provider.name,
            request_id=submission.request_id,
            provider_status=submission.status,
            input=input_params,
            webhook_url=webhook_url,
        )
        async with await self.uow_factory() as uow:
            await uow.generations.add(record)
            event = await uow.events.append(
                GenerationEvent(
                    generation_id=generation_id,
                    event_type=GenerationEventType.SUBMITTED,
                    payload=submitted.to_row(),
                )
            )

        logger.info(
            "submission.recorded",
            generation_id=generation_id,
            resource_kind=kind.value,
            provider=provider.name,
            request_id=submission.request_id,
        )

        publish_error = None
        try:
            await self.publisher.publish_submitted(
                kind,
                generation_id,
                {
                    "generation_id": generation_id,
                    "event_id": str(event.event_id),
                    "request_id": submission.request_id,
                    "provider": provider.name,
                    "context": context.model_dump(mode="json"),
                },
            )
        except PublishError as e:
            publish_error = str(e)
            logger.warning(
                "submission.publish_failed", generation_id=generation_id, error=publish_error
            )

        return SubmissionResult(
            generation_id=generation_id,
            request_id=submission.request_id,
            published=publish_error is None,
            publish_error=publish_error,
        )

    async def _record_rejection(
        self,
        record: GenerationRecord,
        context: GenerationContext,
        input_params: dict[str, Any],
        webhook_url: str,
        error: ProviderSubmissionError,
    ) -> None:
        logger.error(
            "submission.provider_failed",
            generation_id=record.generation_id,
            provider=record.provider,
            retryable=error.retryable,
            error=str(error),
        )

        submitted = SubmittedPayload(
            context=context,
            provider=record.provider,
            request_id=None,
            provider_status="rejected",
            input=input_params,
            webhook_url=webhook_url,
        )
        failed = FailedPayload(
            context=context,
            error=str(error) or type(error).__name__,
            stage="submission",
        )
        async with await self.uow_factory() as uow:
            await uow.generations.add(record)
            await uow.events.append(
                GenerationEvent(
                    generation_id=record.generation_id,
                    event_type=GenerationEventType.SUBMITTED,
                    payload=submitted.to_row(),
                )
            )
            event = await uow.events.append(
                GenerationEvent(
                    generation_id=record.generation_id,
                    event_type=GenerationEventType.FAILED,
                    payload=failed.to_row(),
                )
            )

        try:
            await self.publisher.publish_failed(
                context.resource_kind,
                record.generation_id,
                {
                    "generation_id": record.generation_id,
                    "event_id": str(event.event_id),
                    "stage": "submission",
                    "error": failed.error,
                    "context": context.model_dump(mode="json"),
                },
            )
        except PublishError as e:
            logger.warning(
                "submission.publish_failed", generation_id=record.generation_id, error=str(e)
            )
