"""Webhook Ingestion Gateway tests.

Tests focus on idempotent ingestion:
- First callback → POST_PROCESSING + post-process command
- Repeat callbacks after the provider stage → acknowledged, nothing written
- Failure callbacks → FAILED + failed event
- Undecodable tokens and unknown generations are rejected
"""

import pytest
import pytest_asyncio
from aiokafka.errors import KafkaTimeoutError

from genflow.models.generation import ResourceKind
from genflow.models.generation_event import GenerationEvent, GenerationEventType
from genflow.models.payloads import FailedPayload, PostProcessingPayload, parse_event_payload
from genflow.services.exceptions import InvalidTokenError, NotFoundError, ValidationError
from genflow.services.providers.fal import FalProvider
from genflow.services.providers.registry import ProviderRegistry
from genflow.services.webhook import WebhookGateway

SUCCESS_BODY = {
    "request_id": "req-1",
    "status": "OK",
    "payload": {"status": "completed", "output": {"key": "a/b.png", "bucket": "public"}},
}


@pytest_asyncio.fixture
async def submitted(submission_service, token_codec):
    result = await submission_service.submit(
        "u1", "image", {"prompt": "x"}, {"template_id": "t-1"}, generation_id="gen-1"
    )
    return token_codec.encode(result.generation_id)


@pytest.mark.asyncio
async def test_callback_records_post_processing(gateway, submitted, uow_factory, producer):
    ack = await gateway.handle_callback(submitted, SUCCESS_BODY)

    assert ack.status == "accepted"
    assert ack.generation_id == "gen-1"
    assert ack.event_type == GenerationEventType.POST_PROCESSING

    async with await uow_factory() as uow:
        latest = await uow.events.latest("gen-1")

    payload = parse_event_payload(latest.event_type, latest.payload)
    assert isinstance(payload, PostProcessingPayload)
    assert payload.provider_payload == SUCCESS_BODY["payload"]
    assert payload.context.owner_ref == "u1"
    assert payload.context.correlation_refs == {"template_id": "t-1"}
    assert payload.source == "webhook"

    command = producer.sent[-1]
    assert command["topic"] == "TEST.GENERATION.COMMAND.START_IMAGE_GENERATION_POST_PROCESS"
    assert command["key"] == "gen-1"
    assert command["value"]["data"]["event_id"] == str(latest.event_id)
    assert command["value"]["data"]["provider_payload"] == SUCCESS_BODY["payload"]


@pytest.mark.asyncio
async def test_duplicate_callback_is_acknowledged_without_writes(
    gateway, submitted, uow_factory, producer
):
    await gateway.handle_callback(submitted, SUCCESS_BODY)
    messages_after_first = len(producer.sent)

    ack = await gateway.handle_callback(submitted, SUCCESS_BODY)

    assert ack.status == "duplicate"
    assert ack.event_type == GenerationEventType.POST_PROCESSING
    assert len(producer.sent) == messages_after_first

    async with await uow_factory() as uow:
        events = await uow.events.all_events("gen-1")
    assert [e.event_type for e in events].count(GenerationEventType.POST_PROCESSING) == 1


@pytest.mark.asyncio
async def test_failure_callback_records_failed(gateway, submitted, uow_factory, producer):
    ack = await gateway.handle_callback(
        submitted, {"request_id": "req-1", "status": "ERROR", "error": "NSFW content detected"}
    )

    assert ack.status == "accepted"
    assert ack.event_type == GenerationEventType.FAILED

    async with await uow_factory() as uow:
        latest = await uow.events.latest("gen-1")
    payload = parse_event_payload(latest.event_type, latest.payload)
    assert isinstance(payload, FailedPayload)
    assert payload.error == "NSFW content detected"
    assert payload.stage == "callback"

    assert producer.topics()[-1] == "TEST.GENERATION.EVENT.IMAGE_GENERATION_FAILED"


@pytest.mark.asyncio
async def test_callback_after_terminal_state_is_duplicate(gateway, submitted, uow_factory):
    async with await uow_factory() as uow:
        await uow.events.append(
            GenerationEvent(
                generation_id="gen-1",
                event_type=GenerationEventType.COMPLETED,
                payload={"schema_version": 1, "output": {"key": "final.png"}},
            )
        )

    ack = await gateway.handle_callback(submitted, SUCCESS_BODY)

    assert ack.status == "duplicate"
    async with await uow_factory() as uow:
        latest = await uow.events.latest("gen-1")
    assert latest.event_type == GenerationEventType.COMPLETED


@pytest.mark.asyncio
async def test_callback_after_in_progress_is_recorded(gateway, submitted, uow_factory):
    async with await uow_factory() as uow:
        submitted_event = await uow.events.latest("gen-1")
        await uow.events.append(
            GenerationEvent(
                generation_id="gen-1",
                event_type=GenerationEventType.IN_PROGRESS,
                payload={
                    "schema_version": 1,
                    "context": submitted_event.payload["context"],
                    "provider_status": "IN_PROGRESS",
                },
            )
        )

    ack = await gateway.handle_callback(submitted, SUCCESS_BODY)

    assert ack.status == "accepted"
    assert ack.event_type == GenerationEventType.POST_PROCESSING


@pytest.mark.asyncio
async def test_publish_failure_still_accepts(gateway, submitted, uow_factory, producer):
    producer.send_error = KafkaTimeoutError()

    ack = await gateway.handle_callback(submitted, SUCCESS_BODY)

    assert ack.status == "accepted"
    async with await uow_factory() as uow:
        latest = await uow.events.latest("gen-1")
    assert latest.event_type == GenerationEventType.POST_PROCESSING


@pytest.mark.asyncio
async def test_invalid_token_rejected(gateway):
    with pytest.raises(InvalidTokenError):
        await gateway.handle_callback("deadbeef", SUCCESS_BODY)


@pytest.mark.asyncio
async def test_unknown_generation_not_found(gateway, token_codec):
    with pytest.raises(NotFoundError):
        await gateway.handle_callback(token_codec.encode("never-submitted"), SUCCESS_BODY)


@pytest.mark.asyncio
async def test_body_without_payload_wrapper_is_provider_payload(
    gateway, submission_service, token_codec, uow_factory, providers
):
    """Replicate posts the prediction object itself."""
    providers[ResourceKind.VIDEO].name = "replicate"
    await submission_service.submit("u1", "video", {"prompt": "x"}, generation_id="gen-r")
    prediction = {"id": "p-1", "status": "succeeded", "output": ["https://cdn/x.mp4"]}

    ack = await gateway.handle_callback(token_codec.encode("gen-r"), prediction)

    assert ack.event_type == GenerationEventType.POST_PROCESSING
    async with await uow_factory() as uow:
        latest = await uow.events.latest("gen-r")
    assert latest.payload["provider_payload"] == prediction


@pytest.mark.asyncio
async def test_fal_error_with_string_payload_records_failed(
    submitted, uow_factory, token_codec, publisher
):
    fal = FalProvider(ResourceKind.IMAGE, "fal-ai/flux-lora", api_key="fal-key")
    gateway = WebhookGateway(
        uow_factory=uow_factory,
        token_codec=token_codec,
        providers=ProviderRegistry({ResourceKind.IMAGE: fal}),
        publisher=publisher,
    )

    ack = await gateway.handle_callback(
        submitted, {"status": "ERROR", "payload": "upstream timeout"}
    )

    assert ack.event_type == GenerationEventType.FAILED
    async with await uow_factory() as uow:
        latest = await uow.events.latest("gen-1")
    payload = parse_event_payload(latest.event_type, latest.payload)
    assert payload.error == "upstream timeout"


@pytest.mark.asyncio
async def test_callback_for_another_kind_is_rejected(gateway, submitted, uow_factory):
    with pytest.raises(ValidationError):
        await gateway.handle_callback(submitted, SUCCESS_BODY, expected_kind=ResourceKind.VIDEO)

    async with await uow_factory() as uow:
        latest = await uow.events.latest("gen-1")
    assert latest.event_type == GenerationEventType.SUBMITTED

    ack = await gateway.handle_callback(submitted, SUCCESS_BODY, expected_kind=ResourceKind.IMAGE)
    assert ack.status == "accepted"
