"""Kafka event bus publisher.

One long-lived AIOKafkaProducer per process. Connection is established once at
startup with bounded retries; publishing after boot is a single attempt and
failures surface as PublishError. The ledger is the source of truth, so
callers log publish failures instead of rolling back.
"""

import asyncio
import json
from typing import Any, Optional, Protocol

import structlog
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from genflow.models.generation import ResourceKind
from genflow.services.events.topics import (
    MessageKind,
    build_envelope,
    build_topic,
    failed_event_name,
    post_process_command_name,
    submitted_event_name,
)
from genflow.services.exceptions import ConnectionFatalError, PublishError

logger = structlog.get_logger()


class Producer(Protocol):
    """Subset of AIOKafkaProducer used by the publisher."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def send_and_wait(self, topic: str, value: Any = None, key: Any = None) -> Any: ...


def _serialize(value: dict[str, Any]) -> bytes:
    return json.dumps(value, default=str).encode("utf-8")


class EventPublisher:
    """Publishes lifecycle commands and events to Kafka."""

    def __init__(
        self,
        producer: Producer,
        environment: str,
        producer_name: str = "api-server",
        max_retries: int = 5,
        retry_delay_seconds: float = 5.0,
    ):
        """Initialize publisher.

        Args:
            producer: Kafka producer (AIOKafkaProducer in production)
            environment: Topic environment segment
            producer_name: Name written to envelope metadata
            max_retries: Connection attempts at startup
            retry_delay_seconds: Delay between connection attempts
        """
        self.producer = producer
        self.environment = environment
        self.producer_name = producer_name
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.connected = False

    @classmethod
    def from_settings(cls, settings) -> "EventPublisher":
        producer = AIOKafkaProducer(
            bootstrap_servers=settings.kafka_brokers_list,
            client_id=settings.kafka_client_id,
            value_serializer=_serialize,
            key_serializer=lambda key: key.encode("utf-8") if key is not None else None,
            acks="all",
        )
        return cls(
            producer=producer,
            environment=settings.topic_environment,
            producer_name=settings.event_producer_name,
            max_retries=settings.kafka_max_retries,
            retry_delay_seconds=settings.kafka_retry_delay_seconds,
        )

    async def start(self) -> None:
        """Connect to the broker.

        Raises:
            ConnectionFatalError: Broker unreachable after max_retries attempts
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                await self.producer.start()
                self.connected = True
                logger.info("publisher.connected", attempt=attempt)
                return
            except (KafkaError, OSError) as e:
                last_error = e
                logger.warning(
                    "publisher.connect_failed",
                    attempt=attempt,
                    max_retries=self.max_retries,
                    error=str(e),
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay_seconds)

        logger.error("publisher.connect_exhausted", max_retries=self.max_retries)
        raise ConnectionFatalError(
            f"Kafka unreachable after {self.max_retries} attempts: {last_error}"
        ) from last_error

    async def stop(self) -> None:
        if not self.connected:
            return
        await self.producer.stop()
        self.connected = False
        logger.info("publisher.stopped")

    async def publish(
        self,
        kind: ResourceKind,
        message_kind: MessageKind,
        name: str,
        key: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        """Publish one message.

        Args:
            kind: Resource kind (selects the topic domain)
            message_kind: Command or event
            name: Event/command name (topic verb and envelope "event")
            key: Message key (generation_id)
            data: Envelope data

        Returns:
            The envelope that was sent

        Raises:
            PublishError: Broker rejected or could not receive the message
        """
        topic = build_topic(self.environment, kind, message_kind, name)
        envelope = build_envelope(name, data, self.producer_name, self.environment)

        try:
            await self.producer.send_and_wait(topic, value=envelope, key=key)
        except (KafkaError, OSError) as e:
            logger.error("publisher.publish_failed", topic=topic, key=key, error=str(e))
            raise PublishError(f"Failed to publish to {topic}: {e}") from e

        logger.info("publisher.published", topic=topic, key=key, event_id=envelope["event_id"])
        return envelope

    async def publish_submitted(self, kind: ResourceKind, generation_id: str, data: dict[str, Any]):
        return await self.publish(
            kind, MessageKind.EVENT, submitted_event_name(kind), generation_id, data
        )

    async def publish_post_process(
        self, kind: ResourceKind, generation_id: str, data: dict[str, Any]
    ):
        return await self.publish(
            kind, MessageKind.COMMAND, post_process_command_name(kind), generation_id, data
        )

    async def publish_failed(self, kind: ResourceKind, generation_id: str, data: dict[str, Any]):
        return await self.publish(
            kind, MessageKind.EVENT, failed_event_name(kind), generation_id, data
        )
