"""pytest fixtures for genflow backend tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped in-memory SQLite database with ledger tables
- session / uow_factory: Database access for repository and service tests
- fakes: Kafka producer, provider adapter and storage signer stand-ins
- services: Submission, webhook and status services wired to the fakes
"""

import os

# Settings fail-fast validation is skipped in test environments
os.environ["APP_ENV"] = "test"

from typing import Any, AsyncGenerator, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from genflow.core.database import create_all_tables, setup_db_session  # noqa: E402
from genflow.models.generation import ResourceKind  # noqa: E402
from genflow.services.correlation import TrustingCorrelationValidator  # noqa: E402
from genflow.services.events.publisher import EventPublisher  # noqa: E402
from genflow.services.providers.base import (  # noqa: E402
    GenerationProvider,
    ProviderStatus,
    ProviderSubmission,
)
from genflow.services.providers.registry import ProviderRegistry  # noqa: E402
from genflow.services.status import StatusQueryService  # noqa: E402
from genflow.services.submission import SubmissionService  # noqa: E402
from genflow.services.tokens import AesGcmTokenCodec  # noqa: E402
from genflow.services.webhook import WebhookGateway  # noqa: E402
from genflow.uow import create_uow_factory  # noqa: E402

TEST_TOKEN_KEY = bytes(range(32))
API_DOMAIN_URL = "https://api.test"


class FakeProducer:
    """In-memory stand-in for AIOKafkaProducer."""

    def __init__(self, start_failures: int = 0, send_error: Optional[Exception] = None):
        self.start_failures = start_failures
        self.send_error = send_error
        self.start_calls = 0
        self.started = False
        self.sent: list[dict[str, Any]] = []

    async def start(self) -> None:
        from aiokafka.errors import KafkaConnectionError

        self.start_calls += 1
        if self.start_calls <= self.start_failures:
            raise KafkaConnectionError("Unable to bootstrap from localhost:9092")
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def send_and_wait(self, topic: str, value: Any = None, key: Any = None) -> Any:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append({"topic": topic, "value": value, "key": key})
        return None

    def topics(self) -> list[str]:
        return [message["topic"] for message in self.sent]


class FakeProvider(GenerationProvider):
    """Provider adapter with scripted responses."""

    def __init__(self, resource_kind: ResourceKind, name: str = "fal"):
        super().__init__(resource_kind, f"test/{resource_kind.value}-model")
        self.name = name
        self.submit_error: Optional[Exception] = None
        self.submissions: list[dict[str, Any]] = []
        self.status = ProviderStatus(status="IN_QUEUE")
        self.status_error: Optional[Exception] = None
        self.result: dict[str, Any] = {}

    async def submit(self, input: dict[str, Any], options: dict[str, Any]) -> ProviderSubmission:
        if self.submit_error is not None:
            raise self.submit_error
        self.submissions.append({"input": input, "options": options})
        return ProviderSubmission(
            request_id=f"req-{len(self.submissions)}", status="IN_QUEUE"
        )

    async def check_status(self, request_id: str) -> ProviderStatus:
        if self.status_error is not None:
            raise self.status_error
        return self.status

    async def get_result(self, request_id: str) -> dict[str, Any]:
        return self.result


class FakeStorageSigner:
    """Signs URLs deterministically and records each request."""

    def __init__(self):
        self.calls: list[tuple[str, str, int]] = []

    async def generate_presigned_download_url(self, key: str, expires_in: int) -> str:
        self.calls.append(("durable", key, expires_in))
        return f"https://signed.test/{key}?expires={expires_in}"

    async def generate_ephemeral_presigned_download_url(self, key: str, expires_in: int) -> str:
        self.calls.append(("ephemeral", key, expires_in))
        return f"https://ephemeral.test/{key}?expires={expires_in}"


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Provide a fresh in-memory database with ledger tables for each test."""
    session_factory = setup_db_session("sqlite+aiosqlite://", pool_size=5)
    engine = session_factory.kw["bind"]
    await create_all_tables(engine)

    yield session_factory

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def token_codec() -> AesGcmTokenCodec:
    return AesGcmTokenCodec(TEST_TOKEN_KEY)


@pytest.fixture
def producer() -> FakeProducer:
    return FakeProducer()


@pytest.fixture
def publisher(producer) -> EventPublisher:
    return EventPublisher(producer, environment="test", retry_delay_seconds=0)


@pytest.fixture
def providers() -> dict[ResourceKind, FakeProvider]:
    return {kind: FakeProvider(kind) for kind in ResourceKind}


@pytest.fixture
def provider_registry(providers) -> ProviderRegistry:
    return ProviderRegistry(providers)


@pytest.fixture
def storage() -> FakeStorageSigner:
    return FakeStorageSigner()


@pytest.fixture
def gateway(uow_factory, token_codec, provider_registry, publisher) -> WebhookGateway:
    return WebhookGateway(
        uow_factory=uow_factory,
        token_codec=token_codec,
        providers=provider_registry,
        publisher=publisher,
    )


@pytest.fixture
def submission_service(
    uow_factory, provider_registry, publisher, token_codec
) -> SubmissionService:
    return SubmissionService(
        uow_factory=uow_factory,
        providers=provider_registry,
        publisher=publisher,
        token_codec=token_codec,
        correlation=TrustingCorrelationValidator(),
        api_domain_url=API_DOMAIN_URL,
    )


@pytest.fixture
def status_service(uow_factory, storage) -> StatusQueryService:
    return StatusQueryService(uow_factory=uow_factory, storage=storage, url_expiry_seconds=900)


@pytest.fixture
def polling_status_service(uow_factory, storage, provider_registry, gateway) -> StatusQueryService:
    return StatusQueryService(
        uow_factory=uow_factory,
        storage=storage,
        url_expiry_seconds=900,
        providers=provider_registry,
        gateway=gateway,
        poll_fallback=True,
    )


@pytest_asyncio.fixture
async def test_client(
    session_factory, uow_factory, submission_service, gateway, status_service
) -> AsyncGenerator[AsyncClient, None]:
    """Provide AsyncClient for API endpoints with services injected into app.state."""
    from genflow.app import app

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.submission_service = submission_service
    app.state.webhook_gateway = gateway
    app.state.status_service = status_service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
