"""Unit of Work for genflow.

One UnitOfWork is one database transaction over the generation record and
event ledger repositories.
"""

from typing import Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from genflow.repositories.generation import GenerationRecordRepository
from genflow.repositories.generation_event import GenerationEventRepository

logger = structlog.get_logger()


class UnitOfWork:
    """Transaction scope exposing the ledger repositories.

    Commits when the block exits cleanly and rolls back when it raises; the
    session is closed either way.

    Example:
        async with await uow_factory() as uow:
            await uow.generations.add(record)
            await uow.events.append(submitted_event)
            # Record and first event commit together
    """

    def __init__(self, session: AsyncSession):
        self.session = session

        self.generations = GenerationRecordRepository(session)
        self.events = GenerationEventRepository(session)

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.info("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        # Never suppress the exception
        return False


UnitOfWorkFactory = Callable[[], Awaitable[UnitOfWork]]


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]) -> UnitOfWorkFactory:
    """Bind a session factory into a UnitOfWork factory.

    Every call opens a fresh session, so concurrent requests and workers
    never share a transaction.

    Example:
        uow_factory = create_uow_factory(setup_db_session(db_url))

        async with await uow_factory() as uow:
            latest = await uow.events.latest(generation_id)
    """

    async def new_unit_of_work() -> UnitOfWork:
        return UnitOfWork(session_factory())

    return new_unit_of_work
