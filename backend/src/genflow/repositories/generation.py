"""GenerationRecord repository.

Provides data access methods for GenerationRecord entities.
"""

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from genflow.models.generation import GenerationRecord


class GenerationRecordRepository:
    """Repository for GenerationRecord entities.

    Records are inserted once at submission and never updated.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, record: GenerationRecord) -> GenerationRecord:
        """Persist a new generation record.

        Args:
            record: GenerationRecord entity to persist

        Returns:
            Persisted record
        """
        self.session.add(record)
        await self.session.flush()
        return record

    async def get_by_id(self, generation_id: str) -> GenerationRecord | None:
        """Retrieve a generation record by its generation_id.

        Args:
            generation_id: Generation identifier

        Returns:
            GenerationRecord if found, None otherwise
        """
        result = await self.session.execute(
            select(GenerationRecord).where(GenerationRecord.generation_id == generation_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def exists(self, generation_id: str) -> bool:
        """Check whether a generation_id is already taken."""
        result = await self.session.execute(
            select(exists().where(GenerationRecord.generation_id == generation_id))  # type: ignore[arg-type]
        )
        return bool(result.scalar())
