"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from genflow.models.generation import GenerationRecord, ResourceKind
from genflow.models.generation_event import GenerationEvent, GenerationEventType

__all__ = [
    "GenerationRecord",
    "ResourceKind",
    "GenerationEvent",
    "GenerationEventType",
]
