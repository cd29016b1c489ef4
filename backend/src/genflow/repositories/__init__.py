"""Repository layer for genflow.

Provides data access abstractions for generation records and the event ledger.
No base classes - each repository is self-contained.
"""

from genflow.repositories.generation import GenerationRecordRepository
from genflow.repositories.generation_event import GenerationEventRepository

__all__ = [
    "GenerationRecordRepository",
    "GenerationEventRepository",
]
