from genflow.services.events.publisher import EventPublisher
from genflow.services.events.topics import MessageKind

__all__ = ["EventPublisher", "MessageKind"]
