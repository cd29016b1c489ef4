"""Topic names and event envelopes for the generation event bus.

Topics follow {env}.{domain}.{command|event}.{verb}, upper-cased when
published, e.g. PRODUCTION.GENERATION.EVENT.IMAGE_GENERATION_FAILED.
"""

import uuid
from enum import Enum
from typing import Any

from genflow.core.timezone import utcnow
from genflow.models.generation import ResourceKind

ENVELOPE_VERSION = "v1"


class MessageKind(str, Enum):
    COMMAND = "command"
    EVENT = "event"


def submitted_event_name(kind: ResourceKind) -> str:
    return f"{kind.value}_generation_request_submitted"


def post_process_command_name(kind: ResourceKind) -> str:
    return f"start_{kind.value}_generation_post_process"


def failed_event_name(kind: ResourceKind) -> str:
    return f"{kind.value}_generation_failed"


def build_topic(environment: str, kind: ResourceKind, message_kind: MessageKind, verb: str) -> str:
    """Build the full topic name for a message.

    Args:
        environment: Deployment environment segment (e.g. "production")
        kind: Resource kind, which selects the domain segment
        message_kind: Command or event
        verb: Event or command name

    Returns:
        Upper-cased topic name
    """
    return f"{environment}.{kind.topic_domain}.{message_kind.value}.{verb}".upper()


def build_envelope(
    event: str, data: dict[str, Any], producer: str, environment: str
) -> dict[str, Any]:
    """Wrap message data in the bus envelope."""
    return {
        "event_id": str(uuid.uuid4()),
        "event": event,
        "event_time": utcnow().isoformat() + "Z",
        "version": ENVELOPE_VERSION,
        "data": data,
        "metadata": {
            "producer": producer,
            "environment": environment,
        },
    }
