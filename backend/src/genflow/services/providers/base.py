"""Provider adapter capability interface.

Every external generation backend is hidden behind GenerationProvider. One
instance serves one resource kind (it knows which model to call); variants
share no state beyond their configuration.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from genflow.models.generation import ResourceKind

FAILED_STATUSES = frozenset({"error", "failed", "failure", "canceled", "cancelled"})


@dataclass
class ProviderSubmission:
    """Provider acknowledgement of a queued job."""

    request_id: str
    status: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderStatus:
    """Result of a synchronous status poll."""

    status: str
    completed: bool = False
    failed: bool = False
    error: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def running(self) -> bool:
        return not (self.completed or self.failed)


@dataclass
class CallbackOutcome:
    """How a provider callback should be recorded."""

    failed: bool
    error: Optional[str] = None


def default_interpret_callback(body: dict[str, Any]) -> CallbackOutcome:
    """Detect an explicit failure signal in a callback body.

    Looks for a failed/error/canceled status or an error field, first at the
    top level of the body and then inside its "payload" object.

    Args:
        body: Parsed webhook body

    Returns:
        CallbackOutcome with failed=True only for explicit failure signals
    """
    candidates = [body]
    nested = body.get("payload")
    if isinstance(nested, dict):
        candidates.append(nested)

    for candidate in candidates:
        status = candidate.get("status")
        error = candidate.get("error")
        if isinstance(status, str) and status.lower() in FAILED_STATUSES:
            return CallbackOutcome(failed=True, error=_error_text(error) or f"status={status}")
        if error:
            return CallbackOutcome(failed=True, error=_error_text(error))

    return CallbackOutcome(failed=False)


def _error_text(error: Any) -> Optional[str]:
    if not error:
        return None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("detail") or error)
    return str(error)


class GenerationProvider(ABC):
    """Capability interface implemented once per external backend."""

    name: str = ""

    def __init__(self, resource_kind: ResourceKind, model_id: str):
        self.resource_kind = resource_kind
        self.model_id = model_id

    @abstractmethod
    async def submit(self, input: dict[str, Any], options: dict[str, Any]) -> ProviderSubmission:
        """Queue a job on the backend.

        Args:
            input: Model input parameters
            options: Submission options; "webhook_url" is the callback the
                backend must invoke on completion

        Returns:
            ProviderSubmission with the backend request_id

        Raises:
            ProviderSubmissionError: Network, authentication or validation failure.
                Never retried internally.
        """

    @abstractmethod
    async def check_status(self, request_id: str) -> ProviderStatus:
        """Poll job status (fallback path only).

        Raises:
            ProviderQueryError: Backend unreachable or request unknown
        """

    @abstractmethod
    async def get_result(self, request_id: str) -> dict[str, Any]:
        """Fetch the final result of a completed job.

        Raises:
            ProviderQueryError: Backend unreachable or job not completed
        """

    def interpret_callback(self, body: dict[str, Any]) -> CallbackOutcome:
        """Decide whether a webhook body reports success or failure."""
        return default_interpret_callback(body)
