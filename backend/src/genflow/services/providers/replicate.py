"""Replicate predictions API adapter with error classification."""

import asyncio
from typing import Any, Optional

import httpx
import replicate
import structlog

from genflow.models.generation import ResourceKind
from genflow.services.exceptions import ProviderQueryError, ProviderSubmissionError
from genflow.services.providers.base import (
    CallbackOutcome,
    GenerationProvider,
    ProviderStatus,
    ProviderSubmission,
)

logger = structlog.get_logger()

REPLICATE_FAILED_STATUSES = ("failed", "canceled")


def classify_error(exception: Exception) -> ProviderSubmissionError:
    """Classify a Replicate SDK exception.

    Args:
        exception: Original exception from Replicate SDK or network layer

    Returns:
        ProviderSubmissionError with retryable set for transient failures

    Classification rules:
        - Timeout, 429 (rate limit), 503, connection errors → retryable
        - 401/403 (authentication) → permanent
        - Content policy violations → permanent
        - Anything else → permanent
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()

    if "timeout" in error_message_lower:
        return ProviderSubmissionError(
            f"Network timeout: {error_message}", provider="replicate", retryable=True
        )

    if "429" in error_message or "rate limit" in error_message_lower:
        return ProviderSubmissionError(
            f"Rate limit exceeded: {error_message}", provider="replicate", retryable=True
        )

    if "503" in error_message or "service unavailable" in error_message_lower:
        return ProviderSubmissionError(
            f"Service unavailable: {error_message}", provider="replicate", retryable=True
        )

    if (
        "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "authentication" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return ProviderSubmissionError(
            f"Authentication failed: {error_message}", provider="replicate"
        )

    if (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
    ):
        return ProviderSubmissionError(
            f"Content policy violation: {error_message}", provider="replicate"
        )

    if isinstance(exception, (ConnectionError, OSError, httpx.TransportError)):
        return ProviderSubmissionError(
            f"Connection error: {error_message}", provider="replicate", retryable=True
        )

    return ProviderSubmissionError(f"Permanent error: {error_message}", provider="replicate")


class ReplicateProvider(GenerationProvider):
    """GenerationProvider backed by Replicate predictions.

    The Replicate SDK is synchronous, so every call runs in a worker thread.
    """

    name = "replicate"

    def __init__(
        self,
        resource_kind: ResourceKind,
        model_id: str,
        api_token: str,
        client: Optional[Any] = None,
    ):
        """Initialize Replicate adapter.

        Args:
            resource_kind: Resource kind this instance serves
            model_id: "owner/model" or "owner/model:version"
            api_token: Replicate API token (from REPLICATE_API_TOKEN env var)
            client: Optional preconfigured client (tests inject a stub)
        """
        super().__init__(resource_kind, model_id)
        self.client = client or replicate.Client(api_token=api_token)

    def _model_args(self) -> dict[str, str]:
        if ":" in self.model_id:
            return {"version": self.model_id.split(":", 1)[1]}
        return {"model": self.model_id}

    async def submit(self, input: dict[str, Any], options: dict[str, Any]) -> ProviderSubmission:
        params: dict[str, Any] = {"input": input, **self._model_args()}
        if options.get("webhook_url"):
            params["webhook"] = options["webhook_url"]
            params["webhook_events_filter"] = ["completed"]

        try:
            prediction = await asyncio.to_thread(self.client.predictions.create, **params)
        except Exception as e:
            # Includes the SDK's httpx transport errors; every failure must reach the ledger
            raise classify_error(e) from e

        logger.info(
            "provider.replicate.submitted",
            request_id=prediction.id,
            model_id=self.model_id,
            resource_kind=self.resource_kind.value,
        )
        return ProviderSubmission(request_id=prediction.id, status=prediction.status)

    async def _get_prediction(self, request_id: str) -> Any:
        try:
            return await asyncio.to_thread(self.client.predictions.get, request_id)
        except Exception as e:
            raise ProviderQueryError(f"Replicate query failed: {e}") from e

    async def check_status(self, request_id: str) -> ProviderStatus:
        prediction = await self._get_prediction(request_id)
        status = str(prediction.status)
        error = getattr(prediction, "error", None)

        return ProviderStatus(
            status=status,
            completed=status == "succeeded",
            failed=status in REPLICATE_FAILED_STATUSES,
            error=str(error) if error else None,
        )

    async def get_result(self, request_id: str) -> dict[str, Any]:
        prediction = await self._get_prediction(request_id)
        if prediction.status != "succeeded":
            raise ProviderQueryError(
                f"Replicate prediction {request_id} not completed (status={prediction.status})"
            )
        return {
            "id": prediction.id,
            "status": prediction.status,
            "output": prediction.output,
            "metrics": getattr(prediction, "metrics", None),
        }

    def interpret_callback(self, body: dict[str, Any]) -> CallbackOutcome:
        # Webhook body is the prediction object itself
        status = body.get("status")
        if status in REPLICATE_FAILED_STATUSES:
            return CallbackOutcome(failed=True, error=str(body.get("error") or f"status={status}"))
        return CallbackOutcome(failed=False)
