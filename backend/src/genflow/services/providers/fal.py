"""fal.ai queue API adapter.

Jobs are queued with POST {queue}/{model_id}?fal_webhook=<url>; fal calls the
webhook with {"request_id", "status": "OK"|"ERROR", "payload", "error"}.
Status and result live under {queue}/{app_id}/requests/{request_id}, where
app_id is the owner/app prefix of the model id.
"""

from typing import Any, Optional

import httpx
import structlog

from genflow.models.generation import ResourceKind
from genflow.services.exceptions import ProviderQueryError, ProviderSubmissionError
from genflow.services.providers.base import (
    CallbackOutcome,
    GenerationProvider,
    ProviderStatus,
    ProviderSubmission,
    default_interpret_callback,
)

logger = structlog.get_logger()


def _json_object(response: httpx.Response) -> Optional[dict[str, Any]]:
    """Decode a JSON object body; None for anything else."""
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class FalProvider(GenerationProvider):
    """GenerationProvider backed by the fal.ai queue."""

    name = "fal"

    def __init__(
        self,
        resource_kind: ResourceKind,
        model_id: str,
        api_key: str,
        queue_url: str = "https://queue.fal.run",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize fal adapter.

        Args:
            resource_kind: Resource kind this instance serves
            model_id: fal model endpoint (e.g. "fal-ai/flux-lora")
            api_key: fal API key (from FAL_API_KEY env var)
            queue_url: Queue API base URL
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject MockTransport)
        """
        super().__init__(resource_kind, model_id)
        self.queue_url = queue_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.headers = {
            "Authorization": f"Key {api_key}",
            "Content-Type": "application/json",
        }

    @property
    def app_id(self) -> str:
        return "/".join(self.model_id.split("/")[:2])

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def submit(self, input: dict[str, Any], options: dict[str, Any]) -> ProviderSubmission:
        params = {}
        if options.get("webhook_url"):
            params["fal_webhook"] = options["webhook_url"]

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.queue_url}/{self.model_id}",
                    headers=self.headers,
                    params=params,
                    json=input,
                )
        except httpx.TimeoutException as e:
            raise ProviderSubmissionError(
                f"fal request timeout after {self.timeout}s: {e}",
                provider=self.name,
                retryable=True,
            ) from e
        except httpx.HTTPError as e:
            raise ProviderSubmissionError(
                f"fal network error: {e}", provider=self.name, retryable=True
            ) from e

        if response.status_code in (401, 403):
            raise ProviderSubmissionError(
                f"fal authentication failed ({response.status_code}). Check FAL_API_KEY.",
                provider=self.name,
            )
        if response.status_code in (400, 422):
            raise ProviderSubmissionError(
                f"fal rejected input ({response.status_code}): {response.text}",
                provider=self.name,
            )
        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderSubmissionError(
                f"fal unavailable ({response.status_code}): {response.text}",
                provider=self.name,
                retryable=True,
            )
        if response.status_code >= 300:
            raise ProviderSubmissionError(
                f"fal unexpected response ({response.status_code}): {response.text}",
                provider=self.name,
            )

        data = _json_object(response)
        if data is None:
            raise ProviderSubmissionError(
                f"fal returned a non-JSON body ({response.status_code}): {response.text[:200]}",
                provider=self.name,
            )
        request_id = data.get("request_id")
        if not request_id:
            raise ProviderSubmissionError(
                "fal response did not include request_id", provider=self.name
            )

        logger.info(
            "provider.fal.submitted",
            request_id=request_id,
            model_id=self.model_id,
            resource_kind=self.resource_kind.value,
        )
        return ProviderSubmission(
            request_id=request_id, status=data.get("status", "IN_QUEUE"), raw=data
        )

    async def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.queue_url}/{self.app_id}/{path}",
                    headers=self.headers,
                    params=params,
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderQueryError(
                f"fal query failed ({e.response.status_code}): {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderQueryError(f"fal network error: {e}") from e

        data = _json_object(response)
        if data is None:
            raise ProviderQueryError(
                f"fal returned a non-JSON body ({response.status_code}): {response.text[:200]}"
            )
        return data

    async def check_status(self, request_id: str) -> ProviderStatus:
        data = await self._get(f"requests/{request_id}/status", params={"logs": 1})
        status = str(data.get("status", "UNKNOWN"))
        error = data.get("error")

        logger.debug("provider.fal.status", request_id=request_id, status=status)
        return ProviderStatus(
            status=status,
            completed=status == "COMPLETED" and not error,
            failed=bool(error) or status.lower() in ("error", "failed"),
            error=str(error) if error else None,
            raw=data,
        )

    async def get_result(self, request_id: str) -> dict[str, Any]:
        return await self._get(f"requests/{request_id}")

    def interpret_callback(self, body: dict[str, Any]) -> CallbackOutcome:
        # fal reports the outcome at the top level: status "OK" or "ERROR"
        status = body.get("status")
        if status == "ERROR":
            payload = body.get("payload")
            if isinstance(payload, dict):
                detail = payload.get("detail")
            else:
                detail = payload if isinstance(payload, str) else None
            error = body.get("error") or detail
            return CallbackOutcome(failed=True, error=str(error or "fal reported ERROR"))
        if status == "OK":
            return CallbackOutcome(failed=False)
        return default_interpret_callback(body)
