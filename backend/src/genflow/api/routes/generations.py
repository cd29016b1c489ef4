"""Generation submission and status API endpoints.

This module implements:
- POST /api/generations - Submit a generation job to the active provider
- GET /api/generations/{generation_id} - Current state of a generation
- GET /api/generations/{generation_id}/events - Lifecycle audit trail

Requests are scoped to the caller identified by X-Owner-Ref. Generations
owned by someone else are reported as not found.
"""

from datetime import datetime
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from genflow.api.dependencies import (
    Requester,
    get_requester,
    get_status_service,
    get_submission_service,
)
from genflow.services.exceptions import (
    GenflowError,
    NotFoundError,
    ProviderSubmissionError,
    ValidationError,
)
from genflow.services.status import StatusQueryService
from genflow.services.submission import SubmissionService

logger = structlog.get_logger()
router = APIRouter(prefix="/api/generations", tags=["generations"])


# Request/Response Models


class SubmitGenerationRequest(BaseModel):
    """Request model for submitting a generation."""

    resource_kind: str = Field(
        ...,
        description="Kind of resource to generate (image, video, audio, tuning)",
    )
    input_params: dict[str, Any] = Field(
        ...,
        description="Model input parameters forwarded to the provider",
    )
    correlation_refs: dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque references (template_id, character_id, ...) "
        "carried through the lifecycle",
    )
    generation_id: Optional[str] = Field(
        default=None,
        description="Caller-supplied identifier (generated if omitted)",
        max_length=64,
    )


class SubmitGenerationResponse(BaseModel):
    generation_id: str


class GenerationStatusResponse(BaseModel):
    """Current state of a generation."""

    generation_id: str
    event_type: str = Field(
        ...,
        description="Latest lifecycle event "
        "(SUBMITTED, IN_PROGRESS, POST_PROCESSING, COMPLETED, FAILED)",
    )
    created_at: datetime = Field(..., description="When the latest event was recorded (UTC)")
    payload: Optional[dict[str, Any]] = Field(
        default=None,
        description="Result with signed URLs (COMPLETED/POST_PROCESSING only)",
    )


class GenerationEventResponse(BaseModel):
    event_id: str
    event_type: str
    created_at: datetime
    payload: Optional[dict[str, Any]] = None


# API Endpoints


@router.post(
    "", response_model=SubmitGenerationResponse, status_code=status.HTTP_202_ACCEPTED
)
async def submit_generation(
    request: SubmitGenerationRequest,
    requester: Requester = Depends(get_requester),
    submission_service: SubmissionService = Depends(get_submission_service),
) -> SubmitGenerationResponse:
    """Submit a generation job.

    Returns as soon as the provider has queued the job; results arrive later
    through the provider webhook.

    Raises:
        HTTPException 400: Invalid input
        HTTPException 404: Referenced template/character not found for this owner
        HTTPException 500: Provider rejected the job (recorded as FAILED)
    """
    try:
        result = await submission_service.submit(
            owner_ref=requester.owner_ref,
            resource_kind=request.resource_kind,
            input_params=request.input_params,
            correlation_refs=request.correlation_refs,
            generation_id=request.generation_id,
        )
        return SubmitGenerationResponse(generation_id=result.generation_id)

    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ProviderSubmissionError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Provider rejected the generation: {e}",
        )
    except GenflowError as e:
        logger.error(
            "generation.submit_failed",
            owner_ref=requester.owner_ref,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.get(
    "/{generation_id}",
    response_model=GenerationStatusResponse,
    response_model_exclude_unset=True,
    status_code=status.HTTP_200_OK,
)
async def get_generation_status(
    generation_id: str,
    requester: Requester = Depends(get_requester),
    status_service: StatusQueryService = Depends(get_status_service),
) -> GenerationStatusResponse:
    """Get the current state of a generation.

    Raises:
        HTTPException 404: Unknown generation, or not owned by the caller
    """
    try:
        view = await status_service.get_status(
            generation_id, requester.owner_ref, is_admin=requester.is_admin
        )
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found")
    except GenflowError as e:
        logger.error("generation.status_failed", generation_id=generation_id, error=str(e))
        raise HTTPException(status_code=e.status_code, detail=str(e))

    fields: dict[str, Any] = {
        "generation_id": view.generation_id,
        "event_type": view.event_type.value,
        "created_at": view.created_at,
    }
    # payload is left out of the body, not null, outside COMPLETED/POST_PROCESSING
    if view.payload is not None:
        fields["payload"] = view.payload
    return GenerationStatusResponse(**fields)


@router.get(
    "/{generation_id}/events",
    response_model=list[GenerationEventResponse],
    status_code=status.HTTP_200_OK,
)
async def list_generation_events(
    generation_id: str,
    requester: Requester = Depends(get_requester),
    status_service: StatusQueryService = Depends(get_status_service),
) -> list[GenerationEventResponse]:
    """Get the lifecycle audit trail of a generation, oldest first.

    Payloads are included for administrators only.
    """
    try:
        events = await status_service.list_events(
            generation_id, requester.owner_ref, is_admin=requester.is_admin
        )
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found")

    return [
        GenerationEventResponse(
            event_id=event.event_id,
            event_type=event.event_type.value,
            created_at=event.created_at,
            payload=event.payload,
        )
        for event in events
    ]
