"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- Requester identity (owner reference and admin flag set by the upstream gateway)
- Access to services created in the application lifespan
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Header, HTTPException, Request, status

from genflow.services.status import StatusQueryService
from genflow.services.submission import SubmissionService
from genflow.services.webhook import WebhookGateway

ADMIN_ROLE = "admin"


@dataclass
class Requester:
    owner_ref: str
    is_admin: bool = False


def get_requester(
    x_owner_ref: Annotated[str | None, Header()] = None,
    x_owner_role: Annotated[str | None, Header()] = None,
) -> Requester:
    """Resolve the caller from headers set by the authenticating gateway.

    Raises:
        HTTPException: 401 Unauthorized if X-Owner-Ref is missing
    """
    if not x_owner_ref:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Owner-Ref header"
        )
    return Requester(
        owner_ref=x_owner_ref,
        is_admin=(x_owner_role or "").lower() == ADMIN_ROLE,
    )


def get_submission_service(request: Request) -> SubmissionService:
    return request.app.state.submission_service


def get_webhook_gateway(request: Request) -> WebhookGateway:
    return request.app.state.webhook_gateway


def get_status_service(request: Request) -> StatusQueryService:
    return request.app.state.status_service
