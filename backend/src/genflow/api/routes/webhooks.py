"""Provider webhook endpoints.

Providers call back to /{domain}/{token}/webhook, where domain names the
resource kind (image-generations, video-generations, audio-generations,
tuning-sessions) and token is the sealed generation_id issued at submission.

Delivery is at least once. Duplicates are acknowledged with 200 so the
provider stops retrying; only requests that can never succeed get 4xx.
"""

import json

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status

from genflow.api.dependencies import get_webhook_gateway
from genflow.models.generation import ResourceKind
from genflow.services.exceptions import InvalidTokenError, NotFoundError, ValidationError
from genflow.services.webhook import WebhookGateway

logger = structlog.get_logger()
router = APIRouter()


@router.post("/{domain}/{token}/webhook", status_code=status.HTTP_200_OK)
async def receive_provider_webhook(
    domain: str,
    token: str,
    request: Request,
    gateway: WebhookGateway = Depends(get_webhook_gateway),
):
    """Receive a provider completion callback.

    HTTP Status Codes:
        200: Callback recorded, or duplicate acknowledged without changes
        400: Unknown domain, undecryptable token, non-JSON body, or a token
             for a generation of another resource kind
        404: Token decodes to a generation with no ledger events
        500: Ledger write failed (provider retry is correct)
    """
    kind = ResourceKind.from_webhook_domain(domain)
    if kind is None:
        logger.warning("webhook.unknown_domain", domain=domain)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown webhook domain: {domain}"
        )

    raw_body = await request.body()
    try:
        body = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.error("webhook.invalid_json", domain=domain, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid JSON payload: {str(e)}",
        )
    if not isinstance(body, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook body must be a JSON object"
        )

    try:
        ack = await gateway.handle_callback(token, body, expected_kind=kind)
    except InvalidTokenError as e:
        logger.warning("webhook.invalid_token", domain=domain, error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid token")
    except NotFoundError:
        logger.warning("webhook.unknown_generation", domain=domain)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found")
    except ValidationError as e:
        logger.warning("webhook.domain_mismatch", domain=domain, error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(
        "webhook.received",
        domain=domain,
        generation_id=ack.generation_id,
        status=ack.status,
        event_type=ack.event_type.value,
    )
    return {"received": True, "status": ack.status}
