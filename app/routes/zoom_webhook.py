"""
Zoom Webhook Routes
Receives Zoom Phone events, verifies their signature and queues the work.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from app.config import Settings
from app.infrastructure.observability.logging import get_logger
from app.models.api.call_response import WebhookAckResponse
from app.models.domain.zoom_domain import ZoomWebhookEvent
from app.routes.dependencies import get_app_settings, get_queue_service
from app.services.event_classifier import ClassifiedJob, classify_event
from app.services.queue_service import QueueService
from app.utils.webhook_validator import validate_zoom_webhook

logger = get_logger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["webhooks"])

TIMESTAMP_HEADER = "x-zm-request-timestamp"
SIGNATURE_HEADER = "x-zm-signature"


@router.post("/zoom", response_model=WebhookAckResponse)
async def receive_zoom_webhook(
    request: Request,
    queue_service: QueueService = Depends(get_queue_service),
    app_settings: Settings = Depends(get_app_settings),
):
    """Verify, classify and enqueue a Zoom Phone webhook."""
    timestamp = request.headers.get(TIMESTAMP_HEADER)
    signature = request.headers.get(SIGNATURE_HEADER)

    if not timestamp or not signature:
        logger.warning("Missing Zoom webhook headers")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required headers"
        )

    body = await request.body()
    secret = app_settings.ZOOM_WEBHOOK_SECRET_TOKEN or ""
    if not validate_zoom_webhook(body, timestamp, signature, secret):
        logger.warning("Invalid webhook signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        event = ZoomWebhookEvent.model_validate_json(body)
    except ValidationError as e:
        logger.warning("Malformed webhook payload", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    logger.info("Received Zoom webhook", event_type=event.event, event_ts=event.event_ts)

    try:
        outcome = classify_event(event)
        if isinstance(outcome, ClassifiedJob):
            await queue_service.enqueue(outcome)
        else:
            logger.info("Webhook ignored", event_type=event.event, reason=outcome.reason)
    except Exception as e:
        logger.error("Error processing webhook", event_type=event.event, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error"
        )

    return WebhookAckResponse()
