"""
Call logging routes.
Manual entry point for recording an answered call as a Sales Call.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.infrastructure.observability.logging import get_logger
from app.models.api.call_request import LogCallRequest
from app.models.api.call_response import LogCallResponse
from app.routes.dependencies import get_call_processor
from app.services.call_processor import CallProcessor

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["calls"])


@router.post("/log-call", response_model=LogCallResponse)
async def log_call(request: LogCallRequest, processor: CallProcessor = Depends(get_call_processor)):
    """Look the call up in Zoom and upsert it into the Sales Calls list."""
    logger.info("Logging answered call", call_id=request.call_id)

    try:
        result = await processor.log_call(
            request.call_id,
            contact=request.contact,
            summary=request.summary,
            priority=request.priority,
            status=request.status,
        )
    except Exception as e:
        logger.error("Error logging call", call_id=request.call_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return LogCallResponse(list_item_id=result.id)
