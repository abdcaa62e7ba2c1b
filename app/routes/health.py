# app/routes/health.py
"""
Health and operational endpoints: liveness, queue counts, Graph connectivity.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, status

from app.config import Settings
from app.infrastructure.observability.logging import get_logger
from app.models.api.call_response import (
    GraphConnectionResponse,
    HealthResponse,
    QueueStatusResponse,
)
from app.routes.dependencies import get_app_settings, get_graph_service, get_queue_service
from app.services.graph.graph_client import GraphService
from app.services.queue_service import QueueService

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/")
async def index():
    """Service index."""
    return {
        "service": "zoom-sales-relay",
        "endpoints": {
            "health": "/api/health",
            "queueStatus": "/api/queue-status",
            "webhook": "/api/webhook/zoom",
            "logCall": "/api/log-call",
            "testGraph": "/api/test-graph",
        },
    }


@router.get("/api/health", response_model=HealthResponse)
async def health(app_settings: Settings = Depends(get_app_settings)):
    """Basic health check - always returns 200 if app is running."""
    return HealthResponse(
        timestamp=datetime.now(UTC).isoformat(),
        environment=app_settings.environment,
    )


@router.get("/api/queue-status", response_model=QueueStatusResponse)
async def queue_status(queue_service: QueueService = Depends(get_queue_service)):
    """Job counts for the missed-call, voicemail and sales-call queues."""
    try:
        stats = await queue_service.get_queue_stats()
    except Exception as e:
        logger.error("Error reading queue counts", error=str(e))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return QueueStatusResponse.model_validate(stats)


@router.get("/api/test-graph", response_model=GraphConnectionResponse)
async def test_graph(graph: GraphService = Depends(get_graph_service)):
    """Check that Microsoft Graph and the SharePoint site are reachable."""
    success = await graph.test_connection()
    return GraphConnectionResponse(
        success=success,
        message="Graph API connection successful" if success else "Graph API connection failed",
    )
