"""FastAPI dependencies resolving the services built during lifespan."""

from fastapi import HTTPException, Request, status

from app.config import Settings, settings
from app.services.call_processor import CallProcessor
from app.services.graph.graph_client import GraphService
from app.services.queue_service import QueueService
from app.services.relay_services import RelayServices


def get_relay_services(request: Request) -> RelayServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not initialized"
        )
    return services


def get_queue_service(request: Request) -> QueueService:
    return get_relay_services(request).queues


def get_call_processor(request: Request) -> CallProcessor:
    return get_relay_services(request).processor


def get_graph_service(request: Request) -> GraphService:
    return get_relay_services(request).graph


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or settings
