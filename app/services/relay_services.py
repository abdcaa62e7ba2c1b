"""
Construction and shutdown of the relay's long-lived services.

Shared by the API process (FastAPI lifespan) and the standalone worker so
both wire the same clients, queues and handlers.
"""

from dataclasses import dataclass

from app.config import Settings, settings
from app.infrastructure.observability.logging import get_logger
from app.services.call_processor import CallProcessor
from app.services.graph.graph_client import GraphService
from app.services.queue_service import QueueService
from app.services.redis_client import FastRedisClient
from app.services.sales_records_service import SalesRecordsService
from app.services.zoom.zoom_client import ZoomService

logger = get_logger(__name__)


@dataclass(slots=True)
class RelayServices:
    graph: GraphService
    zoom: ZoomService
    records: SalesRecordsService
    processor: CallProcessor
    queues: QueueService

    async def close(self) -> None:
        """Stop queues first so no handler is left using a closed client."""
        await self.queues.close()
        await self.zoom.close()
        await self.graph.close()


def build_relay_services(
    app_settings: Settings | None = None, redis_client: FastRedisClient | None = None
) -> RelayServices:
    app_settings = app_settings or settings

    graph = GraphService(app_settings)
    zoom = ZoomService(app_settings)
    records = SalesRecordsService(graph, app_settings)
    processor = CallProcessor(records, zoom, notifier=graph)
    queues = QueueService(app_settings, redis_client=redis_client)

    logger.info("Relay services built", environment=app_settings.environment)
    return RelayServices(
        graph=graph, zoom=zoom, records=records, processor=processor, queues=queues
    )
