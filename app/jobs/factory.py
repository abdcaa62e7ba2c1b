"""Backend selection for job queues."""

from app.config import Settings, settings
from app.infrastructure.observability.logging import get_logger
from app.jobs.memory_queue import InMemoryJobQueue
from app.jobs.queue import JobQueue, QueueOptions
from app.jobs.redis_queue import RedisJobQueue
from app.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)


def create_job_queue(
    name: str,
    *,
    app_settings: Settings | None = None,
    redis_client: FastRedisClient | None = None,
    default_options: QueueOptions | None = None,
) -> JobQueue:
    """
    Build a queue, choosing the backend once for its whole lifetime.

    Redis is only used when REDIS_URL names a non-loopback host; anything
    else gets the in-memory backend.
    """
    app_settings = app_settings or settings

    if app_settings.use_durable_queue():
        queue: JobQueue = RedisJobQueue(
            name,
            redis_client=redis_client or fast_redis,
            prefix=app_settings.QUEUE_PREFIX,
            default_options=default_options,
        )
    else:
        if app_settings.REDIS_URL:
            logger.warning(
                "REDIS_URL points at a loopback host, using in-memory queue",
                queue=name,
                redis_host=app_settings.redis_host(),
            )
        queue = InMemoryJobQueue(name, default_options=default_options)

    logger.info("Job queue created", queue=name, backend=queue.backend)
    return queue
