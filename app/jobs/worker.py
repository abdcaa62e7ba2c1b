"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and delegates to the matching coroutine. With a Redis backend the
call queues can be drained here instead of inside the API process.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from app.config import settings
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.services.network_diagnostics import run_network_diagnostics
from app.services.redis_client import fast_redis
from app.services.relay_services import build_relay_services

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]


async def run_call_queue_consumers(stop_event: asyncio.Event | None = None) -> None:
    """Register the call handlers and keep consuming until stopped."""
    settings.validate_required()
    if not settings.use_durable_queue():
        logger.warning(
            "Worker started without a remote Redis; it will only see jobs it enqueues itself"
        )
    else:
        await fast_redis.initialize()

    services = build_relay_services(settings, redis_client=fast_redis)
    services.queues.start_processors(services.processor)
    logger.info("Call queue consumers running")

    try:
        await (stop_event or asyncio.Event()).wait()
    finally:
        await services.close()
        if settings.use_durable_queue():
            await fast_redis.close()
        logger.info("Call queue consumers stopped")


async def run_diagnostics() -> None:
    await run_network_diagnostics()


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "call_queues": run_call_queue_consumers,
    "network_diagnostics": run_diagnostics,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "call_queues").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    await JOB_REGISTRY[name]()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.LOG_LEVEL)
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
