"""
Zoom Phone to Microsoft 365 sales relay.
FastAPI app with queue, client and Redis lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from app.routes import calls, health, zoom_webhook
from app.services.network_diagnostics import run_network_diagnostics
from app.services.redis_client import fast_redis
from app.services.relay_services import build_relay_services

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)
    settings.validate_required()

    startup_tasks = []
    services = None

    try:
        if settings.use_durable_queue():
            logger.info("Initializing Redis connection")
            await fast_redis.initialize()
            startup_tasks.append("redis")

        services = build_relay_services(settings, redis_client=fast_redis)
        services.queues.start_processors(services.processor)
        app.state.services = services
        startup_tasks.append("relay_services")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        if services is not None:
            try:
                await services.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up relay services", error=str(cleanup_error))

        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        raise

    # connectivity problems are logged, startup continues
    await run_network_diagnostics()
    if not await services.graph.test_connection():
        logger.warning("Graph API not reachable at startup, jobs will retry")

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    try:
        await services.close()
    except Exception as e:
        logger.error("Error closing relay services", error=str(e))
        shutdown_errors.append(f"Services: {e}")

    if "redis" in startup_tasks:
        try:
            logger.info("Closing Redis connection")
            await fast_redis.close()
        except Exception as e:
            logger.error("Error closing Redis", error=str(e))
            shutdown_errors.append(f"Redis: {e}")

    app.state.services = None

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Zoom Sales Relay",
    description="Relays Zoom Phone events into SharePoint, Planner and Teams",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(SecurityHeadersMiddleware, enforce_https=settings.environment == "production")
app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(zoom_webhook.router)
app.include_router(calls.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
        request_id=getattr(request.state, "request_id", None),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
