"""FastAPI application for the audiovista API."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from starlette.middleware.base import RequestResponseEndpoint
from starlette.responses import Response

from audiovista import __version__
from audiovista.api.exception_handlers import register_exception_handlers
from audiovista.api.middleware import RequestIdFilter, RequestIdMiddleware
from audiovista.api.routers import audio, health
from audiovista.config.database import db_manager
from audiovista.config.settings import settings
from audiovista.container import container

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"

# Paths whose request details are not logged
SENSITIVE_PATHS: frozenset[str] = frozenset({
    "/api/v1/audio/cleanup",
})


def configure_logging(level: str) -> None:
    """Attach a request-id aware handler to the ``audiovista`` logger."""
    app_logger = logging.getLogger("audiovista")
    app_logger.setLevel(level)
    if any(isinstance(f, RequestIdFilter) for h in app_logger.handlers for f in h.filters):
        return

    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    app_logger.addHandler(handler)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    configure_logging(settings.log_level)
    settings.create_directories()
    if settings.db_create_all:
        await db_manager.create_tables()
    logger.info(
        "audiovista %s started (audio cache: %s, max %.0f GB)",
        __version__,
        settings.resolved_audio_cache_dir,
        settings.max_audio_cache_gb,
    )
    yield
    # Shutdown
    await container.shutdown()
    await db_manager.close()


app = FastAPI(
    title="audiovista API",
    description="Audio cache and streaming engine for subscribed video channels",
    version=__version__,
    lifespan=lifespan,
)


def _is_sensitive_path(path: str) -> bool:
    """Check if the path is a sensitive endpoint that should not be logged in detail."""
    return any(path.startswith(sensitive) for sensitive in SENSITIVE_PATHS)


def _get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxied requests."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        # First IP in the chain is the original client
        return forwarded_for.split(",")[0].strip()

    if request.client:
        return request.client.host
    return "unknown"


@app.middleware("http")
async def log_requests(
    request: Request, call_next: RequestResponseEndpoint
) -> Response:
    """
    Middleware to log incoming requests and outgoing responses.

    Response log level follows the status code:
    - INFO for 2xx/3xx responses
    - WARNING for 4xx responses
    - ERROR for 5xx responses

    For streamed bodies the timing covers the time to the response headers.
    """
    start_time = time.perf_counter()

    method = request.method
    path = request.url.path
    client_ip = _get_client_ip(request)

    if _is_sensitive_path(path):
        logger.info("Request: %s [sensitive endpoint] from %s", method, client_ip)
    else:
        logger.info("Request: %s %s from %s", method, path, client_ip)

    response = await call_next(request)

    duration = time.perf_counter() - start_time
    status_code = response.status_code

    if status_code >= 500:
        log_level = logging.ERROR
    elif status_code >= 400:
        log_level = logging.WARNING
    else:
        log_level = logging.INFO

    if _is_sensitive_path(path):
        logger.log(
            log_level,
            "Response: %s [sensitive endpoint] - %d (%.3fs)",
            method,
            status_code,
            duration,
        )
    else:
        logger.log(
            log_level,
            "Response: %s %s - %d (%.3fs)",
            method,
            path,
            status_code,
            duration,
        )

    return response


# Added last so it wraps the logging middleware and ids appear in its records
app.add_middleware(RequestIdMiddleware)

register_exception_handlers(app)

# Mount routers under /api/v1 prefix
app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(audio.router, prefix="/api/v1", tags=["audio"])
