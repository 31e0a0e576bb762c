"""
Zenux Chat API - streaming relay and chat history service.

Sits between the Zenux web client and the upstream AI gateway. Chat turns
are relayed as Server-Sent Events; chat sessions and messages are stored
in PostgreSQL so history survives reloads and devices.

Endpoints:
    Relay:
        - POST /api/ai/chat - Relay one chat turn (text/event-stream)

    Chats:
        - POST /api/chats - Create a chat
        - GET /api/chats/{user_id} - List a user's chats
        - PATCH /api/chats/{chat_id} - Rename a chat
        - DELETE /api/chats/{chat_id} - Delete a chat

    Messages:
        - POST /api/messages - Save a message
        - GET /api/messages/{chat_id} - List a chat's messages

    Health:
        - GET /health, /health/live, /health/ready
        - GET /internal/metrics, /internal/audit

Last Grunted: 10/15/2026 02:05:00 PM UTC
"""
import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Callable

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from zenux_api.config import get_settings
from zenux_api.db.engine import check_db_health, close_db, init_db
from zenux_api.routers import ai, chats
from zenux_api.services.errors import create_error_response, internal_error
from zenux_api.services.http_client import close_client
from zenux_api.services.observability import get_audit_events, get_metric_snapshot

SERVICE_NAME = "zenux-chat-api"
SERVICE_VERSION = "0.1.0"


# ============================================================================
# Logging Configuration
# ============================================================================

def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure structured logging with structlog.

    JSON output by default; ``LOG_FORMAT=console`` switches to the pretty
    development renderer.

    Args:
        log_level: stdlib level name
        log_format: ``json`` or ``console``

    Last Grunted: 10/15/2026 02:05:00 PM UTC
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format.lower() == "console":
        renderers: list[structlog.types.Processor] = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=shared_processors + renderers,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


_settings = get_settings()
configure_logging(_settings.log_level, _settings.log_format)
logger = structlog.get_logger(SERVICE_NAME)


# ============================================================================
# Application Lifespan
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup creates the chat tables; shutdown closes the shared httpx
    client and the database pool.

    Last Grunted: 10/15/2026 02:05:00 PM UTC
    """
    logger.info("zenux_api.startup")

    try:
        await init_db()
        logger.info("zenux_api.database.ready")
    except Exception as e:
        logger.error("zenux_api.database.error", error=str(e))
        raise

    yield

    logger.info("zenux_api.shutdown")
    await close_client()
    await close_db()
    logger.info("zenux_api.shutdown.complete")


# ============================================================================
# Application Instance
# ============================================================================

app = FastAPI(
    title="Zenux Chat API",
    description="Streaming chat relay and chat history for Zenux AI",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Response-Time"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Map Pydantic validation errors to the 400 error envelope."""
    errors = exc.errors()
    if errors:
        loc = errors[0].get("loc", [])
        param = ".".join(str(part) for part in loc if part not in ("body", "path", "query")) or None
        message = errors[0].get("msg", "Validation error")
    else:
        param = None
        message = "Request validation failed"

    logger.warning("zenux_api.validation_error", path=request.url.path, param=param, message=message)
    return create_error_response(message=message, param=param, code="validation_error")


_STATUS_ERROR_TYPES = {
    400: "invalid_request_error",
    401: "authentication_error",
    403: "permission_error",
    404: "not_found_error",
    429: "rate_limit_error",
}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Wrap HTTP exceptions in the error envelope, keeping structured details
    when the raiser already supplied one.
    """
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail)

    logger.warning(
        "zenux_api.http_error",
        path=request.url.path,
        status_code=exc.status_code,
        detail=str(exc.detail),
    )
    return create_error_response(
        message=str(exc.detail),
        error_type=_STATUS_ERROR_TYPES.get(exc.status_code, "api_error"),
        status_code=exc.status_code,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unhandled errors and return a 500 without internal details."""
    logger.exception(
        "zenux_api.unhandled_error",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
    )
    return internal_error()


# ============================================================================
# Request Logging Middleware
# ============================================================================

@app.middleware("http")
async def log_requests(request: Request, call_next: Callable):
    """
    Bind request context for every log line and time the handler.

    For streaming responses the duration covers the time to headers only.
    """
    start_time = time.perf_counter()

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request.headers.get("X-Request-ID", "-"),
        path=request.url.path,
        method=request.method,
    )

    response = await call_next(request)

    duration_ms = (time.perf_counter() - start_time) * 1000
    logger.info(
        "zenux_api.request.complete",
        status_code=response.status_code,
        duration_ms=round(duration_ms, 2),
    )
    response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
    return response


# ============================================================================
# Routers
# ============================================================================

app.include_router(ai.router, tags=["ai"])
app.include_router(chats.router, tags=["chats"])


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    return {"status": "ok", "service": SERVICE_NAME, "version": SERVICE_VERSION}


@app.get("/health/ready")
async def readiness_check():
    """
    Readiness check; runs ``SELECT 1`` against the database.

    Returns:
        dict: Readiness status, or a 503 JSONResponse when the database
        is unreachable
    """
    if not await check_db_health():
        logger.warning("readiness_check.database_unhealthy")
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "checks": {"database": "unreachable"}},
        )
    return {"status": "ready", "checks": {"database": "ok"}}


@app.get("/health/live")
async def liveness_check():
    return {"status": "alive"}


@app.get("/internal/metrics")
async def internal_metrics() -> dict:
    """Relay latency and failure counters."""
    return {"metrics": get_metric_snapshot()}


@app.get("/internal/audit")
async def internal_audit(limit: int = 100) -> dict:
    """Recent audit events (unverified callers, user id overrides)."""
    return {"events": get_audit_events(limit=limit)}
