"""
ScanRelay Backend - FastAPI Application Factory
===============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() wires middleware, exception handlers, routers and the
       process-wide collaborators (storage, push notifier, webhook
       dispatcher) on app.state. uvicorn serves `scanrelay.main:app`.

Application Architecture:
    ┌────────────────────────────────────────────────────────────┐
    │                      FastAPI App                           │
    │                                                            │
    │  Middleware: RateLimit → RequestID → Logging → CORS        │
    │                                                            │
    │  Routers:                                                  │
    │    /health                   /api/v1/keys                  │
    │    /api/v1/devices           /api/v1/requests (+ results)  │
    │    /api/v1/device/requests   /api/v1/dashboard             │
    │                                                            │
    │  app.state: storage, push_notifier, webhook_dispatcher,    │
    │             sweeper (started by the lifespan handler)      │
    └────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging → config check → wait for DB → start sweeper
    Shutdown: stop sweeper → dispose engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from scanrelay import __version__
from scanrelay.config import settings
from scanrelay.database import async_session_factory, dispose_engine, wait_for_database
from scanrelay.exceptions import RateLimitExceededError, ScanRelayError
from scanrelay.middleware.logging import RequestLoggingMiddleware
from scanrelay.middleware.rate_limit import RateLimitMiddleware
from scanrelay.middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware, request_id_var
from scanrelay.routes import dashboard, device_api, devices, health, keys, requests, results
from scanrelay.services.delivery_service import WebhookDispatcher
from scanrelay.services.push_service import LoggingPushNotifier, PushNotifier
from scanrelay.services.storage import LocalStorageProvider, StorageProvider
from scanrelay.services.sweeper import RetentionSweeper

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure root logging once, to stdout.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("ScanRelay Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving; /health and the logs make the problem visible
        logger.error("Configuration error: %s", str(e))

    try:
        await wait_for_database()
        logger.info("Database reachable")
    except Exception as e:
        logger.error("Database unreachable after retries: %s", str(e))

    sweeper: Optional[RetentionSweeper] = None
    if settings.sweeper_enabled:
        sweeper = RetentionSweeper(async_session_factory, app.state.storage)
        sweeper.start()
    app.state.sweeper = sweeper

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("ScanRelay Backend shutting down...")
    if sweeper is not None:
        await sweeper.stop()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(status: int, message: str, code: str, headers: Optional[dict] = None) -> JSONResponse:
    rid = request_id_var.get("") or None
    return JSONResponse(
        status_code=status,
        content={"error": message, "code": code, "status": status, "request_id": rid},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exceptions to `{error, code, status, request_id}` responses.

        ScanRelayError subclasses → their own status and code
        RequestValidationError    → 400 VALIDATION_ERROR
        Exception (fallback)      → 500 INTERNAL_ERROR

    5xx responses never carry internal details; `exc.context` goes to the log.
    """

    @app.exception_handler(ScanRelayError)
    async def handle_app_error(request: Request, exc: ScanRelayError):
        rid = request_id_var.get("")
        headers = None
        if isinstance(exc, RateLimitExceededError):
            headers = {"Retry-After": str(exc.retry_after)}

        if exc.status_code >= 500:
            logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
            return _error_response(exc.status_code, exc.default_message, exc.code)

        logger.info("[%s] %s %s: %s", rid, exc.status_code, exc.code, exc.message)
        return _error_response(exc.status_code, exc.message, exc.code, headers)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
        else:
            message = "Validation failed"
        return _error_response(400, message, "VALIDATION_ERROR")

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return _error_response(500, "An unexpected error occurred", "INTERNAL_ERROR")


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    storage: Optional[StorageProvider] = None,
    push_notifier: Optional[PushNotifier] = None,
    webhook_dispatcher: Optional[WebhookDispatcher] = None,
) -> FastAPI:
    """
    Build the application. Collaborators default to the production ones:
    local disk storage, logging push notifier, httpx webhook dispatcher.
    """
    app = FastAPI(
        title="ScanRelay API",
        description=(
            "Relay for document scans: integrations file scan requests, paired "
            "phones capture and OCR the document, results come back as PDF and "
            "text or via webhook."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.state.storage = storage or LocalStorageProvider()
    app.state.push_notifier = push_notifier or LoggingPushNotifier()
    app.state.webhook_dispatcher = webhook_dispatcher or WebhookDispatcher()
    app.state.sweeper = None

    # Last added runs first: RequestID → RateLimit → Logging → CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER, "Retry-After", "Content-Disposition"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(keys.router)
    app.include_router(devices.router)
    app.include_router(requests.router)
    app.include_router(results.router)
    app.include_router(device_api.router)
    app.include_router(dashboard.router)

    return app


app = create_app()
