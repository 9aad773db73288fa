from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from ordercore.config import Settings, settings as default_settings
from ordercore.api.v1.router import api_router
from ordercore.database import engine, init_db, async_session_factory
from ordercore.events import EventBus
from ordercore.exceptions import OrderCoreError
from ordercore.jobs.scheduler import get_job_status, start_scheduler, shutdown_scheduler
from ordercore.services.notification_dispatcher import (
    LoggingNotificationDispatcher, NotificationDispatcher, ProviderNotificationDispatcher,
)
from ordercore.services.registry import build_services
from ordercore.stores.base import OrderStore
from ordercore.stores.sqlalchemy_store import SQLAlchemyOrderStore


logger = logging.getLogger(__name__)

# Domain error code -> HTTP status
ERROR_STATUS_CODES = {
    "not_found": 404,
    "invalid_transition": 400,
    "already_resolved": 409,
    "concurrency_conflict": 409,
    "dispatch_failed": 502,
    "invalid_request": 422,
}

OPENAPI_TAGS = [
    {"name": "Orders", "description": "Order status, payment and tracking transitions with audit timeline"},
    {"name": "NDR Management", "description": "Failed delivery reports, severity and auto-resolution"},
    {"name": "Notifications", "description": "Customer notifications over email, SMS and WhatsApp"},
    {"name": "Returns", "description": "Return requests, QC and refund policies"},
    {"name": "Exports", "description": "CSV exports of orders, NDRs and notifications"},
]


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def default_dispatcher(config: Settings) -> NotificationDispatcher:
    """Real providers when any is configured, otherwise log-only."""
    if config.SMTP_USER or config.MSG91_AUTH_KEY or config.WHATSAPP_ACCESS_TOKEN:
        return ProviderNotificationDispatcher(config)
    logger.warning("No notification provider configured; notifications will only be logged")
    return LoggingNotificationDispatcher()


def create_app(
    store: Optional[OrderStore] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
    config: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the API application.

    Passing a store wires the services immediately (tests drive the app
    without running the lifespan); otherwise the lifespan creates tables
    and uses the configured database.
    """
    config = config or default_settings
    configure_logging(config.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup:
        - Create tables and wire services (unless already wired)
        - Start background scheduler
        """
        logger.info(f"Starting {config.APP_NAME} v{config.APP_VERSION}")
        owns_engine = False

        if getattr(app.state, "services", None) is None:
            await init_db(engine)
            owns_engine = True
            app.state.services = build_services(
                SQLAlchemyOrderStore(async_session_factory),
                dispatcher or default_dispatcher(config),
                EventBus(),
                config,
            )

        start_scheduler(app.state.services.ndr, config)

        yield

        shutdown_scheduler()
        if owns_engine:
            await engine.dispose()
        logger.info("Shutting down...")

    app = FastAPI(
        title=config.APP_NAME,
        version=config.APP_VERSION,
        description="Order lifecycle, delivery-exception (NDR), notification and returns backend for sellers.",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=OPENAPI_TAGS,
    )

    if store is not None:
        app.state.services = build_services(
            store,
            dispatcher or default_dispatcher(config),
            EventBus(),
            config,
        )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API router
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(OrderCoreError)
    async def order_core_exception_handler(request: Request, exc: OrderCoreError):
        """Domain errors carry their own reason; map the kind onto an HTTP status."""
        status_code = ERROR_STATUS_CODES.get(exc.code, 400)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc.message}")
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        content = {"detail": "Internal server error", "code": "internal_error"}
        if config.DEBUG:
            content["error"] = str(exc)
            content["type"] = type(exc).__name__
            content["traceback"] = traceback.format_exc()
        return JSONResponse(status_code=500, content=content)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Health check endpoint with database validation."""
        health_status = {
            "status": "healthy",
            "app": config.APP_NAME,
            "version": config.APP_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": {
                "database": "unknown"
            },
            "jobs": get_job_status(),
        }

        # Check database connectivity
        try:
            await request.app.state.services.store.ping()
            health_status["checks"]["database"] = "connected"
        except Exception as e:
            health_status["status"] = "unhealthy"
            health_status["checks"]["database"] = f"error: {str(e)}"

        # Return 503 if unhealthy
        if health_status["status"] == "unhealthy":
            return JSONResponse(status_code=503, content=health_status)

        return health_status

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint."""
        return {
            "message": f"Welcome to {config.APP_NAME}",
            "version": config.APP_VERSION,
            "docs": "/docs",
            "redoc": "/redoc",
        }

    return app
