"""
Application assembly.

Builds the FastAPI app: logging, the component lifespan, CORS, error
handlers and routers. ``app`` is the instance uvicorn serves.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import api_router, health_router, metrics_router
from .api.errors import AVAILABLE_ENDPOINTS, register_error_handlers
from .config import get_settings, Settings
from .core.admission import AdmissionGate
from .core.health import HealthChecker
from .core.metrics import MetricsCache, MetricsCollector
from .core.pipeline import IngestionPipeline
from .core.retention import RetentionService
from .core.store import RecordStore


def configure_logging(log_level: str = "INFO") -> None:
    """Route structlog through stdlib logging with a console renderer."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    for noisy in ("watchfiles", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Own the service components for the lifetime of the app.

    Settings are read here rather than at import so each startup picks up
    the current environment.
    """
    settings: Settings = get_settings()
    logger = structlog.get_logger(__name__)
    logger.info("Starting Machine Data API", version=app.version, port=settings.port)

    collector = MetricsCollector()
    store = RecordStore(settings.database)
    await store.initialize()

    cache = MetricsCache()
    await cache.initialize(store)

    retention = RetentionService(store, settings.retention, collector)

    app.state.settings = settings
    app.state.metrics = collector
    app.state.record_store = store
    app.state.metrics_cache = cache
    app.state.admission = AdmissionGate(settings.rate_limit)
    app.state.pipeline = IngestionPipeline(settings=settings, store=store, cache=cache, metrics=collector)
    app.state.retention_service = retention
    app.state.health_checker = HealthChecker(store, retention)

    await retention.start()

    try:
        logger.info(
            "Machine Data API started",
            database=str(settings.database.path),
            ingestion_mode=settings.ingestion.mode,
        )
        yield
    finally:
        logger.info("Shutting down Machine Data API")
        await retention.stop()
        await store.close()
        logger.info("Machine Data API shutdown complete")


def create_app() -> FastAPI:
    """Build a fully wired application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Machine Data API",
        description="Machine telemetry ingestion and query service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    app.include_router(api_router)
    app.include_router(health_router, tags=["health"])
    app.include_router(metrics_router, tags=["metrics"])

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, Any]:
        return {
            "service": "Machine Data API",
            "version": app.version,
            "docs": "/docs",
            "endpoints": AVAILABLE_ENDPOINTS,
        }

    return app


app = create_app()
