from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from cashheros_api import __version__
from cashheros_api.core.settings import settings
from cashheros_api.db.session import async_session
from .api.errors import install_exception_handlers
from .api.middleware import RequestContextMiddleware
from .api.routes import api_router, health_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .services.auth import build_token_blacklist
from .workers import CashbackSweeperWorker


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = CashbackSweeperWorker(
        session_factory=_session_factory,
        interval_seconds=settings.cashback_sweeper_interval_seconds,
        batch_size=settings.cashback_sweeper_batch_size,
        max_per_tick=settings.cashback_sweeper_max_per_tick,
        lease_seconds=settings.cashback_sweeper_lease_seconds,
        lease_name=settings.cashback_sweeper_lease_name,
    )
    app.state.cashback_sweeper = sweeper

    sweeper_enabled = settings.cashback_sweeper_enabled
    if sweeper_enabled:
        sweeper.start()
        logger.info(
            "Cashback sweeper enabled",
            interval_seconds=sweeper.interval_seconds,
            batch_size=settings.cashback_sweeper_batch_size,
        )
    else:
        logger.info(
            "Cashback sweeper disabled",
            reason="cashback_sweeper_enabled is false",
        )

    try:
        yield
    finally:
        if sweeper_enabled and sweeper.is_running:
            await sweeper.stop()


def create_app() -> FastAPI:
    """Application factory for the CashHeros API service."""
    configure_logging(
        service_name="cashheros-api",
        environment=settings.environment,
        version=__version__,
        level=settings.log_level,
    )

    app = FastAPI(
        title="CashHeros API",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="cashheros-api",
        service_version=__version__,
        environment=settings.environment,
        endpoint=settings.otel_exporter_otlp_endpoint,
        headers=settings.otel_exporter_otlp_headers,
    )

    origins = [origin.strip() for origin in settings.cors_allowed_origins.split(",") if origin.strip()]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(RequestContextMiddleware)

    # Revocations must be visible to every request this process serves.
    app.state.token_blacklist = build_token_blacklist(settings)

    install_exception_handlers(app)
    app.include_router(health_router)
    app.include_router(api_router)
    return app
