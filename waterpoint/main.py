"""Waterpoint Gateway - FastAPI Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from waterpoint import __version__
from waterpoint.api import register_exception_handlers, register_routers
from waterpoint.core.config import Settings, get_settings
from waterpoint.core.logging import setup_logging
from waterpoint.core.redis import close_redis, create_redis
from waterpoint.db import close_db, create_engine, create_session_factory, init_db
from waterpoint.services import build_services


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler.

    Startup: Create engine, tables, Redis client and services
    Shutdown: Close gateways, Redis and database connections
    """
    settings: Settings = app.state.settings
    setup_logging(settings)

    # Startup
    engine = create_engine(settings)
    if settings.auto_create_tables:
        await init_db(engine)
    session_factory = create_session_factory(engine)
    redis_client = create_redis(settings)
    services = build_services(settings, session_factory, redis_client=redis_client)

    app.state.session_factory = session_factory
    app.state.services = services
    yield

    # Shutdown
    await services.aclose()
    await close_redis(redis_client)
    await close_db(engine)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Application factory.

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Water kiosk payment and dispensing gateway API",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    register_routers(app)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


# Application instance
app = create_app()
