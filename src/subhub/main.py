"""
Main FastAPI application entry point for SubHub.
"""

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .audit import AuditService
from .auth.bootstrap import ensure_default_admin_user
from .auth.core import JWTService
from .db import create_all_tables, dispose_engine, get_session_factory
from .logging import setup_logging
from .middleware import setup_error_handling
from .routers import get_api_info, register_routers
from .settings import settings

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle events."""
    setup_logging()
    logger.info(
        "service.startup.begin",
        service=settings.app_name,
        version=settings.app_version,
        environment=settings.environment.value,
    )

    if app.state.owns_database:
        await create_all_tables()
        logger.info("database.tables.ready")

    if not settings.is_testing:
        await ensure_default_admin_user(app.state.session_factory)

    logger.info("service.startup.complete")
    yield

    logger.info("service.shutdown.begin")
    if app.state.owns_database:
        await dispose_engine()
    logger.info("service.shutdown.complete")


def create_application(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    *,
    jwt_service: JWTService | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        session_factory: Factory for request sessions; defaults to the
            process-wide factory built from settings
        jwt_service: Token service; defaults to one built from settings
        clock: Time source for subscription and reporting services
    """
    app = FastAPI(
        title="SubHub API",
        description="Subscription management platform",
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )

    factory = session_factory or get_session_factory()
    app.state.owns_database = session_factory is None
    app.state.session_factory = factory
    app.state.audit_service = AuditService(factory)
    app.state.jwt_service = jwt_service or JWTService()
    app.state.clock = clock

    setup_error_handling(app)

    if settings.cors.enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors.origins,
            allow_credentials=settings.cors.credentials,
            allow_methods=settings.cors.methods,
            allow_headers=settings.cors.headers,
        )

    register_routers(app)

    @app.get("/api", include_in_schema=False)
    async def api_info() -> dict[str, Any]:
        return get_api_info()

    return app


app = create_application()
