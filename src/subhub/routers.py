"""
Centralized router registration for all API endpoints.

Authentication is enforced per endpoint: plan reads, signup, login and
/health are public, everything else resolves the caller.
"""

import importlib
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import FastAPI

logger = structlog.get_logger(__name__)

API_PREFIX = "/api/v1"


@dataclass
class RouterConfig:
    """Configuration for a router to be registered."""

    module_path: str
    router_name: str
    prefix: str
    tags: Sequence[str] | None
    description: str = ""


ROUTER_CONFIGS = [
    RouterConfig(
        module_path="subhub.health",
        router_name="health_router",
        prefix=API_PREFIX,
        tags=["Health"],
        description="Health check endpoint at /api/v1/health",
    ),
    RouterConfig(
        module_path="subhub.auth.router",
        router_name="router",
        prefix=f"{API_PREFIX}/auth",
        tags=["Authentication"],
        description="Signup, login, logout and current user",
    ),
    RouterConfig(
        module_path="subhub.plans.router",
        router_name="router",
        prefix=f"{API_PREFIX}/plans",
        tags=["Plans"],
        description="Plan catalog",
    ),
    RouterConfig(
        module_path="subhub.subscriptions.router",
        router_name="router",
        prefix=f"{API_PREFIX}/subscriptions",
        tags=["Subscriptions"],
        description="Subscription lifecycle",
    ),
    RouterConfig(
        module_path="subhub.admin.router",
        router_name="router",
        prefix=f"{API_PREFIX}/admin",
        tags=["Admin"],
        description="Admin reporting, audit trail and maintenance",
    ),
]


def _register_router(app: FastAPI, config: RouterConfig) -> None:
    module = importlib.import_module(config.module_path)
    router = getattr(module, config.router_name)
    app.include_router(
        router,
        prefix=config.prefix,
        tags=list(config.tags) if config.tags is not None else None,
    )
    logger.debug("router.registered", prefix=config.prefix, description=config.description)


def register_routers(app: FastAPI) -> None:
    """Register all API routers with the application."""
    for config in ROUTER_CONFIGS:
        _register_router(app, config)
    logger.info("router.registration_complete", registered=len(ROUTER_CONFIGS))


def get_api_info() -> dict[str, Any]:
    return {
        "version": "v1",
        "base_path": API_PREFIX,
        "endpoints": {config.description: config.prefix for config in ROUTER_CONFIGS},
    }
