"""
Access control gate.

Authorization is a single capability check over the closed ``UserRole``
enumeration instead of role comparisons scattered through handlers.
"""

from collections.abc import Awaitable, Callable
from enum import Enum

import structlog
from fastapi import Depends

from ..exceptions import ForbiddenError
from .core import UserInfo, get_current_user
from .models import UserRole

logger = structlog.get_logger(__name__)


class Capability(str, Enum):
    VIEW_SUBSCRIPTION = "subscription.view"
    MANAGE_SUBSCRIPTION = "subscription.manage"
    MANAGE_PLANS = "plans.manage"
    VIEW_AUDIT_LOGS = "audit.view"
    VIEW_ANALYTICS = "analytics.view"
    RUN_MAINTENANCE = "maintenance.run"


# Capabilities a USER holds over resources they own
OWNER_CAPABILITIES = frozenset({Capability.VIEW_SUBSCRIPTION, Capability.MANAGE_SUBSCRIPTION})


def has_capability(user: UserInfo, capability: Capability, *, owner_id: str | None = None) -> bool:
    """Return True if the caller may exercise ``capability``.

    Args:
        user: Verified caller identity
        capability: Capability being exercised
        owner_id: Owning user of the target resource, for owner-scoped capabilities
    """
    if user.role == UserRole.ADMIN:
        return True
    if capability in OWNER_CAPABILITIES:
        return owner_id is not None and owner_id == user.user_id
    return False


def authorize(user: UserInfo, capability: Capability, *, owner_id: str | None = None) -> None:
    """Raise ForbiddenError unless the caller holds ``capability``."""
    if not has_capability(user, capability, owner_id=owner_id):
        logger.warning(
            "access.denied",
            user_id=user.user_id,
            role=user.role.value,
            capability=capability.value,
            owner_id=owner_id,
        )
        raise ForbiddenError(context={"capability": capability.value})


def require_capability(capability: Capability) -> Callable[..., Awaitable[UserInfo]]:
    """FastAPI dependency factory for owner-independent capabilities."""

    async def _checker(current_user: UserInfo = Depends(get_current_user)) -> UserInfo:
        authorize(current_user, capability)
        return current_user

    return _checker
