"""Development auth bootstrap helpers."""

from collections.abc import Callable

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session_factory
from ..settings import settings
from .core import hash_password
from .models import User, UserRole

logger = structlog.get_logger(__name__)


SessionFactory = Callable[[], AsyncSession]


async def ensure_default_admin_user(session_factory: SessionFactory | None = None) -> User | None:
    """Ensure a default administrator exists in non-production environments.

    Returns the created user, or None when nothing was created.
    """
    if settings.is_production or not settings.auth.bootstrap_admin:
        return None

    email = settings.auth.default_admin_email.lower()
    factory = session_factory or get_session_factory()

    async with factory() as session:
        existing = await session.execute(select(User.id).where(User.email == email))
        if existing.first() is not None:
            return None

        user = User(
            email=email,
            name=settings.auth.default_admin_name,
            password_hash=hash_password(settings.auth.default_admin_password),
            role=UserRole.ADMIN.value,
        )
        session.add(user)
        await session.commit()
        logger.info("auth.default_admin.created", email=email)
        return user
