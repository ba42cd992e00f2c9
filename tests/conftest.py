"""
Global pytest configuration and fixtures for SubHub tests.

Each test gets its own file-backed SQLite database so the audit sink, which
opens its own sessions, sees the same schema and data as the code under
test.
"""

import os
from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio

# Settings are read at import time
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("JWT__SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///./pytest_subhub.sqlite")
os.environ.setdefault("OBSERVABILITY__LOG_FORMAT", "console")

from dateutil.relativedelta import relativedelta  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402

from subhub.audit import AuditLogEntry, AuditService  # noqa: E402
from subhub.auth.core import JWTService, UserInfo, create_access_token_for, hash_password  # noqa: E402
from subhub.auth.models import User, UserRole  # noqa: E402
from subhub.db import (  # noqa: E402
    create_all_tables,
    create_engine_for_url,
    create_session_factory,
)
from subhub.main import create_application  # noqa: E402
from subhub.plans.models import BillingCycle, Plan, PlanTier  # noqa: E402
from subhub.plans.service import PlanService  # noqa: E402
from subhub.subscriptions.service import SubscriptionService  # noqa: E402

TEST_PASSWORD = "password123"
FROZEN_NOW = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta | relativedelta) -> None:
        self.now = self.now + delta


# ==========================================
# Database
# ==========================================


@pytest_asyncio.fixture
async def async_db_engine(tmp_path):
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'subhub_test.sqlite'}")
    await create_all_tables(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(async_db_engine):
    return create_session_factory(async_db_engine)


@pytest_asyncio.fixture
async def async_db_session(session_factory) -> AsyncIterator:
    async with session_factory() as session:
        yield session


@pytest.fixture
def audit_service(session_factory) -> AuditService:
    return AuditService(session_factory)


@pytest.fixture
def fetch_audit_entries(session_factory):
    """Read audit rows through a fresh session, oldest first."""

    async def _fetch(action: str | None = None) -> list[AuditLogEntry]:
        async with session_factory() as session:
            query = select(AuditLogEntry).order_by(AuditLogEntry.timestamp)
            if action is not None:
                query = query.where(AuditLogEntry.action == action)
            return list((await session.execute(query)).scalars().all())

    return _fetch


# ==========================================
# Time
# ==========================================


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(FROZEN_NOW)


# ==========================================
# Users
# ==========================================


@pytest.fixture(scope="session")
def password_hash() -> str:
    return hash_password(TEST_PASSWORD)


async def _create_user(session, email: str, name: str, role: UserRole, password_hash: str) -> User:
    user = User(email=email, name=name, password_hash=password_hash, role=role.value)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest_asyncio.fixture
async def user(async_db_session, password_hash) -> User:
    return await _create_user(
        async_db_session, "alice@example.com", "Alice", UserRole.USER, password_hash
    )


@pytest_asyncio.fixture
async def other_user(async_db_session, password_hash) -> User:
    return await _create_user(
        async_db_session, "bob@example.com", "Bob", UserRole.USER, password_hash
    )


@pytest_asyncio.fixture
async def admin_user(async_db_session, password_hash) -> User:
    return await _create_user(
        async_db_session, "root@example.com", "Root Admin", UserRole.ADMIN, password_hash
    )


def as_user_info(user: User) -> UserInfo:
    return UserInfo(user_id=user.id, role=UserRole(user.role), email=user.email)


@pytest.fixture
def user_info(user) -> UserInfo:
    return as_user_info(user)


@pytest.fixture
def other_user_info(other_user) -> UserInfo:
    return as_user_info(other_user)


@pytest.fixture
def admin_info(admin_user) -> UserInfo:
    return as_user_info(admin_user)


# ==========================================
# Plans
# ==========================================


async def _create_plan(session, **overrides) -> Plan:
    values = {
        "name": "Basic Plan",
        "description": "Perfect for individuals getting started",
        "price": Decimal("9.99"),
        "billing_cycle": BillingCycle.MONTHLY.value,
        "tier": PlanTier.BASIC.value,
        "features": ["Up to 5 projects", "Email support"],
        "is_active": True,
    }
    values.update(overrides)
    plan = Plan(**values)
    session.add(plan)
    await session.commit()
    await session.refresh(plan)
    return plan


@pytest_asyncio.fixture
async def basic_plan(async_db_session) -> Plan:
    return await _create_plan(async_db_session)


@pytest_asyncio.fixture
async def yearly_plan(async_db_session) -> Plan:
    return await _create_plan(
        async_db_session,
        name="Pro Yearly",
        description="Pro features billed once a year",
        price=Decimal("299.00"),
        billing_cycle=BillingCycle.YEARLY.value,
        tier=PlanTier.PRO.value,
        features=["Unlimited projects", "Priority support"],
    )


@pytest_asyncio.fixture
async def inactive_plan(async_db_session) -> Plan:
    return await _create_plan(
        async_db_session,
        name="Legacy Plan",
        description="No longer offered",
        price=Decimal("5.00"),
        is_active=False,
    )


# ==========================================
# Services
# ==========================================


@pytest.fixture
def plan_service(async_db_session, audit_service) -> PlanService:
    return PlanService(async_db_session, audit_service)


@pytest.fixture
def subscription_service(async_db_session, plan_service, audit_service, clock) -> SubscriptionService:
    return SubscriptionService(async_db_session, plan_service, audit_service, clock=clock)


# ==========================================
# HTTP
# ==========================================


@pytest.fixture
def jwt_service() -> JWTService:
    return JWTService(secret="test-jwt-secret", algorithm="HS256", expire_minutes=60)


@pytest.fixture
def app(session_factory, jwt_service, clock):
    return create_application(session_factory, jwt_service=jwt_service, clock=clock)


@pytest_asyncio.fixture
async def client(app) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac


def bearer(user: User, jwt_service: JWTService) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token_for(user, jwt_service)}"}


@pytest.fixture
def auth_headers(user, jwt_service) -> dict[str, str]:
    return bearer(user, jwt_service)


@pytest.fixture
def other_headers(other_user, jwt_service) -> dict[str, str]:
    return bearer(other_user, jwt_service)


@pytest.fixture
def admin_headers(admin_user, jwt_service) -> dict[str, str]:
    return bearer(admin_user, jwt_service)
