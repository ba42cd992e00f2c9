"""
Request-scoped service construction.

Long-lived collaborators (audit sink, JWT service, clock) live on
``app.state``; services wrapping a request session are built per request.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .admin.service import AdminService
from .audit import AuditService
from .auth.core import JWTService, get_jwt_service
from .auth.service import AuthService
from .db import get_async_session, get_session_factory, utcnow
from .plans.service import PlanService
from .subscriptions.service import Clock, SubscriptionService


def get_audit_service(request: Request) -> AuditService:
    service = getattr(request.app.state, "audit_service", None)
    if service is None:
        factory = getattr(request.app.state, "session_factory", None) or get_session_factory()
        service = AuditService(factory)
        request.app.state.audit_service = service
    return service


def get_clock(request: Request) -> Clock:
    return getattr(request.app.state, "clock", None) or utcnow


def get_auth_service(
    session: AsyncSession = Depends(get_async_session),
    audit: AuditService = Depends(get_audit_service),
    jwt_service: JWTService = Depends(get_jwt_service),
) -> AuthService:
    return AuthService(session, audit, jwt_service)


def get_plan_service(
    session: AsyncSession = Depends(get_async_session),
    audit: AuditService = Depends(get_audit_service),
) -> PlanService:
    return PlanService(session, audit)


def get_subscription_service(
    session: AsyncSession = Depends(get_async_session),
    audit: AuditService = Depends(get_audit_service),
    clock: Clock = Depends(get_clock),
) -> SubscriptionService:
    return SubscriptionService(session, PlanService(session, audit), audit, clock=clock)


def get_admin_service(
    session: AsyncSession = Depends(get_async_session),
    audit: AuditService = Depends(get_audit_service),
    clock: Clock = Depends(get_clock),
) -> AdminService:
    return AdminService(session, audit, clock=clock)
