"""
Admin endpoints: reporting, audit trail and maintenance triggers.
"""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, Query

from ..audit import AuditAction, AuditFilterParams, AuditLogList, AuditService, AuditTargetType
from ..auth.access import Capability, require_capability
from ..auth.core import UserInfo
from ..dependencies import get_admin_service, get_audit_service, get_subscription_service
from ..subscriptions.models import ExpiryRunResponse
from ..subscriptions.service import SubscriptionService
from .models import AnalyticsResponse, SystemHealthResponse, UserMetricsResponse
from .service import AdminService

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Admin"])


@router.get("/analytics", response_model=AnalyticsResponse)
async def get_analytics(
    start_date: datetime | None = Query(None, description="Period start (default: 30 days ago)"),
    end_date: datetime | None = Query(None, description="Period end (default: now)"),
    _: UserInfo = Depends(require_capability(Capability.VIEW_ANALYTICS)),
    service: AdminService = Depends(get_admin_service),
) -> AnalyticsResponse:
    return await service.get_analytics(start_date, end_date)


@router.get("/revenue")
async def get_revenue(
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    _: UserInfo = Depends(require_capability(Capability.VIEW_ANALYTICS)),
    service: AdminService = Depends(get_admin_service),
) -> None:
    """Revenue reporting needs a payment processor and answers 501."""
    await service.calculate_revenue(start_date, end_date)


@router.get("/user-metrics", response_model=UserMetricsResponse)
async def get_user_metrics(
    _: UserInfo = Depends(require_capability(Capability.VIEW_ANALYTICS)),
    service: AdminService = Depends(get_admin_service),
) -> UserMetricsResponse:
    return await service.get_user_metrics()


@router.get("/system-health", response_model=SystemHealthResponse)
async def get_system_health(
    _: UserInfo = Depends(require_capability(Capability.VIEW_ANALYTICS)),
    service: AdminService = Depends(get_admin_service),
) -> SystemHealthResponse:
    return await service.system_health()


@router.get("/audit-logs", response_model=AuditLogList)
async def list_audit_logs(
    limit: int = Query(50, ge=1, le=500, description="Maximum entries to return"),
    offset: int = Query(0, ge=0, description="Entries to skip"),
    action: AuditAction | None = Query(None, description="Filter by action"),
    actor_id: str | None = Query(None, description="Filter by actor"),
    target_type: AuditTargetType | None = Query(None, description="Filter by target type"),
    start_date: datetime | None = Query(None, description="Entries at or after"),
    end_date: datetime | None = Query(None, description="Entries at or before"),
    _: UserInfo = Depends(require_capability(Capability.VIEW_AUDIT_LOGS)),
    audit: AuditService = Depends(get_audit_service),
) -> AuditLogList:
    """Audit trail, newest first."""
    filters = AuditFilterParams(
        actor_id=actor_id,
        action=action.value if action else None,
        target_type=target_type.value if target_type else None,
        start_date=start_date,
        end_date=end_date,
    )
    return await audit.list_audit_logs(filters, limit=limit, offset=offset)


@router.post("/subscriptions/expire", response_model=ExpiryRunResponse)
async def expire_subscriptions(
    current_user: UserInfo = Depends(require_capability(Capability.RUN_MAINTENANCE)),
    service: SubscriptionService = Depends(get_subscription_service),
) -> ExpiryRunResponse:
    """Expire every ACTIVE subscription whose end date has passed."""
    expired = await service.expire_due_subscriptions(actor_id=current_user.user_id)
    logger.info("admin.expiry_triggered", actor_id=current_user.user_id, expired=len(expired))
    return ExpiryRunResponse(
        expired=len(expired), subscription_ids=[subscription.id for subscription in expired]
    )
