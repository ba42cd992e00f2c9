"""
Audit trail for the subscription platform.

Every state-changing action on users, plans and subscriptions is appended
to the audit log. Recording is best-effort: a failed write is logged and
never surfaced to the caller.

Usage Examples:

    from subhub.audit import AuditAction, AuditService

    audit = AuditService(session_factory)
    await audit.log_subscription_action(
        actor_id=user_id,
        action=AuditAction.SUBSCRIPTION_CANCELLED,
        subscription_id=subscription.id,
        metadata={"plan_name": plan.name},
    )

    entries, total = await audit.get_audit_logs(limit=20)
"""

from .models import (
    SYSTEM_ACTOR,
    AuditAction,
    AuditFilterParams,
    AuditLogEntry,
    AuditLogList,
    AuditLogResponse,
    AuditTargetType,
)
from .service import AuditService

__all__ = [
    "SYSTEM_ACTOR",
    "AuditAction",
    "AuditTargetType",
    "AuditLogEntry",
    "AuditLogResponse",
    "AuditLogList",
    "AuditFilterParams",
    "AuditService",
]
