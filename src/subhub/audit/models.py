"""
Audit log models.

Entries are append-only: once flushed they cannot be updated or deleted
through the ORM.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import JSON, ForeignKey, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base, IdMixin, UTCDateTime, utcnow

SYSTEM_ACTOR = "system"


class AuditAction(str, Enum):
    """Actions recorded by the audit sink."""

    # Auth
    USER_SIGNUP = "user_signup"
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"

    # Plans
    PLAN_CREATED = "plan_created"
    PLAN_UPDATED = "plan_updated"
    PLAN_DELETED = "plan_deleted"

    # Subscriptions
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    SUBSCRIPTION_EXPIRED = "subscription_expired"


class AuditTargetType(str, Enum):
    USER = "user"
    PLAN = "plan"
    SUBSCRIPTION = "subscription"


class AuditLogEntry(Base, IdMixin):
    """Audit log table."""

    __tablename__ = "audit_logs"

    # "system" for automated actions, otherwise a user id
    actor_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    target_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True
    )

    metadata_json: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow, index=True
    )

    __table_args__ = (
        Index("ix_audit_logs_actor_timestamp", "actor_id", "timestamp"),
        Index("ix_audit_logs_action_timestamp", "action", "timestamp"),
    )


@event.listens_for(AuditLogEntry, "before_update")
def _reject_update(mapper: Any, connection: Any, target: AuditLogEntry) -> None:
    raise RuntimeError("Audit log entries are append-only")


@event.listens_for(AuditLogEntry, "before_delete")
def _reject_delete(mapper: Any, connection: Any, target: AuditLogEntry) -> None:
    raise RuntimeError("Audit log entries are append-only")


# Pydantic models for API


class AuditActor(BaseModel):
    id: str
    name: str | None = None
    email: str | None = None


class AuditLogResponse(BaseModel):
    """Model for audit log responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    actor_id: str
    action: str
    target_type: str
    target_id: str | None
    subscription_id: str | None
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
    actor: AuditActor | None = None


class AuditLogList(BaseModel):
    """Model for paginated audit log lists."""

    logs: list[AuditLogResponse]
    total: int
    limit: int
    offset: int
    pages: int


class AuditFilterParams(BaseModel):
    """Model for audit log filtering parameters."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    actor_id: str | None = None
    action: str | None = None
    target_type: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
