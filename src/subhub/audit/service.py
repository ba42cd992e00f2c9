"""
Audit service for recording and retrieving state-changing actions.
"""

import math
from collections.abc import Callable
from typing import Any

import structlog
from sqlalchemy import and_, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.models import User
from .models import (
    AuditAction,
    AuditActor,
    AuditFilterParams,
    AuditLogEntry,
    AuditLogList,
    AuditLogResponse,
    AuditTargetType,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


class AuditService:
    """Best-effort audit sink.

    Writes go through a dedicated session so that a failed audit insert can
    never roll back, or be rolled back with, the business operation that
    triggered it.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    async def record(
        self,
        actor_id: str,
        action: AuditAction | str,
        target_type: AuditTargetType | str,
        target_id: str | None = None,
        *,
        subscription_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append an audit entry. Failures are logged and swallowed."""
        action_value = action.value if isinstance(action, AuditAction) else action
        target_value = (
            target_type.value if isinstance(target_type, AuditTargetType) else target_type
        )
        try:
            async with self._session_factory() as session:
                entry = AuditLogEntry(
                    actor_id=actor_id,
                    action=action_value,
                    target_type=target_value,
                    target_id=target_id,
                    subscription_id=subscription_id,
                    metadata_json=metadata or {},
                )
                session.add(entry)
                await session.commit()
        except Exception as e:
            logger.error(
                "audit.record_failed",
                action=action_value,
                actor_id=actor_id,
                target_type=target_value,
                target_id=target_id,
                error=str(e),
                exc_info=True,
            )
            return

        logger.info(
            "audit.recorded",
            action=action_value,
            actor_id=actor_id,
            target_type=target_value,
            target_id=target_id,
        )

    async def log_subscription_action(
        self,
        actor_id: str,
        action: AuditAction,
        subscription_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.record(
            actor_id,
            action,
            AuditTargetType.SUBSCRIPTION,
            subscription_id,
            subscription_id=subscription_id,
            metadata=metadata,
        )

    async def log_plan_action(
        self,
        actor_id: str,
        action: AuditAction,
        plan_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.record(actor_id, action, AuditTargetType.PLAN, plan_id, metadata=metadata)

    async def log_user_action(
        self,
        user_id: str,
        action: AuditAction,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        await self.record(user_id, action, AuditTargetType.USER, user_id, metadata=metadata)

    def _build_conditions(self, filters: AuditFilterParams) -> list:
        conditions = []

        if filters.actor_id:
            conditions.append(AuditLogEntry.actor_id == filters.actor_id)
        if filters.action:
            conditions.append(AuditLogEntry.action == filters.action)
        if filters.target_type:
            conditions.append(AuditLogEntry.target_type == filters.target_type)
        if filters.start_date:
            conditions.append(AuditLogEntry.timestamp >= filters.start_date)
        if filters.end_date:
            conditions.append(AuditLogEntry.timestamp <= filters.end_date)

        return conditions

    async def get_audit_logs(
        self,
        filters: AuditFilterParams | None = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditLogResponse], int]:
        """Return a page of entries (newest first) and the total matching count."""
        filters = filters or AuditFilterParams()
        conditions = self._build_conditions(filters)

        async with self._session_factory() as session:
            count_query = select(func.count()).select_from(AuditLogEntry)
            if conditions:
                count_query = count_query.where(and_(*conditions))
            total = (await session.execute(count_query)).scalar_one()

            query = select(AuditLogEntry, User.name, User.email).outerjoin(
                User, User.id == AuditLogEntry.actor_id
            )
            if conditions:
                query = query.where(and_(*conditions))
            query = query.order_by(desc(AuditLogEntry.timestamp)).offset(offset).limit(limit)

            rows = (await session.execute(query)).all()

        entries = [
            AuditLogResponse(
                id=entry.id,
                actor_id=entry.actor_id,
                action=entry.action,
                target_type=entry.target_type,
                target_id=entry.target_id,
                subscription_id=entry.subscription_id,
                metadata=entry.metadata_json or {},
                timestamp=entry.timestamp,
                actor=AuditActor(id=entry.actor_id, name=name, email=email)
                if email is not None
                else None,
            )
            for entry, name, email in rows
        ]
        return entries, total

    async def list_audit_logs(
        self,
        filters: AuditFilterParams | None = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> AuditLogList:
        """Paginated response wrapper around get_audit_logs."""
        entries, total = await self.get_audit_logs(filters, limit=limit, offset=offset)
        return AuditLogList(
            logs=entries,
            total=total,
            limit=limit,
            offset=offset,
            pages=math.ceil(total / limit) if limit else 0,
        )
