"""
Plan catalog service.
"""

from typing import Any

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..audit import AuditAction, AuditService
from ..exceptions import DuplicatePlanError, PlanInUseError, PlanNotFoundError
from ..subscriptions.models import Subscription, SubscriptionStatus
from .models import (
    BREAKING_PLAN_FIELDS,
    Plan,
    PlanCreateRequest,
    PlanFilters,
    PlanTier,
    PlanUpdateRequest,
)

logger = structlog.get_logger(__name__)

_TIER_ORDER = case(
    {tier.value: index for index, tier in enumerate(PlanTier)},
    value=Plan.tier,
)


class PlanService:
    """CRUD over the plan catalog with audit logging of every write."""

    def __init__(self, session: AsyncSession, audit: AuditService):
        self.session = session
        self.audit = audit

    async def list_plans(self, filters: PlanFilters | None = None) -> list[Plan]:
        """List plans ordered by tier then price."""
        filters = filters or PlanFilters()
        query = select(Plan)

        if filters.is_active is not None:
            query = query.where(Plan.is_active == filters.is_active)
        if filters.tier:
            query = query.where(Plan.tier == filters.tier.value)
        if filters.billing_cycle:
            query = query.where(Plan.billing_cycle == filters.billing_cycle.value)

        query = query.order_by(_TIER_ORDER, Plan.price)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_plan(self, plan_id: str) -> Plan:
        plan = await self.session.get(Plan, plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    async def count_active_subscriptions(self, plan_id: str) -> int:
        query = select(func.count()).where(
            Subscription.plan_id == plan_id,
            Subscription.status == SubscriptionStatus.ACTIVE.value,
        )
        return (await self.session.execute(query)).scalar_one()

    async def create_plan(self, data: PlanCreateRequest, actor_id: str) -> Plan:
        plan = Plan(
            name=data.name,
            description=data.description,
            price=data.price,
            billing_cycle=data.billing_cycle.value,
            tier=data.tier.value,
            features=list(data.features),
            is_active=True,
        )
        self.session.add(plan)
        await self._commit_or_conflict(data.name)
        await self.session.refresh(plan)

        logger.info("plan.created", plan_id=plan.id, name=plan.name, actor_id=actor_id)
        await self.audit.log_plan_action(
            actor_id,
            AuditAction.PLAN_CREATED,
            plan.id,
            {"plan_name": plan.name, "price": str(plan.price), "tier": plan.tier},
        )
        return plan

    async def update_plan(self, plan_id: str, data: PlanUpdateRequest, actor_id: str) -> Plan:
        """Apply a partial patch.

        Price, billing cycle and tier are frozen while any ACTIVE subscription
        references the plan; name, description and features stay editable.
        """
        plan = await self.get_plan(plan_id)
        changes: dict[str, Any] = data.model_dump(exclude_unset=True, exclude_none=True)

        breaking = {
            field
            for field in BREAKING_PLAN_FIELDS & changes.keys()
            if _normalize(changes[field]) != _normalize(getattr(plan, field))
        }
        if breaking:
            active = await self.count_active_subscriptions(plan_id)
            if active > 0:
                raise PlanInUseError(
                    f"Cannot change {', '.join(sorted(breaking))} of a plan with "
                    f"{active} active subscriptions",
                    plan_id=plan_id,
                    active_subscriptions=active,
                )

        for field, value in changes.items():
            setattr(plan, field, _normalize(value))

        await self._commit_or_conflict(changes.get("name", plan.name))
        await self.session.refresh(plan)

        logger.info("plan.updated", plan_id=plan.id, fields=sorted(changes), actor_id=actor_id)
        await self.audit.log_plan_action(
            actor_id,
            AuditAction.PLAN_UPDATED,
            plan.id,
            {"plan_name": plan.name, "changes": data.model_dump(mode="json", exclude_unset=True)},
        )
        return plan

    async def deactivate_plan(self, plan_id: str, actor_id: str) -> Plan:
        """Soft delete: flip the active flag. Refused while ACTIVE subscriptions exist."""
        plan = await self.get_plan(plan_id)

        active = await self.count_active_subscriptions(plan_id)
        if active > 0:
            raise PlanInUseError(
                f"Cannot delete plan with {active} active subscriptions",
                plan_id=plan_id,
                active_subscriptions=active,
            )

        plan.is_active = False
        await self.session.commit()
        await self.session.refresh(plan)

        logger.info("plan.deactivated", plan_id=plan.id, actor_id=actor_id)
        await self.audit.log_plan_action(
            actor_id, AuditAction.PLAN_DELETED, plan.id, {"plan_name": plan.name}
        )
        return plan

    async def get_popular_plans(self, limit: int = 3) -> list[tuple[Plan, int]]:
        """Active plans ranked by number of subscriptions (any status)."""
        subscription_count = func.count(Subscription.id).label("subscription_count")
        query = (
            select(Plan, subscription_count)
            .outerjoin(Subscription, Subscription.plan_id == Plan.id)
            .where(Plan.is_active.is_(True))
            .group_by(Plan.id)
            .order_by(subscription_count.desc(), Plan.price)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [(plan, count) for plan, count in result.all()]

    async def _commit_or_conflict(self, name: str) -> None:
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            logger.info("plan.duplicate_name", name=name)
            raise DuplicatePlanError(name) from e


def _normalize(value: Any) -> Any:
    """Compare and store enums by their value."""
    if hasattr(value, "value"):
        return value.value
    return value
