"""
Subscription lifecycle service.

Each operation authorizes the caller, validates the transition against the
current state, commits, and only then records the audit entry.
"""

from collections.abc import Callable
from datetime import datetime

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..audit import SYSTEM_ACTOR, AuditAction, AuditService
from ..auth.access import Capability, authorize
from ..auth.core import UserInfo
from ..db import utcnow
from ..exceptions import (
    DuplicateActiveSubscriptionError,
    FeatureNotImplementedError,
    SubscriptionNotFoundError,
    ValidationError,
)
from ..plans.models import Plan
from ..plans.service import PlanService
from . import lifecycle
from .models import (
    Subscription,
    SubscriptionCreateRequest,
    SubscriptionStatus,
    SubscriptionUpdateRequest,
)

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


class SubscriptionService:
    """Guards every status change of a user's subscription."""

    def __init__(
        self,
        session: AsyncSession,
        plans: PlanService,
        audit: AuditService,
        clock: Clock = utcnow,
    ):
        self.session = session
        self.plans = plans
        self.audit = audit
        self._clock = clock

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_user_subscriptions(self, user_id: str) -> list[Subscription]:
        """All subscriptions of a user, newest first."""
        query = (
            select(Subscription)
            .options(selectinload(Subscription.plan))
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_subscription(self, subscription_id: str) -> Subscription:
        query = (
            select(Subscription)
            .options(selectinload(Subscription.plan))
            .where(Subscription.id == subscription_id)
            .execution_options(populate_existing=True)
        )
        subscription = (await self.session.execute(query)).scalar_one_or_none()
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription

    async def get_subscription_for(
        self,
        actor: UserInfo,
        subscription_id: str,
        capability: Capability = Capability.VIEW_SUBSCRIPTION,
    ) -> Subscription:
        """Fetch a subscription and run it through the access gate."""
        subscription = await self.get_subscription(subscription_id)
        authorize(actor, capability, owner_id=subscription.user_id)
        return subscription

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_subscription(
        self, actor: UserInfo, data: SubscriptionCreateRequest
    ) -> Subscription:
        plan = await self.plans.get_plan(data.plan_id)
        self._ensure_plan_available(plan)

        await self._ensure_no_other_active(actor.user_id, plan.id)

        start = self._clock()
        subscription = Subscription(
            user_id=actor.user_id,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE.value,
            start_date=start,
            end_date=lifecycle.calculate_period_end(start, plan.billing_cycle),
            auto_renew=data.auto_renew,
        )
        self.session.add(subscription)
        await self._commit(actor.user_id, plan.id)

        logger.info(
            "subscription.created",
            subscription_id=subscription.id,
            user_id=actor.user_id,
            plan_id=plan.id,
        )
        await self.audit.log_subscription_action(
            actor.user_id,
            AuditAction.SUBSCRIPTION_CREATED,
            subscription.id,
            {
                "plan_name": plan.name,
                "plan_price": str(plan.price),
                "billing_cycle": plan.billing_cycle,
                "auto_renew": data.auto_renew,
            },
        )
        return await self.get_subscription(subscription.id)

    async def update_subscription(
        self, actor: UserInfo, subscription_id: str, data: SubscriptionUpdateRequest
    ) -> Subscription:
        """Change status, auto-renew flag or plan.

        CANCELLED and EXPIRED subscriptions cannot be moved by update; only
        renew brings an EXPIRED subscription back to ACTIVE.
        """
        subscription = await self.get_subscription_for(
            actor, subscription_id, Capability.MANAGE_SUBSCRIPTION
        )
        previous_status = subscription.status

        target_status = previous_status
        if data.status is not None:
            lifecycle.ensure_update_allowed(previous_status, data.status.value)
            target_status = data.status.value

        plan_changed = data.plan_id is not None and data.plan_id != subscription.plan_id
        auto_renew_changed = (
            data.auto_renew is not None and data.auto_renew != subscription.auto_renew
        )
        if plan_changed or auto_renew_changed:
            lifecycle.ensure_details_editable(previous_status)

        target_plan: Plan = subscription.plan
        if plan_changed:
            target_plan = await self.plans.get_plan(data.plan_id)
            self._ensure_plan_available(target_plan)

        if target_status == SubscriptionStatus.ACTIVE.value and (
            target_status != previous_status or plan_changed
        ):
            self._ensure_plan_available(target_plan)
            await self._ensure_no_other_active(
                subscription.user_id, target_plan.id, exclude_id=subscription.id
            )
        target_plan_id = target_plan.id

        if data.auto_renew is not None:
            subscription.auto_renew = data.auto_renew
        subscription.status = target_status
        subscription.plan_id = target_plan_id
        if target_status == SubscriptionStatus.CANCELLED.value:
            subscription.auto_renew = False

        await self._commit(subscription.user_id, target_plan_id)

        logger.info(
            "subscription.updated",
            subscription_id=subscription.id,
            previous_status=previous_status,
            new_status=target_status,
        )
        await self.audit.log_subscription_action(
            actor.user_id,
            AuditAction.SUBSCRIPTION_UPDATED,
            subscription.id,
            {
                "changes": data.model_dump(mode="json", exclude_unset=True),
                "previous_status": previous_status,
                "new_status": target_status,
            },
        )
        return await self.get_subscription(subscription.id)

    async def cancel_subscription(self, actor: UserInfo, subscription_id: str) -> Subscription:
        subscription = await self.get_subscription_for(
            actor, subscription_id, Capability.MANAGE_SUBSCRIPTION
        )
        lifecycle.ensure_can_cancel(subscription.status)

        subscription.status = SubscriptionStatus.CANCELLED.value
        subscription.auto_renew = False
        await self.session.commit()

        cancelled_at = self._clock()
        logger.info("subscription.cancelled", subscription_id=subscription.id)
        await self.audit.log_subscription_action(
            actor.user_id,
            AuditAction.SUBSCRIPTION_CANCELLED,
            subscription.id,
            {
                "plan_name": subscription.plan.name,
                "cancellation_date": cancelled_at.isoformat(),
            },
        )
        return await self.get_subscription(subscription.id)

    async def renew_subscription(self, actor: UserInfo, subscription_id: str) -> Subscription:
        """Restart an EXPIRED subscription for a fresh period from now."""
        subscription = await self.get_subscription_for(
            actor, subscription_id, Capability.MANAGE_SUBSCRIPTION
        )
        lifecycle.ensure_can_renew(subscription.status)
        self._ensure_plan_available(subscription.plan)
        await self._ensure_no_other_active(
            subscription.user_id, subscription.plan_id, exclude_id=subscription.id
        )

        plan = subscription.plan
        start = self._clock()
        subscription.status = SubscriptionStatus.ACTIVE.value
        subscription.start_date = start
        subscription.end_date = lifecycle.calculate_period_end(start, plan.billing_cycle)
        subscription.auto_renew = True
        await self._commit(subscription.user_id, subscription.plan_id)

        logger.info("subscription.renewed", subscription_id=subscription.id)
        await self.audit.log_subscription_action(
            actor.user_id,
            AuditAction.SUBSCRIPTION_RENEWED,
            subscription.id,
            {
                "plan_name": plan.name,
                "renewal_date": start.isoformat(),
                "new_end_date": subscription.end_date.isoformat(),
            },
        )
        return await self.get_subscription(subscription.id)

    async def expire_due_subscriptions(self, actor_id: str = SYSTEM_ACTOR) -> list[Subscription]:
        """Move every ACTIVE subscription past its end date to EXPIRED.

        Nothing schedules this; it runs when an operator or external job
        triggers it.
        """
        now = self._clock()
        query = select(Subscription).where(
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.end_date <= now,
        )
        candidates = list((await self.session.execute(query)).scalars().all())
        expired = [
            subscription
            for subscription in candidates
            if lifecycle.is_due_for_expiry(subscription.status, subscription.end_date, now)
        ]
        if not expired:
            return []

        for subscription in expired:
            subscription.status = SubscriptionStatus.EXPIRED.value
        await self.session.commit()

        logger.info("subscription.expiry_run", expired=len(expired), actor_id=actor_id)
        for subscription in expired:
            await self.audit.log_subscription_action(
                actor_id,
                AuditAction.SUBSCRIPTION_EXPIRED,
                subscription.id,
                {"end_date": subscription.end_date.isoformat(), "expired_at": now.isoformat()},
            )
        return expired

    # ------------------------------------------------------------------
    # Not implemented
    # ------------------------------------------------------------------

    async def process_automatic_renewals(self) -> None:
        """Charge and extend auto-renewing subscriptions; needs a payment processor."""
        raise FeatureNotImplementedError("Automatic renewal processing")

    async def track_usage(self, subscription_id: str, metric_name: str, value: float) -> None:
        raise FeatureNotImplementedError("Usage tracking")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _ensure_plan_available(plan: Plan) -> None:
        """Deactivated plans take no new, resumed or renewed subscriptions."""
        if not plan.is_active:
            raise ValidationError(
                "Plan is not available for subscription", context={"plan_id": plan.id}
            )

    async def _ensure_no_other_active(
        self, user_id: str, plan_id: str, *, exclude_id: str | None = None
    ) -> None:
        query = select(Subscription.id).where(
            Subscription.user_id == user_id,
            Subscription.plan_id == plan_id,
            Subscription.status == SubscriptionStatus.ACTIVE.value,
        )
        if exclude_id is not None:
            query = query.where(Subscription.id != exclude_id)
        if (await self.session.execute(query.limit(1))).first() is not None:
            raise DuplicateActiveSubscriptionError(user_id, plan_id)

    async def _commit(self, user_id: str, plan_id: str) -> None:
        """Commit, mapping a lost race on the active-subscription index to a conflict."""
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            logger.info("subscription.duplicate_active", user_id=user_id, plan_id=plan_id)
            raise DuplicateActiveSubscriptionError(user_id, plan_id) from e
