"""
Admin reporting service.

Read-only aggregates over users, plans and subscriptions for the admin
dashboard.
"""

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..audit import AuditService
from ..auth.models import User, UserRole
from ..db import check_database_health, utcnow
from ..exceptions import FeatureNotImplementedError, ValidationError
from ..plans.models import Plan, PlanResponse, PopularPlanResponse
from ..subscriptions.models import Subscription, SubscriptionStatus
from .models import (
    AnalyticsResponse,
    ReportPeriod,
    SubscriptionStats,
    SystemHealthResponse,
    UserGrowth,
    UserMetricsResponse,
    UserStats,
)

logger = structlog.get_logger(__name__)

DEFAULT_PERIOD = timedelta(days=30)
TOP_PLANS_LIMIT = 5


class AdminService:
    def __init__(
        self,
        session: AsyncSession,
        audit: AuditService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.audit = audit
        self._clock = clock

    async def get_analytics(
        self, start_date: datetime | None = None, end_date: datetime | None = None
    ) -> AnalyticsResponse:
        """Subscription and user counts plus the top plans.

        The period defaults to the last 30 days and only affects the
        ``new_in_period`` figures.
        """
        end = end_date or self._clock()
        start = start_date or end - DEFAULT_PERIOD
        if start > end:
            raise ValidationError(
                "start_date must be before end_date",
                context={"start_date": start.isoformat(), "end_date": end.isoformat()},
            )

        status_rows = await self.session.execute(
            select(Subscription.status, func.count()).group_by(Subscription.status)
        )
        by_status = {status: count for status, count in status_rows.all()}

        new_subscriptions = await self._count(
            select(func.count())
            .select_from(Subscription)
            .where(Subscription.created_at >= start, Subscription.created_at <= end)
        )
        total_users = await self._count(select(func.count()).select_from(User))
        new_users = await self._count(
            select(func.count())
            .select_from(User)
            .where(User.created_at >= start, User.created_at <= end)
        )

        logger.info("admin.analytics", start=start.isoformat(), end=end.isoformat())
        return AnalyticsResponse(
            period=ReportPeriod(start_date=start, end_date=end),
            subscriptions=SubscriptionStats(
                total=sum(by_status.values()),
                active=by_status.get(SubscriptionStatus.ACTIVE.value, 0),
                cancelled=by_status.get(SubscriptionStatus.CANCELLED.value, 0),
                paused=by_status.get(SubscriptionStatus.PAUSED.value, 0),
                expired=by_status.get(SubscriptionStatus.EXPIRED.value, 0),
                new_in_period=new_subscriptions,
            ),
            users=UserStats(total=total_users, new_in_period=new_users),
            top_plans=await self._top_plans(),
        )

    async def calculate_revenue(
        self, start_date: datetime | None = None, end_date: datetime | None = None
    ) -> None:
        raise FeatureNotImplementedError("Revenue reporting")

    async def get_user_metrics(self) -> UserMetricsResponse:
        total_users = await self._count(select(func.count()).select_from(User))
        active_subscribers = await self._count(
            select(func.count(distinct(Subscription.user_id))).where(
                Subscription.status == SubscriptionStatus.ACTIVE.value
            )
        )

        role_rows = await self.session.execute(select(User.role, func.count()).group_by(User.role))
        users_by_role = {role.value: 0 for role in UserRole}
        users_by_role.update({role: count for role, count in role_rows.all()})

        now = self._clock()
        current_start = now - DEFAULT_PERIOD
        previous_start = current_start - DEFAULT_PERIOD
        current = await self._count(
            select(func.count()).select_from(User).where(User.created_at >= current_start)
        )
        previous = await self._count(
            select(func.count())
            .select_from(User)
            .where(User.created_at >= previous_start, User.created_at < current_start)
        )

        return UserMetricsResponse(
            total_users=total_users,
            active_subscribers=active_subscribers,
            users_by_role=users_by_role,
            growth=UserGrowth(
                current_period=current,
                previous_period=previous,
                growth_rate=growth_rate(current, previous),
            ),
        )

    async def system_health(self) -> SystemHealthResponse:
        database_ok = await check_database_health(self.session)
        return SystemHealthResponse(
            status="healthy" if database_ok else "degraded",
            database="connected" if database_ok else "unavailable",
            services={"payment": "not_configured", "email": "not_configured"},
            checked_at=self._clock(),
        )

    async def _top_plans(self) -> list[PopularPlanResponse]:
        subscription_count = func.count(Subscription.id).label("subscription_count")
        query = (
            select(Plan, subscription_count)
            .outerjoin(Subscription, Subscription.plan_id == Plan.id)
            .group_by(Plan.id)
            .order_by(subscription_count.desc(), Plan.name)
            .limit(TOP_PLANS_LIMIT)
        )
        rows = (await self.session.execute(query)).all()
        return [
            PopularPlanResponse(
                **PlanResponse.model_validate(plan).model_dump(), subscription_count=count
            )
            for plan, count in rows
        ]

    async def _count(self, query) -> int:
        return int((await self.session.execute(query)).scalar_one())


def growth_rate(current: int, previous: int) -> float:
    """Percent change from ``previous`` to ``current``, rounded to 2 places."""
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 2)
