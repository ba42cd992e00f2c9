"""
Admin reporting schemas.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from ..plans.models import PopularPlanResponse


class ReportPeriod(BaseModel):
    start_date: datetime
    end_date: datetime


class SubscriptionStats(BaseModel):
    total: int = 0
    active: int = 0
    cancelled: int = 0
    paused: int = 0
    expired: int = 0
    new_in_period: int = 0


class UserStats(BaseModel):
    total: int = 0
    new_in_period: int = 0


class AnalyticsResponse(BaseModel):
    """Platform overview. Revenue is not reported."""

    period: ReportPeriod
    subscriptions: SubscriptionStats
    users: UserStats
    top_plans: list[PopularPlanResponse] = Field(default_factory=list)


class UserGrowth(BaseModel):
    current_period: int
    previous_period: int
    growth_rate: float = Field(description="Percent change versus the previous period")


class UserMetricsResponse(BaseModel):
    total_users: int
    active_subscribers: int
    users_by_role: dict[str, int]
    growth: UserGrowth


class SystemHealthResponse(BaseModel):
    status: str
    database: str
    services: dict[str, str]
    checked_at: datetime
