"""
Plan catalog models.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from sqlalchemy import JSON, Boolean, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base, IdMixin, TimestampMixin


class BillingCycle(str, Enum):
    """Recurrence period determining subscription duration."""

    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class PlanTier(str, Enum):
    """Plan classification. Declaration order is the catalog sort order."""

    BASIC = "BASIC"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


# Fields that change what an existing subscriber pays or gets billed for
BREAKING_PLAN_FIELDS = frozenset({"price", "billing_cycle", "tier"})


class Plan(Base, IdMixin, TimestampMixin):
    """Plans table."""

    __tablename__ = "plans"

    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    billing_cycle: Mapped[str] = mapped_column(String(20), nullable=False)
    tier: Mapped[str] = mapped_column(String(20), nullable=False)
    features: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_plans_active_tier", "is_active", "tier"),
    )


def _normalize_features(features: list[str]) -> list[str]:
    features = [feature.strip() for feature in features]
    if any(not feature for feature in features):
        raise ValueError("Features must not be blank")
    return features


FeatureList = Annotated[list[str], Field(min_length=1), AfterValidator(_normalize_features)]


class PlanCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str = Field(min_length=1, max_length=255, description="Plan name is required")
    description: str = Field(min_length=1, description="Description is required")
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    billing_cycle: BillingCycle
    features: FeatureList = Field(description="At least one feature is required")
    tier: PlanTier


class PlanUpdateRequest(BaseModel):
    """Partial patch; omitted fields are left untouched."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, min_length=1)
    price: Decimal | None = Field(None, ge=0, max_digits=10, decimal_places=2)
    billing_cycle: BillingCycle | None = None
    features: FeatureList | None = None
    tier: PlanTier | None = None


class PlanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    price: Decimal
    billing_cycle: BillingCycle
    tier: PlanTier
    features: list[str]
    is_active: bool
    created_at: datetime
    updated_at: datetime


class PopularPlanResponse(PlanResponse):
    subscription_count: int


class PlanFilters(BaseModel):
    is_active: bool | None = None
    tier: PlanTier | None = None
    billing_cycle: BillingCycle | None = None
