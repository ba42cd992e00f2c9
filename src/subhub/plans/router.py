"""
Plan catalog endpoints.

Reads are public; writes require the MANAGE_PLANS capability.
"""

from fastapi import APIRouter, Depends, Query, status

from ..auth.access import Capability, require_capability
from ..auth.core import UserInfo
from ..dependencies import get_plan_service
from .models import (
    BillingCycle,
    PlanCreateRequest,
    PlanFilters,
    PlanResponse,
    PlanTier,
    PlanUpdateRequest,
    PopularPlanResponse,
)
from .service import PlanService

router = APIRouter(tags=["Plans"])

require_plan_manager = require_capability(Capability.MANAGE_PLANS)


@router.get("", response_model=list[PlanResponse])
async def list_plans(
    is_active: bool | None = Query(None, description="Filter by active flag"),
    tier: PlanTier | None = Query(None, description="Filter by tier"),
    billing_cycle: BillingCycle | None = Query(None, description="Filter by billing cycle"),
    service: PlanService = Depends(get_plan_service),
) -> list[PlanResponse]:
    plans = await service.list_plans(
        PlanFilters(is_active=is_active, tier=tier, billing_cycle=billing_cycle)
    )
    return [PlanResponse.model_validate(plan) for plan in plans]


@router.get("/popular", response_model=list[PopularPlanResponse])
async def get_popular_plans(
    limit: int = Query(3, ge=1, le=20, description="Number of plans to return"),
    service: PlanService = Depends(get_plan_service),
) -> list[PopularPlanResponse]:
    """Active plans ranked by subscription count."""
    ranked = await service.get_popular_plans(limit)
    return [
        PopularPlanResponse(
            **PlanResponse.model_validate(plan).model_dump(), subscription_count=count
        )
        for plan, count in ranked
    ]


@router.get("/{plan_id}", response_model=PlanResponse)
async def get_plan(
    plan_id: str,
    service: PlanService = Depends(get_plan_service),
) -> PlanResponse:
    return PlanResponse.model_validate(await service.get_plan(plan_id))


@router.post("", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
async def create_plan(
    data: PlanCreateRequest,
    current_user: UserInfo = Depends(require_plan_manager),
    service: PlanService = Depends(get_plan_service),
) -> PlanResponse:
    plan = await service.create_plan(data, current_user.user_id)
    return PlanResponse.model_validate(plan)


@router.put("/{plan_id}", response_model=PlanResponse)
async def update_plan(
    plan_id: str,
    data: PlanUpdateRequest,
    current_user: UserInfo = Depends(require_plan_manager),
    service: PlanService = Depends(get_plan_service),
) -> PlanResponse:
    plan = await service.update_plan(plan_id, data, current_user.user_id)
    return PlanResponse.model_validate(plan)


@router.delete("/{plan_id}", response_model=PlanResponse)
async def delete_plan(
    plan_id: str,
    current_user: UserInfo = Depends(require_plan_manager),
    service: PlanService = Depends(get_plan_service),
) -> PlanResponse:
    """Deactivate a plan. Refused while it has active subscriptions."""
    plan = await service.deactivate_plan(plan_id, current_user.user_id)
    return PlanResponse.model_validate(plan)
