"""
Subscription endpoints.

Callers see and manage their own subscriptions; admins may act on any.
"""

from fastapi import APIRouter, Depends, status

from ..auth.core import UserInfo, get_current_user
from ..dependencies import get_subscription_service
from .models import (
    SubscriptionCreateRequest,
    SubscriptionResponse,
    SubscriptionUpdateRequest,
)
from .service import SubscriptionService

router = APIRouter(tags=["Subscriptions"])


@router.get("", response_model=list[SubscriptionResponse])
async def list_my_subscriptions(
    current_user: UserInfo = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> list[SubscriptionResponse]:
    subscriptions = await service.list_user_subscriptions(current_user.user_id)
    return [SubscriptionResponse.model_validate(sub) for sub in subscriptions]


@router.post("", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    data: SubscriptionCreateRequest,
    current_user: UserInfo = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    """Subscribe the caller to a plan."""
    subscription = await service.create_subscription(current_user, data)
    return SubscriptionResponse.model_validate(subscription)


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(
    subscription_id: str,
    current_user: UserInfo = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    subscription = await service.get_subscription_for(current_user, subscription_id)
    return SubscriptionResponse.model_validate(subscription)


@router.put("/{subscription_id}", response_model=SubscriptionResponse)
async def update_subscription(
    subscription_id: str,
    data: SubscriptionUpdateRequest,
    current_user: UserInfo = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    subscription = await service.update_subscription(current_user, subscription_id, data)
    return SubscriptionResponse.model_validate(subscription)


@router.delete("/{subscription_id}", response_model=SubscriptionResponse)
async def cancel_subscription(
    subscription_id: str,
    current_user: UserInfo = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    """Cancel an active subscription. The record is kept with status CANCELLED."""
    subscription = await service.cancel_subscription(current_user, subscription_id)
    return SubscriptionResponse.model_validate(subscription)


@router.post("/{subscription_id}/renew", response_model=SubscriptionResponse)
async def renew_subscription(
    subscription_id: str,
    current_user: UserInfo = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    subscription = await service.renew_subscription(current_user, subscription_id)
    return SubscriptionResponse.model_validate(subscription)
