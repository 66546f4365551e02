"""Subscription and plan API v1 endpoints."""

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from creditcore.api.deps import get_plan_service, get_subscription_service
from creditcore.errors import NotFoundError
from creditcore.subscriptions.models import (
    PlanResponse,
    SubscriptionCreate,
    SubscriptionHistoryResponse,
    SubscriptionResponse,
)
from creditcore.subscriptions.plans import PlanService
from creditcore.subscriptions.service import SubscriptionService

router = APIRouter(tags=["subscriptions"])


class CancelRequest(BaseModel):
    reason: str | None = None


class UpgradeRequest(BaseModel):
    plan_id: int
    price_id: int | None = None


class SubscriptionStatusResponse(BaseModel):
    subscription_id: int
    active: bool


@router.get("/plans", response_model=list[PlanResponse])
async def list_plans(plans: PlanService = Depends(get_plan_service)):
    return plans.list_plans()


@router.get("/plans/{plan_id}", response_model=PlanResponse)
async def get_plan(plan_id: int, plans: PlanService = Depends(get_plan_service)):
    plan = plans.get_plan(plan_id)
    if plan is None:
        raise NotFoundError("Plan", plan_id)
    return plan


@router.post("/subscriptions", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def create_subscription(
    request: SubscriptionCreate,
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    return subscriptions.create_subscription(**request.model_dump())


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(
    subscription_id: int,
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    return subscriptions.get_subscription(subscription_id)


@router.get("/subscriptions/{subscription_id}/status", response_model=SubscriptionStatusResponse)
async def check_subscription_status(
    subscription_id: int,
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    """Whether the subscription can consume; expires it when past period end."""
    active = subscriptions.check_subscription_status(subscription_id)
    return SubscriptionStatusResponse(subscription_id=subscription_id, active=active)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionResponse)
async def cancel_subscription(
    subscription_id: int,
    request: CancelRequest,
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    return subscriptions.cancel_subscription(subscription_id, request.reason)


@router.post("/subscriptions/{subscription_id}/renew", response_model=SubscriptionResponse)
async def renew_subscription(
    subscription_id: int,
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    return subscriptions.renew_subscription(subscription_id)


@router.post("/subscriptions/{subscription_id}/upgrade", response_model=SubscriptionResponse)
async def upgrade_subscription(
    subscription_id: int,
    request: UpgradeRequest,
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    return subscriptions.upgrade_subscription(subscription_id, request.plan_id, request.price_id)


@router.post("/subscriptions/{subscription_id}/pause", response_model=SubscriptionResponse)
async def pause_subscription(
    subscription_id: int,
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    return subscriptions.pause_subscription(subscription_id)


@router.post("/subscriptions/{subscription_id}/resume", response_model=SubscriptionResponse)
async def resume_subscription(
    subscription_id: int,
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    return subscriptions.resume_subscription(subscription_id)


@router.get("/subscriptions/{subscription_id}/history", response_model=list[SubscriptionHistoryResponse])
async def get_subscription_history(
    subscription_id: int,
    subscriptions: SubscriptionService = Depends(get_subscription_service),
):
    return subscriptions.get_subscription_history(subscription_id)
