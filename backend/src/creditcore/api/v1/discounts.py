"""Discount API v1 endpoints."""

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from creditcore.api.deps import get_discount_engine
from creditcore.discounts.engine import DiscountEngine
from creditcore.discounts.models import (
    ApplicableDiscount,
    DiscountApplication,
    DiscountContext,
    DiscountCreate,
    DiscountResponse,
    DiscountTarget,
)

router = APIRouter(prefix="/discounts", tags=["discounts"])


class ApplyDiscountRequest(BaseModel):
    """Request to apply a discount code."""
    code: str
    client_id: int
    amount: float = Field(..., ge=0)
    subscription_id: int | None = None
    service_id: int | None = None
    plan_id: int | None = None
    service_type: str | None = None


@router.post("", response_model=DiscountResponse, status_code=status.HTTP_201_CREATED)
async def create_discount(request: DiscountCreate, engine: DiscountEngine = Depends(get_discount_engine)):
    return engine.create_discount(request)


@router.get("/applicable", response_model=list[ApplicableDiscount])
async def get_applicable_discounts(
    user_id: int,
    target_type: DiscountTarget,
    plan_id: int | None = None,
    service_type: str | None = None,
    engine: DiscountEngine = Depends(get_discount_engine),
):
    """Discounts the user may use right now for the given target."""
    context = DiscountContext(
        user_id=user_id,
        target_type=target_type,
        plan_id=plan_id,
        service_type=service_type,
    )
    return engine.get_applicable_discounts(context)


@router.post("/apply", response_model=DiscountApplication)
async def apply_discount(request: ApplyDiscountRequest, engine: DiscountEngine = Depends(get_discount_engine)):
    return engine.apply_discount(**request.model_dump())
