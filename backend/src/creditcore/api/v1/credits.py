"""Credit catalog and ledger API v1 endpoints."""

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from creditcore.api.deps import get_catalog_service, get_credit_service
from creditcore.catalog.models import CreditValueResponse, ServiceCost
from creditcore.catalog.service import CreditValueService
from creditcore.ledger.models import (
    CreditBalance,
    CreditConsumptionResponse,
    CreditConsumptionResult,
    ReferralCreditResponse,
)
from creditcore.ledger.service import CreditService
from creditcore.logging_config import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


# ==================== MODELS ====================


class ConsumeRequest(BaseModel):
    """Request to consume credits for a service."""
    service_id: int
    units: int = Field(..., ge=1)
    description: str | None = None
    discount_code: str | None = None


class ConsumeReferralCreditRequest(BaseModel):
    """Request to redeem one referral credit."""
    amount: int = Field(..., ge=1)


class CreateReferralCreditRequest(BaseModel):
    """Request to mint a referral credit."""
    credit_amount: int = Field(..., ge=1)
    referred_email: str | None = None
    expires_in_days: int = Field(default=30, ge=1)


class ExpiringCreditsResponse(BaseModel):
    expiring_amount: int
    expiring_within_days: int
    earliest_expiration: str | None


# ==================== ENDPOINTS ====================


@router.get("/services", response_model=list[CreditValueResponse])
async def list_services(
    category: str | None = None,
    catalog: CreditValueService = Depends(get_catalog_service),
):
    """List active catalog services, optionally by category."""
    if category:
        return catalog.get_services_by_category(category)
    return catalog.get_all_active_services()


@router.get("/services/{service_type}/cost", response_model=ServiceCost)
async def get_service_cost(
    service_type: str,
    units: int = Query(..., ge=1),
    catalog: CreditValueService = Depends(get_catalog_service),
):
    """Quote the credit cost of ``units`` of a service."""
    return catalog.get_service_cost(service_type, units)


@router.get("/subscriptions/{subscription_id}/balance", response_model=CreditBalance)
async def get_balance(subscription_id: int, credits: CreditService = Depends(get_credit_service)):
    return credits.get_credit_balance(subscription_id)


@router.post("/subscriptions/{subscription_id}/consume", response_model=CreditConsumptionResult)
async def consume_credits(
    subscription_id: int,
    request: ConsumeRequest,
    credits: CreditService = Depends(get_credit_service),
):
    """Charge a service usage against a subscription.

    Answers 402 when the balance is insufficient, 403 when the subscription
    cannot consume.
    """
    return credits.consume_credits(
        subscription_id=subscription_id,
        service_id=request.service_id,
        units=request.units,
        description=request.description,
        discount_code=request.discount_code,
    )


@router.post(
    "/subscriptions/{subscription_id}/referral-credits/{referral_credit_id}/consume",
    response_model=CreditConsumptionResult,
)
async def consume_referral_credit(
    subscription_id: int,
    referral_credit_id: int,
    request: ConsumeReferralCreditRequest,
    credits: CreditService = Depends(get_credit_service),
):
    return credits.consume_referral_credit(subscription_id, referral_credit_id, request.amount)


@router.post(
    "/subscriptions/{subscription_id}/referral-credits",
    response_model=ReferralCreditResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_referral_credit(
    subscription_id: int,
    request: CreateReferralCreditRequest,
    credits: CreditService = Depends(get_credit_service),
):
    return credits.create_referral_credit(
        subscription_id,
        request.credit_amount,
        referred_email=request.referred_email,
        expires_in_days=request.expires_in_days,
    )


@router.get("/subscriptions/{subscription_id}/history", response_model=list[CreditConsumptionResponse])
async def get_consumption_history(
    subscription_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    credits: CreditService = Depends(get_credit_service),
):
    return credits.get_consumption_history(subscription_id, limit=limit, offset=offset)


@router.get("/subscriptions/{subscription_id}/expiring", response_model=ExpiringCreditsResponse)
async def get_expiring_credits(
    subscription_id: int,
    days: int = Query(default=30, ge=1),
    credits: CreditService = Depends(get_credit_service),
):
    return credits.get_expiring_credits(subscription_id, days=days)
