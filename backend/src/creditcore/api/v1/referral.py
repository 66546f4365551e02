"""Referral API v1 endpoints."""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from creditcore.api.deps import get_referral_service
from creditcore.logging_config import get_logger
from creditcore.referral.models import (
    ReferralAnalyticsResponse,
    ReferralClickResult,
    ReferralLink,
    ReferralResponse,
    ReferralSettingsResponse,
    ReferralSettingsUpdate,
    ReferralStats,
)
from creditcore.referral.service import ReferralService

logger = get_logger(__name__)

router = APIRouter(prefix="/referral", tags=["referral"])


# ==================== MODELS ====================


class GenerateLinkRequest(BaseModel):
    """Request to generate a referral link."""
    client_id: int
    base_url: str | None = None
    language: str | None = None


class TrackClickRequest(BaseModel):
    """Request to track a referral link click."""
    code: str
    ip_address: str | None = None  # Defaults to the caller's address
    user_agent: str | None = None
    location: str | None = None


class CompleteReferralRequest(BaseModel):
    """Request to complete a referral after signup."""
    referral_link: str
    new_client_id: int


# ==================== ENDPOINTS ====================


@router.post("/links", response_model=ReferralLink)
async def generate_referral_link(
    request: GenerateLinkRequest,
    referrals: ReferralService = Depends(get_referral_service),
):
    return referrals.generate_referral_link(request.client_id, request.base_url, request.language)


@router.post("/track-click", response_model=ReferralClickResult)
async def track_click(
    body: TrackClickRequest,
    request: Request,
    referrals: ReferralService = Depends(get_referral_service),
):
    """Track a click on a referral link.

    Called when someone visits a referral link. Suspicious clicks are still
    recorded, with their fraud score.
    """
    ip_address = body.ip_address or (request.client.host if request.client else "unknown")
    user_agent = body.user_agent or request.headers.get("user-agent")
    return referrals.track_referral_click(body.code, ip_address, user_agent, body.location)


@router.post("/complete", response_model=ReferralResponse)
async def complete_referral(
    request: CompleteReferralRequest,
    referrals: ReferralService = Depends(get_referral_service),
):
    return referrals.complete_referral(request.referral_link, request.new_client_id)


@router.get("/clients/{client_id}/stats", response_model=ReferralStats)
async def get_referral_stats(client_id: int, referrals: ReferralService = Depends(get_referral_service)):
    return referrals.get_referral_stats(client_id)


@router.get("/{referral_id}/analytics", response_model=ReferralAnalyticsResponse)
async def get_referral_analytics(referral_id: int, referrals: ReferralService = Depends(get_referral_service)):
    return referrals.get_referral_analytics(referral_id)


@router.get("/settings", response_model=ReferralSettingsResponse)
async def get_referral_settings(referrals: ReferralService = Depends(get_referral_service)):
    return referrals.get_referral_settings()


@router.put("/settings", response_model=ReferralSettingsResponse)
async def update_referral_settings(
    request: ReferralSettingsUpdate,
    referrals: ReferralService = Depends(get_referral_service),
):
    return referrals.update_referral_settings(request)
