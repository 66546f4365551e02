"""Referral links, click tracking with fraud scoring, and referral rewards."""

from creditcore.referral.fraud import FraudDetector
from creditcore.referral.models import (
    FraudScore,
    Referral,
    ReferralAnalytics,
    ReferralClick,
    ReferralStatus,
    RiskLevel,
)
from creditcore.referral.service import ReferralService, referral_service

__all__ = [
    "FraudDetector",
    "FraudScore",
    "Referral",
    "ReferralAnalytics",
    "ReferralClick",
    "ReferralService",
    "ReferralStatus",
    "RiskLevel",
    "referral_service",
]
