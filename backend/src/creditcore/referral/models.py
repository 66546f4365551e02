"""Referral system database models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field
from sqlalchemy import JSON, Boolean, Column, DateTime, Enum as SQLEnum, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from creditcore.errors import AlreadyCompletedError, InvalidStatusTransitionError
from creditcore.storage.db import Base, utcnow


class ReferralStatus(str, Enum):
    """Referral lifecycle: pending -> completed, once."""
    PENDING = "pending"
    COMPLETED = "completed"


REFERRAL_TRANSITIONS: dict[ReferralStatus, frozenset[ReferralStatus]] = {
    ReferralStatus.PENDING: frozenset({ReferralStatus.COMPLETED}),
    ReferralStatus.COMPLETED: frozenset(),
}


class RiskLevel(str, Enum):
    """Fraud risk buckets."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Referral(Base):
    """Referral of a (prospective) client by a referring client.

    Created by link generation or by the first click from a new IP.
    """
    __tablename__ = "referrals"

    id = Column(Integer, primary_key=True)
    referring_client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    referred_client_id = Column(Integer, ForeignKey("clients.id"), nullable=True, index=True)

    # Link
    code = Column(String(20), unique=True, nullable=False, index=True)
    referral_link = Column(String(500), unique=True, nullable=False, index=True)
    coupon_code = Column(String(20), nullable=False)

    # Visitor fingerprint (click-created referrals)
    referred_ip = Column(String(64), nullable=True, index=True)
    referred_user_agent = Column(String(500), nullable=True)
    referred_location = Column(String(255), nullable=True)

    # Status
    status = Column(SQLEnum(ReferralStatus), default=ReferralStatus.PENDING, nullable=False, index=True)
    is_completed = Column(Boolean, default=False, nullable=False)

    # Statistics
    link_clicks = Column(Integer, default=0, nullable=False)
    signups = Column(Integer, default=0, nullable=False)
    last_clicked_at = Column(DateTime, nullable=True)

    # Reward
    discount_credits = Column(Integer, nullable=False)
    discount_applied = Column(Boolean, default=False, nullable=False)
    rewards_earned = Column(Integer, default=0, nullable=False)
    active_users = Column(Integer, default=0, nullable=False)

    # Timestamps
    referral_date = Column(DateTime, default=utcnow, nullable=False)
    expiry_date = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    clicks = relationship("ReferralClick", back_populates="referral", order_by="ReferralClick.clicked_at")
    analytics = relationship("ReferralAnalytics", back_populates="referral", uselist=False)

    def __repr__(self):
        return f"<Referral(id={self.id}, code={self.code}, status={self.status})>"

    def transition_to(self, target: ReferralStatus) -> None:
        """Move to ``target`` or raise if the lifecycle forbids it."""
        if self.status == ReferralStatus.COMPLETED and target == ReferralStatus.COMPLETED:
            raise AlreadyCompletedError(f"Referral {self.id} already completed")
        if target not in REFERRAL_TRANSITIONS[self.status]:
            raise InvalidStatusTransitionError("Referral", self.status.value, target.value)
        self.status = target
        self.is_completed = target == ReferralStatus.COMPLETED


class ReferralClick(Base):
    """Immutable click audit row, with the fraud verdict at click time."""
    __tablename__ = "referral_clicks"

    id = Column(Integer, primary_key=True)
    referral_id = Column(Integer, ForeignKey("referrals.id"), nullable=False, index=True)

    ip_address = Column(String(64), nullable=False)
    user_agent = Column(String(500), nullable=True)
    location = Column(String(255), nullable=True)
    clicked_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    converted = Column(Boolean, default=False, nullable=False)

    # Fraud scoring
    fraud_score = Column(Float, default=0.0, nullable=False)
    risk_level = Column(SQLEnum(RiskLevel), default=RiskLevel.LOW, nullable=False)
    fraud_indicators = Column(JSON, nullable=True)

    referral = relationship("Referral", back_populates="clicks")

    def __repr__(self):
        return f"<ReferralClick(id={self.id}, referral={self.referral_id}, risk={self.risk_level})>"


class ReferralAnalytics(Base):
    """Derived metrics of one referral, recomputed on every click and completion."""
    __tablename__ = "referral_analytics"

    id = Column(Integer, primary_key=True)
    referral_id = Column(Integer, ForeignKey("referrals.id"), nullable=False, unique=True)

    conversion_rate = Column(Float, default=0.0, nullable=False)  # Percent
    average_spend = Column(Float, default=0.0, nullable=False)
    time_to_conversion = Column(Integer, nullable=True)  # Whole days

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    referral = relationship("Referral", back_populates="analytics")


class ReferralProgramSettings(Base):
    """Referral program terms stored in the database; one row, created on first update."""
    __tablename__ = "referral_program_settings"

    id = Column(Integer, primary_key=True)
    credit_per_referral = Column(Integer, nullable=False)
    expiration_days = Column(Integer, nullable=False)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<ReferralProgramSettings(credits={self.credit_per_referral}, days={self.expiration_days})>"


# Pydantic models

class FraudScore(BaseModel):
    """Weighted fraud heuristic result."""
    score: float
    risk_level: RiskLevel
    indicators: list[str] = []


class ReferralLink(BaseModel):
    """Generated referral link."""
    referral_id: int
    code: str
    link: str
    coupon_code: str
    expiry_date: datetime


class ReferralClickResult(BaseModel):
    """Outcome of tracking one click."""
    referral_id: int
    click_id: int
    link_clicks: int
    fraud: FraudScore


class ReferralStats(BaseModel):
    """Referral statistics for a client."""
    referral_code: str | None
    total_referrals: int
    completed_referrals: int
    pending_referrals: int
    credits_earned: int
    total_clicks: int
    total_signups: int


class ReferralAnalyticsResponse(BaseModel):
    """Analytics of one referral."""
    referral_id: int
    conversion_rate: float
    average_spend: float
    time_to_conversion: int | None
    link_clicks: int
    signups: int


class ReferralResponse(BaseModel):
    """Referral response."""
    id: int
    referring_client_id: int
    referred_client_id: int | None
    code: str
    referral_link: str
    coupon_code: str
    status: ReferralStatus
    is_completed: bool
    link_clicks: int
    signups: int
    discount_credits: int
    discount_applied: bool
    rewards_earned: int
    expiry_date: datetime

    class Config:
        from_attributes = True


class ReferralSettingsUpdate(BaseModel):
    """New referral program terms."""
    credit_per_referral: int = Field(..., ge=1, le=1000)
    expiration_days: int = Field(..., ge=1, le=365)


class ReferralSettingsResponse(BaseModel):
    """Referral program terms in effect."""
    credit_per_referral: int
    expiration_days: int
