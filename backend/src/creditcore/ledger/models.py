"""Credit ledger models: referral credits, consumption audit and allocations."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel
from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from creditcore.storage.db import Base, utcnow
from creditcore.subscriptions.models import Subscription  # noqa: F401  (relationship target)


class CreditType(str, Enum):
    """Credit pool a consumption drew from."""
    BASE = "base"
    REFERRAL = "referral"


class ReferralCreditStatus(str, Enum):
    """Referral credit lifecycle."""
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


class TransactionType(str, Enum):
    """Why credits were added to a subscription."""
    SUBSCRIPTION = "subscription"
    REFERRAL = "referral"
    ADJUSTMENT = "adjustment"


class ReferralCredit(Base):
    """Bonus credits earned through a referral.

    Expires independently of the subscription period.
    """
    __tablename__ = "referral_credits"

    id = Column(Integer, primary_key=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=False, index=True)

    credit_amount = Column(Integer, nullable=False)
    # Drawn so far by pooled consumption; USED once it reaches credit_amount
    amount_used = Column(Integer, default=0, nullable=False)
    referred_user_email = Column(String(255), nullable=True)
    status = Column(SQLEnum(ReferralCreditStatus), default=ReferralCreditStatus.ACTIVE, nullable=False, index=True)

    referral_date = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

    subscription = relationship("Subscription")

    def __repr__(self):
        return f"<ReferralCredit(id={self.id}, amount={self.credit_amount}, status={self.status})>"

    def is_usable(self, now: datetime) -> bool:
        """ACTIVE and not yet past expiry, whatever the stored status claims."""
        return self.status == ReferralCreditStatus.ACTIVE and self.expires_at > now

    @property
    def remaining(self) -> int:
        return self.credit_amount - (self.amount_used or 0)


class CreditConsumption(Base):
    """Immutable record of one deduction. Never updated after insert."""
    __tablename__ = "credit_consumptions"

    id = Column(Integer, primary_key=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("credit_values.id"), nullable=True)
    referral_credit_id = Column(Integer, ForeignKey("referral_credits.id"), nullable=True)

    units = Column(Integer, nullable=False)
    unit_type = Column(String(20), nullable=False)
    credit_rate = Column(Integer, nullable=False)
    total_credits = Column(Integer, nullable=False)
    discount_applied = Column(Integer, default=0, nullable=False)
    credit_type = Column(SQLEnum(CreditType), nullable=False)
    description = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)

    def __repr__(self):
        return f"<CreditConsumption(id={self.id}, subscription={self.subscription_id}, total={self.total_credits})>"


class CreditTransaction(Base):
    """Credit allocation record (plan purchase, referral reward, adjustment)."""
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=False, index=True)
    referral_id = Column(Integer, ForeignKey("referrals.id"), nullable=True, index=True)

    amount = Column(Integer, nullable=False)
    type = Column(SQLEnum(TransactionType), nullable=False)
    description = Column(String(500), nullable=True)
    remaining = Column(Integer, nullable=True)  # Credits available right after this allocation

    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<CreditTransaction(id={self.id}, type={self.type}, amount={self.amount})>"


# Pydantic models for API

class CreditBalance(BaseModel):
    """Credit balance of a subscription's current period."""
    base_credits: int
    base_credits_used: int
    referral_credits: int
    referral_credits_used: int
    available_credits: int


class CreditConsumptionResult(BaseModel):
    """Summary returned by a successful consumption."""
    subscription_id: int
    service_id: int | None
    units: int
    total_credits: int
    discount_applied: int
    referral_credits_used: int
    base_credits_used: int
    credit_type: CreditType
    description: str | None = None


class CreditConsumptionResponse(BaseModel):
    """Consumption history row."""
    id: int
    service_id: int | None
    referral_credit_id: int | None
    units: int
    unit_type: str
    credit_rate: int
    total_credits: int
    discount_applied: int
    credit_type: CreditType
    description: str | None
    created_at: datetime

    class Config:
        from_attributes = True


class ReferralCreditResponse(BaseModel):
    """Referral credit response."""
    id: int
    subscription_id: int
    credit_amount: int
    amount_used: int
    referred_user_email: str | None
    status: ReferralCreditStatus
    referral_date: datetime
    expires_at: datetime

    class Config:
        from_attributes = True
