"""Subscription, plan and period history models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel
from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from creditcore.errors import InvalidStatusTransitionError
from creditcore.storage.db import Base, utcnow


class BillingCycle(str, Enum):
    """Length of one billing period."""
    MONTHLY = "monthly"
    ANNUALLY = "annually"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states."""
    TRIALING = "trialing"
    ACTIVE = "active"
    PAUSED = "paused"
    EXPIRED = "expired"
    CANCELED = "canceled"  # Terminal


# Legal lifecycle moves; ACTIVE -> ACTIVE is a renewal
SUBSCRIPTION_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.TRIALING: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.ACTIVE: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.PAUSED,
        SubscriptionStatus.CANCELED,
        SubscriptionStatus.EXPIRED,
    }),
    SubscriptionStatus.PAUSED: frozenset({
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.CANCELED,
    }),
    SubscriptionStatus.EXPIRED: frozenset({
        SubscriptionStatus.ACTIVE,
    }),
    SubscriptionStatus.CANCELED: frozenset(),
}

# Statuses that block a client from opening a second subscription
LIVE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING, SubscriptionStatus.PAUSED)

# Statuses that may consume credits
CONSUMING_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)


class Plan(Base):
    """Purchasable subscription plan."""
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_custom = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    prices = relationship("PlanPrice", back_populates="plan", order_by="PlanPrice.id")

    def __repr__(self):
        return f"<Plan(id={self.id}, name={self.name})>"


class PlanPrice(Base):
    """One price point of a plan; ``credits`` is the base allotment per period."""
    __tablename__ = "plan_prices"

    id = Column(Integer, primary_key=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False, index=True)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="USD")
    billing_cycle = Column(SQLEnum(BillingCycle), default=BillingCycle.MONTHLY, nullable=False)
    credits = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=utcnow)

    plan = relationship("Plan", back_populates="prices")

    def __repr__(self):
        return f"<PlanPrice(id={self.id}, plan_id={self.plan_id}, credits={self.credits})>"


class Subscription(Base):
    """A client's subscription and its current-period usage counters."""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)
    price_id = Column(Integer, ForeignKey("plan_prices.id"), nullable=True)

    # Overrides the price's credits when set
    custom_credits = Column(Integer, nullable=True)

    status = Column(SQLEnum(SubscriptionStatus), default=SubscriptionStatus.ACTIVE, nullable=False, index=True)
    current_period_start = Column(DateTime, nullable=False)
    current_period_end = Column(DateTime, nullable=False)

    # Usage in the current period
    base_credits_used = Column(Integer, default=0, nullable=False)
    referral_credits_used = Column(Integer, default=0, nullable=False)
    brands_used = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    price = relationship("PlanPrice")
    history = relationship("SubscriptionHistory", back_populates="subscription")

    def __repr__(self):
        return f"<Subscription(id={self.id}, client_id={self.client_id}, status={self.status})>"

    def transition_to(self, target: SubscriptionStatus) -> None:
        """Move to ``target`` or raise if the lifecycle forbids it."""
        if target not in SUBSCRIPTION_TRANSITIONS[self.status]:
            raise InvalidStatusTransitionError("Subscription", self.status.value, target.value)
        self.status = target

    def expire_if_lapsed(self, now: datetime) -> bool:
        """Lazy expiry: a consuming subscription past its period end becomes EXPIRED.

        Returns:
            True if this call expired the subscription
        """
        if self.status in CONSUMING_STATUSES and self.current_period_end <= now:
            self.transition_to(SubscriptionStatus.EXPIRED)
            self.updated_at = now
            return True
        return False


class SubscriptionHistory(Base):
    """Snapshot of a closed billing period."""
    __tablename__ = "subscription_history"

    id = Column(Integer, primary_key=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=False, index=True)
    plan_id = Column(Integer, nullable=False)
    price_id = Column(Integer, nullable=True)
    status = Column(SQLEnum(SubscriptionStatus), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    base_credits_used = Column(Integer, default=0)
    referral_credits_used = Column(Integer, default=0)
    reason = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=utcnow)

    subscription = relationship("Subscription", back_populates="history")


# Pydantic models for API

class SubscriptionCreate(BaseModel):
    """Request to open a subscription."""
    client_id: int
    plan_id: int
    price_id: int | None = None
    custom_credits: int | None = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    billing_cycle: BillingCycle | None = None


class SubscriptionResponse(BaseModel):
    """Subscription response."""
    id: int
    client_id: int
    plan_id: int
    price_id: int | None
    custom_credits: int | None
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime
    base_credits_used: int
    referral_credits_used: int
    brands_used: int

    class Config:
        from_attributes = True


class PlanPriceResponse(BaseModel):
    """Plan price snapshot (also what the plan cache holds)."""
    id: int
    amount: Decimal
    currency: str
    billing_cycle: BillingCycle
    credits: int
    is_active: bool

    class Config:
        from_attributes = True


class PlanResponse(BaseModel):
    """Plan with its prices."""
    id: int
    name: str
    description: str | None
    is_custom: bool
    prices: list[PlanPriceResponse] = []

    class Config:
        from_attributes = True


class SubscriptionHistoryResponse(BaseModel):
    """Closed period snapshot."""
    id: int
    plan_id: int
    price_id: int | None
    status: SubscriptionStatus
    start_date: datetime
    end_date: datetime
    base_credits_used: int
    referral_credits_used: int
    reason: str | None

    class Config:
        from_attributes = True
