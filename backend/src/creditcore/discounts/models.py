"""Discount, holiday rule and redemption models."""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator
from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Enum as SQLEnum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from creditcore.storage.db import Base, utcnow


class DiscountType(str, Enum):
    """How a discount's value is interpreted."""
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class DiscountTarget(str, Enum):
    """What a discount may be applied to."""
    PLANS = "plans"
    SERVICES = "services"
    ALL = "all"


class Discount(Base):
    """Discount definition.

    Shared reference data managed by admin tooling. Usage caps are enforced
    from ``DiscountRedemption`` rows, never from a stored counter.
    """
    __tablename__ = "discounts"

    id = Column(Integer, primary_key=True)
    code = Column(String(50), unique=True, nullable=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    type = Column(SQLEnum(DiscountType), nullable=False)
    value = Column(Float, nullable=False)
    max_discount = Column(Float, nullable=True)  # Cap on the reduction

    applies_to = Column(SQLEnum(DiscountTarget), nullable=False)
    plan_ids = Column(JSON, nullable=True)  # Empty/None = every plan
    service_types = Column(JSON, nullable=True)  # Empty/None = every service

    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)

    max_uses = Column(Integer, nullable=True)  # Global cap
    user_max_uses = Column(Integer, nullable=True)  # Per-client cap

    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    holiday_rules = relationship("HolidayDiscountRule", back_populates="discount", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Discount(id={self.id}, code={self.code}, type={self.type}, value={self.value})>"


class HolidayDiscountRule(Base):
    """Date-scoped multiplier boosting a discount's effective value."""
    __tablename__ = "holiday_discount_rules"

    id = Column(Integer, primary_key=True)
    discount_id = Column(Integer, ForeignKey("discounts.id"), nullable=False, index=True)
    holiday_name = Column(String(100), nullable=False)
    date = Column(Date, nullable=False)
    is_recurring = Column(Boolean, default=True)  # Matches month/day every year
    multiplier = Column(Float, default=1.5)

    discount = relationship("Discount", back_populates="holiday_rules")

    def matches(self, day: date) -> bool:
        if self.is_recurring:
            return (self.date.month, self.date.day) == (day.month, day.day)
        return self.date == day


class DiscountRedemption(Base):
    """One applied discount. Append-only; source of truth for usage caps."""
    __tablename__ = "discount_redemptions"

    id = Column(Integer, primary_key=True)
    discount_id = Column(Integer, ForeignKey("discounts.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=True)
    credit_value_id = Column(Integer, ForeignKey("credit_values.id"), nullable=True)

    applied_to = Column(String(20), nullable=False)  # subscription | service
    applied_amount = Column(Float, default=0.0, nullable=False)

    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<DiscountRedemption(discount={self.discount_id}, client={self.client_id})>"


# Pydantic models

class DiscountContext(BaseModel):
    """Who is asking and for what."""
    user_id: int
    target_type: DiscountTarget
    plan_id: int | None = None
    service_type: str | None = None


class DiscountCreate(BaseModel):
    """Request to create a discount."""
    code: str | None = Field(default=None, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    type: DiscountType
    value: float = Field(..., gt=0)
    max_discount: float | None = Field(default=None, gt=0)
    applies_to: DiscountTarget
    plan_ids: list[int] | None = None
    service_types: list[str] | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    max_uses: int | None = Field(default=None, ge=1)
    user_max_uses: int | None = Field(default=None, ge=1)
    is_active: bool = True

    @model_validator(mode="after")
    def check_window(self) -> "DiscountCreate":
        if self.type == DiscountType.PERCENTAGE and self.value > 100:
            raise ValueError("percentage discounts cannot exceed 100")
        if self.valid_from and self.valid_until and self.valid_until < self.valid_from:
            raise ValueError("valid_until must not precede valid_from")
        return self


class HolidayRuleCreate(BaseModel):
    """Request to attach a holiday rule."""
    holiday_name: str = Field(..., min_length=1, max_length=100)
    date: date
    is_recurring: bool = True
    multiplier: float = Field(default=1.5, gt=0)


class ApplicableDiscount(BaseModel):
    """A discount as evaluated for one request (holiday multiplier applied)."""
    discount_id: int
    code: str | None
    name: str
    type: DiscountType
    value: float
    effective_value: float
    multiplier: float = 1.0
    holiday_name: str | None = None
    max_discount: float | None = None


class DiscountApplication(BaseModel):
    """Outcome of applying a discount."""
    discount_id: int
    redemption_id: int
    discount_amount: float


class DiscountResponse(BaseModel):
    """Discount definition response."""
    id: int
    code: str | None
    name: str
    type: DiscountType
    value: float
    max_discount: float | None
    applies_to: DiscountTarget
    valid_from: datetime | None
    valid_until: datetime | None
    max_uses: int | None
    user_max_uses: int | None
    is_active: bool

    class Config:
        from_attributes = True
