"""Credit value catalog models."""

from enum import Enum

from pydantic import BaseModel, Field, model_validator
from sqlalchemy import JSON, Boolean, Column, DateTime, Enum as SQLEnum, Integer, String, Text

from creditcore.storage.db import Base, utcnow


class BaseUnit(str, Enum):
    """Unit a service is metered in."""
    SECOND = "second"
    MINUTE = "minute"
    HOUR = "hour"
    ITEM = "item"


class CreditValue(Base):
    """Priced service in the catalog.

    ``tiered_pricing`` holds volume discounts as
    ``{"thresholds": [...], "discounts": [...], "tier_names": [...]}``.
    """
    __tablename__ = "credit_values"

    id = Column(Integer, primary_key=True)
    service_type = Column(String(100), unique=True, nullable=False, index=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True, index=True)

    # Pricing
    base_unit = Column(SQLEnum(BaseUnit), default=BaseUnit.ITEM, nullable=False)
    credits_per_unit = Column(Integer, nullable=False)
    min_units = Column(Integer, default=1, nullable=False)
    max_units = Column(Integer, nullable=True)
    tiered_pricing = Column(JSON, nullable=True)

    # Status
    is_active = Column(Boolean, default=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<CreditValue(service_type={self.service_type}, credits_per_unit={self.credits_per_unit})>"


# Pydantic models

class TieredPricing(BaseModel):
    """Volume discount schedule keyed by unit thresholds."""
    thresholds: list[int]
    discounts: list[float]
    tier_names: list[str] | None = None

    @model_validator(mode="after")
    def check_schedule(self) -> "TieredPricing":
        if len(self.thresholds) != len(self.discounts):
            raise ValueError("thresholds and discounts must have the same length")
        if self.tier_names is not None and len(self.tier_names) != len(self.thresholds):
            raise ValueError("tier_names must name every threshold")
        if any(later <= earlier for earlier, later in zip(self.thresholds, self.thresholds[1:])):
            raise ValueError("thresholds must be strictly increasing")
        if any(not 0 <= discount <= 100 for discount in self.discounts):
            raise ValueError("discounts must be percentages between 0 and 100")
        return self


class CreditValueCreate(BaseModel):
    """Request to add a service to the catalog."""
    service_type: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    category: str | None = None
    base_unit: BaseUnit = BaseUnit.ITEM
    credits_per_unit: int = Field(..., gt=0)
    min_units: int = Field(default=1, ge=1)
    max_units: int | None = Field(default=None, ge=1)
    tiered_pricing: TieredPricing | None = None
    is_active: bool = True

    @model_validator(mode="after")
    def check_bounds(self) -> "CreditValueCreate":
        if self.max_units is not None and self.max_units < self.min_units:
            raise ValueError("max_units must not be below min_units")
        return self


class CreditValueUpdate(BaseModel):
    """Partial update of a catalog entry."""
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    credits_per_unit: int | None = Field(default=None, gt=0)
    min_units: int | None = Field(default=None, ge=1)
    max_units: int | None = Field(default=None, ge=1)
    tiered_pricing: TieredPricing | None = None
    is_active: bool | None = None

    @model_validator(mode="after")
    def check_required_not_cleared(self) -> "CreditValueUpdate":
        cleared = [
            field for field in ("name", "credits_per_unit", "min_units", "is_active")
            if field in self.model_fields_set and getattr(self, field) is None
        ]
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
        return self


class ServiceCost(BaseModel):
    """Priced quote for a number of units of one service."""
    base_cost: int
    discounted_cost: int
    discount_percentage: float
    tier_applied: str | None = None
    unit_type: BaseUnit


class CreditValueResponse(BaseModel):
    """Catalog entry response."""
    id: int
    service_type: str
    name: str
    description: str | None
    category: str | None
    base_unit: BaseUnit
    credits_per_unit: int
    min_units: int
    max_units: int | None
    tiered_pricing: TieredPricing | None
    is_active: bool

    class Config:
        from_attributes = True
