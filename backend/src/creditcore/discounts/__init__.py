"""Discount engine.

Decides which discounts a request may use (validity windows, holiday
multipliers, global and per-client caps) and records redemptions.
"""

from creditcore.discounts.engine import DiscountEngine, calculate_discount_amount, discount_engine
from creditcore.discounts.models import (
    ApplicableDiscount,
    Discount,
    DiscountContext,
    DiscountRedemption,
    DiscountTarget,
    DiscountType,
    HolidayDiscountRule,
)

__all__ = [
    "ApplicableDiscount",
    "Discount",
    "DiscountContext",
    "DiscountEngine",
    "DiscountRedemption",
    "DiscountTarget",
    "DiscountType",
    "HolidayDiscountRule",
    "calculate_discount_amount",
    "discount_engine",
]
