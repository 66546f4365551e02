"""Credit value catalog.

Defines what each metered service costs in credits, including volume tiers.
"""

from creditcore.catalog.models import BaseUnit, CreditValue, ServiceCost, TieredPricing
from creditcore.catalog.service import CreditValueService, calculate_cost, credit_value_service

__all__ = [
    "BaseUnit",
    "CreditValue",
    "CreditValueService",
    "ServiceCost",
    "TieredPricing",
    "calculate_cost",
    "credit_value_service",
]
