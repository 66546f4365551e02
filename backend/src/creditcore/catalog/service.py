"""Credit value catalog: priced services and their tiered discounts."""

from decimal import ROUND_CEILING, Decimal
from typing import Any

from pydantic import ValidationError

from creditcore.catalog.models import (
    CreditValue,
    CreditValueCreate,
    CreditValueUpdate,
    ServiceCost,
    TieredPricing,
)
from creditcore.errors import InvalidCatalogEntryError, InvalidUnitsError, NotFoundError
from creditcore.logging_config import get_logger
from creditcore.storage.db import Database, db, utcnow

logger = get_logger(__name__)


def ceil_credits(amount: Decimal) -> int:
    """Round a fractional credit amount up; the provider is never underpaid."""
    return int(amount.to_integral_value(rounding=ROUND_CEILING))


def select_tier(tiered_pricing: dict | None, units: int) -> tuple[float, str | None]:
    """Pick the largest threshold not above ``units``.

    Returns:
        (discount percentage, tier name) or (0, None) when no tier qualifies
    """
    if not tiered_pricing:
        return 0.0, None

    tiers = TieredPricing.model_validate(tiered_pricing)
    for i in range(len(tiers.thresholds) - 1, -1, -1):
        if units >= tiers.thresholds[i]:
            name = tiers.tier_names[i] if tiers.tier_names else f"Tier {i + 1}"
            return tiers.discounts[i], name
    return 0.0, None


def calculate_cost(service: CreditValue, units: int) -> ServiceCost:
    """Price ``units`` of a catalog service.

    Args:
        service: Catalog entry (must already be known to be active)
        units: Requested units

    Returns:
        Cost quote with the tier discount applied

    Raises:
        InvalidUnitsError: If units are outside the service's bounds
    """
    unit_name = service.base_unit.value
    if units < service.min_units:
        raise InvalidUnitsError(f"Minimum {service.min_units} {unit_name}(s) required", units)
    if service.max_units is not None and units > service.max_units:
        raise InvalidUnitsError(f"Maximum {service.max_units} {unit_name}(s) allowed", units)

    base_cost = units * service.credits_per_unit
    discount, tier_applied = select_tier(service.tiered_pricing, units)
    discounted = Decimal(base_cost) * (Decimal(100) - Decimal(str(discount))) / Decimal(100)

    return ServiceCost(
        base_cost=base_cost,
        discounted_cost=ceil_credits(discounted),
        discount_percentage=discount,
        tier_applied=tier_applied,
        unit_type=service.base_unit,
    )


class CreditValueService:
    """Read-mostly access to the service catalog.

    Operations:
    - Quote service costs (tiered, ceiling rounded)
    - Look up active services
    - Create and update catalog entries
    """

    def __init__(self, database: Database | None = None):
        """Initialize catalog service."""
        self.db = database or db
        self.logger = get_logger(__name__)

    def create_credit_value(self, data: CreditValueCreate | dict[str, Any]) -> CreditValue:
        """Add a service to the catalog.

        Raises:
            InvalidCatalogEntryError: If the entry violates pricing invariants
        """
        if isinstance(data, dict):
            try:
                data = CreditValueCreate.model_validate(data)
            except ValidationError as e:
                raise InvalidCatalogEntryError(str(e)) from e

        with self.db.session() as session:
            service = CreditValue(
                service_type=data.service_type,
                name=data.name,
                description=data.description,
                category=data.category,
                base_unit=data.base_unit,
                credits_per_unit=data.credits_per_unit,
                min_units=data.min_units,
                max_units=data.max_units,
                tiered_pricing=data.tiered_pricing.model_dump() if data.tiered_pricing else None,
                is_active=data.is_active,
            )
            session.add(service)
            session.flush()

            self.logger.info(
                "credit_value_created",
                service_type=service.service_type,
                credits_per_unit=service.credits_per_unit,
            )
            return service

    def update_credit_value(self, credit_value_id: int, data: CreditValueUpdate | dict[str, Any]) -> CreditValue:
        """Update a catalog entry; unset fields are left alone.

        Raises:
            NotFoundError: If the entry does not exist
            InvalidCatalogEntryError: If the result violates pricing invariants
        """
        if isinstance(data, dict):
            try:
                data = CreditValueUpdate.model_validate(data)
            except ValidationError as e:
                raise InvalidCatalogEntryError(str(e)) from e

        changes = data.model_dump(exclude_unset=True)
        if data.tiered_pricing is not None:
            changes["tiered_pricing"] = data.tiered_pricing.model_dump()

        with self.db.session() as session:
            service = session.query(CreditValue).filter(
                CreditValue.id == credit_value_id
            ).first()

            if not service:
                raise NotFoundError("CreditValue", credit_value_id)

            for field, value in changes.items():
                setattr(service, field, value)

            if service.max_units is not None and service.max_units < service.min_units:
                raise InvalidCatalogEntryError("max_units must not be below min_units")

            service.updated_at = utcnow()
            self.logger.info("credit_value_updated", credit_value_id=credit_value_id, fields=sorted(changes))
            return service

    def get_credit_value(self, service_type: str) -> CreditValue | None:
        """Get a catalog entry by service type, active or not."""
        with self.db.session() as session:
            return session.query(CreditValue).filter(
                CreditValue.service_type == service_type
            ).first()

    def get_service_cost(self, service_type: str, units: int) -> ServiceCost:
        """Quote ``units`` of an active service.

        Raises:
            NotFoundError: If the service is unknown or inactive
            InvalidUnitsError: If units are outside the service's bounds
        """
        with self.db.session() as session:
            service = session.query(CreditValue).filter(
                CreditValue.service_type == service_type,
                CreditValue.is_active == True,
            ).first()

            if not service:
                raise NotFoundError("CreditValue", service_type)

            return calculate_cost(service, units)

    def get_all_active_services(self) -> list[CreditValue]:
        """List active services ordered by category."""
        with self.db.session() as session:
            return session.query(CreditValue).filter(
                CreditValue.is_active == True,
            ).order_by(CreditValue.category, CreditValue.name).all()

    def get_services_by_category(self, category: str) -> list[CreditValue]:
        """List active services in one category ordered by name."""
        with self.db.session() as session:
            return session.query(CreditValue).filter(
                CreditValue.category == category,
                CreditValue.is_active == True,
            ).order_by(CreditValue.name).all()


# Singleton instance
credit_value_service = CreditValueService()
