import pytest

from creditcore.catalog.service import calculate_cost, select_tier
from creditcore.errors import InvalidCatalogEntryError, InvalidUnitsError, NotFoundError


def test_cost_is_rounded_up_after_tier_discount(catalog, make_service):
    service = make_service(credits_per_unit=3, tiered_pricing={"thresholds": [1], "discounts": [10]})

    cost = catalog.get_service_cost(service.service_type, 2)

    assert cost.base_cost == 6
    assert cost.discount_percentage == 10
    # 6 * 0.9 = 5.4 -> 6
    assert cost.discounted_cost == 6


def test_highest_qualifying_tier_applies(make_service):
    service = make_service(
        credits_per_unit=2,
        tiered_pricing={"thresholds": [10, 50, 100], "discounts": [5, 10, 20]},
    )

    cost = calculate_cost(service, 75)

    assert cost.discount_percentage == 10
    assert cost.tier_applied == "Tier 2"
    assert cost.base_cost == 150
    assert cost.discounted_cost == 135


def test_no_tier_below_lowest_threshold():
    assert select_tier({"thresholds": [10, 50], "discounts": [5, 10]}, 9) == (0.0, None)
    assert select_tier(None, 1000) == (0.0, None)


def test_named_tiers():
    tiers = {"thresholds": [10, 50], "discounts": [5, 10], "tier_names": ["Bulk", "Wholesale"]}
    assert select_tier(tiers, 50) == (10, "Wholesale")


def test_units_outside_bounds_are_rejected(catalog, make_service):
    service = make_service(credits_per_unit=1, base_unit="minute", min_units=5, max_units=60)

    with pytest.raises(InvalidUnitsError, match="Minimum 5 minute"):
        catalog.get_service_cost(service.service_type, 4)

    with pytest.raises(InvalidUnitsError, match="Maximum 60 minute"):
        catalog.get_service_cost(service.service_type, 61)

    assert catalog.get_service_cost(service.service_type, 60).discounted_cost == 60


def test_inactive_or_unknown_service_is_not_found(catalog, make_service):
    service = make_service(is_active=False)

    with pytest.raises(NotFoundError):
        catalog.get_service_cost(service.service_type, 1)

    with pytest.raises(NotFoundError):
        catalog.get_service_cost("does_not_exist", 1)


def test_invalid_tier_schedule_is_rejected(make_service):
    with pytest.raises(InvalidCatalogEntryError):
        make_service(tiered_pricing={"thresholds": [50, 10], "discounts": [5, 10]})

    with pytest.raises(InvalidCatalogEntryError):
        make_service(tiered_pricing={"thresholds": [10], "discounts": [5, 10]})

    with pytest.raises(InvalidCatalogEntryError):
        make_service(credits_per_unit=0)


def test_update_keeps_bounds_consistent(catalog, make_service):
    service = make_service(min_units=1, max_units=10)

    with pytest.raises(InvalidCatalogEntryError):
        catalog.update_credit_value(service.id, {"min_units": 20})

    updated = catalog.update_credit_value(service.id, {"credits_per_unit": 4})
    assert updated.credits_per_unit == 4
    assert catalog.get_credit_value(service.service_type).min_units == 1


def test_active_services_listing(catalog, make_service):
    make_service(category="video")
    make_service(category="audio")
    make_service(category="video", is_active=False)

    assert len(catalog.get_all_active_services()) == 2
    assert [s.category for s in catalog.get_services_by_category("video")] == ["video"]


@pytest.mark.parametrize("field", ["name", "credits_per_unit", "min_units", "is_active"])
def test_update_rejects_null_for_required_fields(catalog, make_service, field):
    service = make_service(credits_per_unit=3)

    with pytest.raises(InvalidCatalogEntryError):
        catalog.update_credit_value(service.id, {field: None})

    assert catalog.get_credit_value(service.service_type).credits_per_unit == 3


def test_update_may_clear_optional_fields(catalog, make_service):
    service = make_service(max_units=10, description="old")

    updated = catalog.update_credit_value(service.id, {"max_units": None, "description": None})

    assert updated.max_units is None
    assert updated.description is None
