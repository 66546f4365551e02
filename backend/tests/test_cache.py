import pytest

from creditcore.cache import TTLCache
from creditcore.subscriptions.models import BillingCycle


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(10, clock=clock)
    cache.set("plan", "value")

    clock.now = 9.9
    assert cache.get("plan") == "value"

    clock.now = 10.0
    assert cache.get("plan") is None
    assert len(cache) == 0


def test_invalidate_and_clear():
    cache = TTLCache(60)
    cache.set(1, "a")
    cache.set(2, "b")

    cache.invalidate(1)
    assert cache.get(1) is None
    assert cache.get(2) == "b"

    cache.clear()
    assert len(cache) == 0


def test_ttl_must_be_positive():
    with pytest.raises(ValueError):
        TTLCache(0)


def test_plan_reads_are_cached_until_written(plans):
    plan = plans.create_plan(name="Starter", credits=100, amount=10)

    first = plans.get_plan(plan.id)
    assert plans.get_plan(plan.id) is first

    plans.add_price(plan.id, credits=1200, amount=100, billing_cycle=BillingCycle.ANNUALLY)
    refreshed = plans.get_plan(plan.id)

    assert refreshed is not first
    assert sorted(p.credits for p in refreshed.prices) == [100, 1200]


def test_unknown_plan_is_not_cached(plans):
    assert plans.get_plan(999) is None
    assert len(plans.cache) == 0


def test_deactivating_a_price_refreshes_the_cached_plan(plans):
    plan = plans.create_plan(name="Starter", credits=100, amount=10)
    assert plans.get_plan(plan.id).prices[0].is_active is True

    plans.deactivate_price(plan.id, plan.prices[0].id)

    assert plans.get_plan(plan.id).prices[0].is_active is False
