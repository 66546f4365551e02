import threading
from datetime import datetime, timedelta

import pytest

from creditcore.discounts.models import DiscountTarget, DiscountType
from creditcore.errors import (
    DiscountNotApplicableError,
    InsufficientCreditsError,
    InvalidOrExpiredCreditError,
    InvalidUnitsError,
    NotFoundError,
    SubscriptionInactiveError,
)
from creditcore.ledger.models import CreditConsumption, CreditType, ReferralCredit, ReferralCreditStatus
from creditcore.subscriptions.models import Subscription, SubscriptionStatus

NOW = datetime(2026, 3, 10, 12, 0, 0)


def test_referral_credits_are_consumed_first(credits, make_subscription, make_service):
    subscription = make_subscription(credits=100)
    credits.create_referral_credit(subscription.id, 5, now=NOW)
    service = make_service(credits_per_unit=8)

    result = credits.consume_credits(subscription.id, service.id, 1, now=NOW)

    assert result.total_credits == 8
    assert result.referral_credits_used == 5
    assert result.base_credits_used == 3
    assert result.credit_type == CreditType.REFERRAL

    balance = credits.get_credit_balance(subscription.id, now=NOW)
    assert balance.base_credits_used == 3
    # The drained credit is USED and leaves the referral pool
    assert balance.referral_credits == 0
    assert balance.referral_credits_used == 0
    assert balance.available_credits == 97


def test_base_only_consumption(credits, make_subscription, make_service):
    subscription = make_subscription(credits=50)
    service = make_service(credits_per_unit=2)

    result = credits.consume_credits(subscription.id, service.id, 10, description="batch", now=NOW)

    assert result.credit_type == CreditType.BASE
    assert result.base_credits_used == 20
    assert credits.get_credit_balance(subscription.id, now=NOW).available_credits == 30


def test_insufficient_credits_leave_balance_untouched(database, credits, make_subscription, make_service):
    subscription = make_subscription(credits=10)
    service = make_service(credits_per_unit=11)

    with pytest.raises(InsufficientCreditsError) as exc_info:
        credits.consume_credits(subscription.id, service.id, 1, now=NOW)

    assert exc_info.value.required == 11
    assert exc_info.value.available == 10
    assert exc_info.value.status_code == 402

    balance = credits.get_credit_balance(subscription.id, now=NOW)
    assert balance.base_credits_used == 0
    assert balance.available_credits == 10
    assert credits.get_consumption_history(subscription.id) == []


def test_balance_never_goes_negative(credits, make_subscription, make_service):
    subscription = make_subscription(credits=20)
    service = make_service(credits_per_unit=7)

    for _ in range(2):
        credits.consume_credits(subscription.id, service.id, 1, now=NOW)
    with pytest.raises(InsufficientCreditsError):
        credits.consume_credits(subscription.id, service.id, 1, now=NOW)

    assert credits.get_credit_balance(subscription.id, now=NOW).available_credits == 6


def test_expired_referral_credit_does_not_count(database, credits, make_subscription, make_service):
    subscription = make_subscription(credits=10)
    stale = credits.create_referral_credit(subscription.id, 50, expires_in_days=30, now=NOW - timedelta(days=40))

    balance = credits.get_credit_balance(subscription.id, now=NOW)
    assert balance.referral_credits == 0
    assert balance.available_credits == 10

    with pytest.raises(InvalidOrExpiredCreditError):
        credits.consume_referral_credit(subscription.id, stale.id, 10, now=NOW)

    # Still ACTIVE in storage until the sweep runs
    with database.session() as session:
        assert session.get(ReferralCredit, stale.id).status == ReferralCreditStatus.ACTIVE

    service = make_service(credits_per_unit=11)
    with pytest.raises(InsufficientCreditsError):
        credits.consume_credits(subscription.id, service.id, 1, now=NOW)


def test_consume_referral_credit_marks_it_used(database, credits, make_subscription):
    subscription = make_subscription()
    credit = credits.create_referral_credit(subscription.id, 15, now=NOW)

    result = credits.consume_referral_credit(subscription.id, credit.id, 15, now=NOW)

    assert result.total_credits == 15
    assert result.credit_type == CreditType.REFERRAL
    with database.session() as session:
        assert session.get(ReferralCredit, credit.id).status == ReferralCreditStatus.USED
        row = session.query(CreditConsumption).filter(CreditConsumption.referral_credit_id == credit.id).one()
        assert row.service_id is None

    with pytest.raises(InvalidOrExpiredCreditError):
        credits.consume_referral_credit(subscription.id, credit.id, 15, now=NOW)


def test_referral_credit_of_another_subscription_is_rejected(credits, make_subscription):
    owner = make_subscription()
    other = make_subscription()
    credit = credits.create_referral_credit(owner.id, 10, now=NOW)

    with pytest.raises(InvalidOrExpiredCreditError):
        credits.consume_referral_credit(other.id, credit.id, 5, now=NOW)

    with pytest.raises(InvalidOrExpiredCreditError):
        credits.consume_referral_credit(owner.id, credit.id, 11, now=NOW)


def test_discount_code_reduces_consumption(credits, discounts, make_subscription, make_service):
    subscription = make_subscription(credits=100)
    service = make_service(credits_per_unit=10)
    discounts.create_discount({
        "code": "HALF",
        "name": "Half off",
        "type": DiscountType.PERCENTAGE,
        "value": 50,
        "applies_to": DiscountTarget.SERVICES,
        "user_max_uses": 1,
    })

    result = credits.consume_credits(subscription.id, service.id, 1, discount_code="HALF", now=NOW)

    assert result.total_credits == 5
    assert result.discount_applied == 5

    with pytest.raises(DiscountNotApplicableError):
        credits.consume_credits(subscription.id, service.id, 1, discount_code="HALF", now=NOW)


def test_failed_consumption_rolls_back_discount_redemption(credits, discounts, make_subscription, make_service):
    subscription = make_subscription(credits=2)
    service = make_service(credits_per_unit=10)
    discounts.create_discount({
        "code": "ONCE",
        "name": "Once",
        "type": DiscountType.PERCENTAGE,
        "value": 50,
        "applies_to": DiscountTarget.ALL,
        "user_max_uses": 1,
    })

    with pytest.raises(InsufficientCreditsError):
        credits.consume_credits(subscription.id, service.id, 1, discount_code="ONCE", now=NOW)

    applicable = discounts.get_applicable_discounts(
        user_id=subscription.client_id, target_type=DiscountTarget.SERVICES, now=NOW
    )
    assert [d.code for d in applicable] == ["ONCE"]


def test_paused_subscription_cannot_consume(credits, subscriptions, make_subscription, make_service):
    subscription = make_subscription()
    service = make_service()
    subscriptions.pause_subscription(subscription.id)

    with pytest.raises(SubscriptionInactiveError):
        credits.consume_credits(subscription.id, service.id, 1, now=NOW)


def test_unknown_entities_and_bad_units(credits, make_subscription, make_service):
    subscription = make_subscription()
    service = make_service(min_units=2)

    with pytest.raises(NotFoundError):
        credits.consume_credits(999, service.id, 2, now=NOW)
    with pytest.raises(NotFoundError):
        credits.consume_credits(subscription.id, 999, 2, now=NOW)
    with pytest.raises(InvalidUnitsError):
        credits.consume_credits(subscription.id, service.id, 1, now=NOW)


def test_expire_sweep_and_expiring_credits(credits, make_subscription):
    subscription = make_subscription()
    credits.create_referral_credit(subscription.id, 5, expires_in_days=1, now=NOW - timedelta(days=2))
    credits.create_referral_credit(subscription.id, 7, expires_in_days=10, now=NOW)
    credits.create_referral_credit(subscription.id, 9, expires_in_days=90, now=NOW)

    assert credits.expire_referral_credits(now=NOW) == 1
    assert credits.expire_referral_credits(now=NOW) == 0

    expiring = credits.get_expiring_credits(subscription.id, days=30, now=NOW)
    assert expiring["expiring_amount"] == 7
    assert expiring["earliest_expiration"] == (NOW + timedelta(days=10)).isoformat()

    assert credits.get_credit_balance(subscription.id, now=NOW).referral_credits == 16


def test_consumption_history_newest_first(credits, make_subscription, make_service):
    subscription = make_subscription()
    service = make_service()
    credits.consume_credits(subscription.id, service.id, 1, description="first", now=NOW)
    credits.consume_credits(subscription.id, service.id, 2, description="second", now=NOW + timedelta(minutes=1))

    history = credits.get_consumption_history(subscription.id)

    assert [row.description for row in history] == ["second", "first"]
    assert credits.get_consumption_history(subscription.id, limit=1, offset=1)[0].description == "first"


# ==================== REFERRAL POOL ====================


def test_pooled_draw_cannot_be_redeemed_again(credits, make_subscription, make_service):
    subscription = make_subscription(credits=10)
    credit = credits.create_referral_credit(subscription.id, 10, now=NOW)
    service = make_service(credits_per_unit=20)

    credits.consume_credits(subscription.id, service.id, 1, now=NOW)
    assert credits.get_credit_balance(subscription.id, now=NOW).available_credits == 0

    with pytest.raises(InvalidOrExpiredCreditError):
        credits.consume_referral_credit(subscription.id, credit.id, 10, now=NOW)

    balance = credits.get_credit_balance(subscription.id, now=NOW)
    assert balance.referral_credits == 0
    assert balance.available_credits == 0


def test_redemption_limited_to_what_the_pool_left(database, credits, make_subscription, make_service):
    subscription = make_subscription(credits=10)
    credit = credits.create_referral_credit(subscription.id, 10, now=NOW)
    service = make_service(credits_per_unit=4)

    credits.consume_credits(subscription.id, service.id, 1, now=NOW)
    balance = credits.get_credit_balance(subscription.id, now=NOW)
    assert balance.referral_credits == 10
    assert balance.referral_credits_used == 4
    assert balance.available_credits == 16

    with pytest.raises(InvalidOrExpiredCreditError):
        credits.consume_referral_credit(subscription.id, credit.id, 10, now=NOW)

    credits.consume_referral_credit(subscription.id, credit.id, 6, now=NOW)

    balance = credits.get_credit_balance(subscription.id, now=NOW)
    assert balance.referral_credits == 0
    assert balance.available_credits == 10
    with database.session() as session:
        stored = session.get(ReferralCredit, credit.id)
        assert stored.status == ReferralCreditStatus.USED
        assert stored.amount_used == 10
        assert session.get(Subscription, subscription.id).referral_credits_used == 10


def test_partly_drawn_credit_expiring_leaves_base_intact(credits, make_subscription, make_service):
    subscription = make_subscription(credits=10)
    credits.create_referral_credit(subscription.id, 10, expires_in_days=5, now=NOW)
    service = make_service(credits_per_unit=4)

    credits.consume_credits(subscription.id, service.id, 1, now=NOW)

    later = NOW + timedelta(days=6)
    balance = credits.get_credit_balance(subscription.id, now=later)
    assert balance.referral_credits == 0
    assert balance.referral_credits_used == 0
    assert balance.available_credits == 10


def test_pool_draws_soonest_expiring_credit_first(database, credits, make_subscription, make_service):
    subscription = make_subscription(credits=100)
    late = credits.create_referral_credit(subscription.id, 5, expires_in_days=60, now=NOW)
    soon = credits.create_referral_credit(subscription.id, 5, expires_in_days=10, now=NOW)
    service = make_service(credits_per_unit=7)

    result = credits.consume_credits(subscription.id, service.id, 1, now=NOW)

    assert result.referral_credits_used == 7
    assert result.base_credits_used == 0
    with database.session() as session:
        assert session.get(ReferralCredit, soon.id).status == ReferralCreditStatus.USED
        remaining = session.get(ReferralCredit, late.id)
        assert remaining.status == ReferralCreditStatus.ACTIVE
        assert remaining.amount_used == 2


# ==================== EXPIRY AND CONCURRENCY ====================


def test_lapsed_subscription_expires_on_consumption(database, credits, make_subscription, make_service):
    subscription = make_subscription(credits=100)
    service = make_service(credits_per_unit=5)

    with pytest.raises(SubscriptionInactiveError):
        credits.consume_credits(subscription.id, service.id, 1, now=NOW + timedelta(days=400))

    with database.session() as session:
        stored = session.get(Subscription, subscription.id)
        assert stored.status == SubscriptionStatus.EXPIRED
        assert stored.base_credits_used == 0
    assert credits.get_consumption_history(subscription.id) == []


def test_concurrent_consumption_serializes(credits, make_subscription, make_service):
    subscription = make_subscription(credits=10)
    service = make_service(credits_per_unit=6)
    barrier = threading.Barrier(2)
    outcomes = []

    def consume():
        barrier.wait()
        try:
            credits.consume_credits(subscription.id, service.id, 1, now=NOW)
            outcomes.append("ok")
        except InsufficientCreditsError:
            outcomes.append("insufficient")

    workers = [threading.Thread(target=consume) for _ in range(2)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=60)

    assert sorted(outcomes) == ["insufficient", "ok"]
    balance = credits.get_credit_balance(subscription.id, now=NOW)
    assert balance.base_credits_used == 6
    assert balance.available_credits == 4
