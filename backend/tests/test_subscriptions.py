from datetime import datetime, timedelta

import pytest

from creditcore.errors import DuplicateSubscriptionError, InvalidStatusTransitionError, NotFoundError, SubscriptionInactiveError
from creditcore.ledger.models import TransactionType
from creditcore.subscriptions.models import BillingCycle, SubscriptionStatus
from creditcore.subscriptions.service import period_end

NOW = datetime(2026, 3, 10, 12, 0, 0)


def test_period_end_follows_billing_cycle():
    start = datetime(2026, 1, 31)
    assert period_end(start, BillingCycle.MONTHLY) == datetime(2026, 2, 28)
    assert period_end(start, BillingCycle.ANNUALLY) == datetime(2027, 1, 31)
    assert period_end(start, None) == datetime(2026, 2, 28)


def test_client_cannot_hold_two_live_subscriptions(subscriptions, plans, make_client, make_subscription):
    client_id = make_client()
    first = make_subscription(client_id=client_id)
    plan = plans.create_plan(name="Other", credits=10, amount=5)

    with pytest.raises(DuplicateSubscriptionError):
        subscriptions.create_subscription(client_id=client_id, plan_id=plan.id, now=NOW)

    subscriptions.cancel_subscription(first.id, now=NOW)
    second = subscriptions.create_subscription(client_id=client_id, plan_id=plan.id, now=NOW)
    assert second.status == SubscriptionStatus.ACTIVE
    assert subscriptions.get_client_subscription(client_id).id == second.id


def test_unknown_client_or_plan(subscriptions, plans, make_client):
    plan = plans.create_plan(name="Basic", credits=10, amount=5)

    with pytest.raises(NotFoundError):
        subscriptions.create_subscription(client_id=999, plan_id=plan.id)
    with pytest.raises(NotFoundError):
        subscriptions.create_subscription(client_id=make_client(), plan_id=999)


def test_cancel_writes_history_and_is_terminal(subscriptions, make_subscription):
    subscription = make_subscription()

    canceled = subscriptions.cancel_subscription(subscription.id, reason="too expensive", now=NOW)

    assert canceled.status == SubscriptionStatus.CANCELED
    history = subscriptions.get_subscription_history(subscription.id)
    assert len(history) == 1
    assert history[0].reason == "too expensive"
    assert history[0].end_date == NOW

    with pytest.raises(InvalidStatusTransitionError):
        subscriptions.renew_subscription(subscription.id, now=NOW)
    with pytest.raises(InvalidStatusTransitionError):
        subscriptions.pause_subscription(subscription.id)


def test_renewal_resets_base_usage_but_not_referral_usage(
    subscriptions, credits, make_subscription, make_service
):
    subscription = make_subscription(credits=100)
    credits.create_referral_credit(subscription.id, 5, expires_in_days=90, now=NOW)
    service = make_service(credits_per_unit=12)
    credits.consume_credits(subscription.id, service.id, 1, now=NOW)

    renewed = subscriptions.renew_subscription(subscription.id, now=NOW)

    assert renewed.base_credits_used == 0
    assert renewed.referral_credits_used == 5
    assert renewed.current_period_start == subscription.current_period_end
    assert renewed.current_period_end == period_end(subscription.current_period_end, BillingCycle.MONTHLY)

    history = subscriptions.get_subscription_history(subscription.id)
    assert history[0].reason == "renewal"
    assert history[0].base_credits_used == 7

    balance = credits.get_credit_balance(subscription.id, now=NOW)
    assert balance.available_credits == 100


def test_lazy_expiry_then_renewal(subscriptions, make_subscription):
    subscription = make_subscription()
    later = subscription.current_period_end + timedelta(seconds=1)

    assert subscriptions.check_subscription_status(subscription.id, now=NOW) is True
    assert subscriptions.check_subscription_status(subscription.id, now=later) is False
    assert subscriptions.get_subscription(subscription.id).status == SubscriptionStatus.EXPIRED

    renewed = subscriptions.renew_subscription(subscription.id, now=later)
    assert renewed.status == SubscriptionStatus.ACTIVE
    assert renewed.current_period_start == later


def test_pause_and_resume(subscriptions, make_subscription):
    subscription = make_subscription()

    with pytest.raises(InvalidStatusTransitionError):
        subscriptions.resume_subscription(subscription.id)

    assert subscriptions.pause_subscription(subscription.id).status == SubscriptionStatus.PAUSED
    assert subscriptions.check_subscription_status(subscription.id, now=NOW) is False
    assert subscriptions.resume_subscription(subscription.id).status == SubscriptionStatus.ACTIVE


def test_upgrade_switches_plan_and_starts_new_period(subscriptions, credits, plans, make_subscription, make_service):
    subscription = make_subscription(credits=50)
    credits.consume_credits(subscription.id, make_service(credits_per_unit=10).id, 1, now=NOW)
    pro = plans.create_plan(name="Pro", credits=500, amount=99, billing_cycle=BillingCycle.ANNUALLY)

    upgraded = subscriptions.upgrade_subscription(subscription.id, pro.id, now=NOW)

    assert upgraded.plan_id == pro.id
    assert upgraded.price_id == pro.prices[0].id
    assert upgraded.base_credits_used == 0
    assert upgraded.current_period_start == NOW
    assert upgraded.current_period_end == datetime(2027, 3, 10, 12, 0, 0)
    assert credits.get_credit_balance(subscription.id, now=NOW).base_credits == 500
    assert subscriptions.get_subscription_history(subscription.id)[0].reason == "upgrade"


def test_allocate_credits_activates_trial(database, subscriptions, credits, make_subscription):
    subscription = make_subscription(credits=100, status=SubscriptionStatus.TRIALING)

    transaction = subscriptions.allocate_credits(subscription.id, 250, now=NOW)

    assert transaction.type == TransactionType.SUBSCRIPTION
    assert transaction.amount == 250
    assert transaction.remaining == 250
    assert subscriptions.get_subscription(subscription.id).status == SubscriptionStatus.ACTIVE
    assert credits.get_credit_balance(subscription.id, now=NOW).base_credits == 250

    subscriptions.cancel_subscription(subscription.id, now=NOW)
    with pytest.raises(SubscriptionInactiveError):
        subscriptions.allocate_credits(subscription.id, 100, now=NOW)


def test_low_credit_notifications(subscriptions, credits, notifier, make_subscription, make_service):
    low = make_subscription(credits=100)
    healthy = make_subscription(credits=100)
    service = make_service(credits_per_unit=1)
    credits.consume_credits(low.id, service.id, 80, now=NOW)
    credits.consume_credits(healthy.id, service.id, 10, now=NOW)

    flagged = subscriptions.check_low_credits()

    assert [entry["subscription_id"] for entry in flagged] == [low.id]
    assert flagged[0]["remaining"] == 20
    assert len(notifier.sent) == 1
    assert notifier.sent[0].recipient_id == low.client_id
    assert notifier.sent[0].entity_type == "subscription"
