from datetime import datetime, timedelta

import pytest

from creditcore.accounts.models import Client
from creditcore.catalog.service import CreditValueService
from creditcore.discounts.engine import DiscountEngine
from creditcore.ledger.service import CreditService
from creditcore.notifications.service import Notification, NotificationService
from creditcore.referral.fraud import FraudDetector
from creditcore.referral.service import ReferralService
from creditcore.storage.db import Database
from creditcore.subscriptions.models import SubscriptionStatus
from creditcore.subscriptions.plans import PlanService
from creditcore.subscriptions.service import SubscriptionService

NOW = datetime(2026, 3, 10, 12, 0, 0)


class RecordingNotifier(NotificationService):
    """Notifier that keeps notifications in memory."""

    def __init__(self):
        super().__init__(webhook_url="")
        self.sent: list[Notification] = []

    def notify(self, notification: Notification) -> bool:
        self.sent.append(notification)
        return True


@pytest.fixture
def database(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'creditcore.db'}")
    database.create_tables()
    yield database
    database.dispose()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def catalog(database):
    return CreditValueService(database)


@pytest.fixture
def discounts(database):
    return DiscountEngine(database)


@pytest.fixture
def credits(database, discounts):
    return CreditService(database, discounts)


@pytest.fixture
def plans(database):
    return PlanService(database)


@pytest.fixture
def subscriptions(database, notifier):
    return SubscriptionService(database, notifier=notifier)


@pytest.fixture
def referrals(database, credits, notifier):
    detector = FraudDetector(blocked_networks=["203.0.113.0/24"], high_risk_locations=["Nowhere"])
    return ReferralService(database, credit_service=credits, fraud_detector=detector, notifier=notifier)


@pytest.fixture
def make_client(database):
    counter = {"n": 0}

    def _make(email: str | None = None, referral_code: str | None = None) -> int:
        counter["n"] += 1
        with database.session() as session:
            client = Client(
                email=email or f"client{counter['n']}@example.com",
                name=f"Client {counter['n']}",
                referral_code=referral_code,
            )
            session.add(client)
            session.flush()
            return client.id

    return _make


@pytest.fixture
def make_subscription(make_client, plans, subscriptions):
    """Client + plan + subscription with ``credits`` base credits per period."""

    def _make(
        credits: int = 100,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        client_id: int | None = None,
        now: datetime = NOW,
    ):
        plan = plans.create_plan(name=f"Plan {credits}", credits=credits, amount=29)
        subscription = subscriptions.create_subscription(
            client_id=client_id or make_client(),
            plan_id=plan.id,
            status=status,
            current_period_start=now - timedelta(days=1),
            now=now,
        )
        return subscription

    return _make


@pytest.fixture
def make_service(catalog):
    counter = {"n": 0}

    def _make(credits_per_unit: int = 1, **fields):
        counter["n"] += 1
        data = {
            "service_type": f"service_{counter['n']}",
            "name": f"Service {counter['n']}",
            "category": "analysis",
            "credits_per_unit": credits_per_unit,
            **fields,
        }
        return catalog.create_credit_value(data)

    return _make
