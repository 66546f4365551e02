import pytest
from fastapi.testclient import TestClient

from creditcore.api import deps
from creditcore.api.main import create_app
from creditcore.storage.db import get_db, utcnow


@pytest.fixture
def client(database):
    app = create_app()
    app.dependency_overrides[get_db] = lambda: database
    deps.plan_cache.clear()
    # No context manager: the lifespan would create tables on the default database
    yield TestClient(app)
    app.dependency_overrides.clear()
    deps.plan_cache.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["database"] == "ok"
    assert response.headers["X-Request-ID"]


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_cost_quote_and_errors(client, make_service):
    service = make_service(
        credits_per_unit=2,
        max_units=100,
        tiered_pricing={"thresholds": [10, 50], "discounts": [5, 10]},
    )

    quote = client.get(f"/api/v1/credits/services/{service.service_type}/cost", params={"units": 60})
    assert quote.status_code == 200
    assert quote.json()["discounted_cost"] == 108

    too_many = client.get(f"/api/v1/credits/services/{service.service_type}/cost", params={"units": 101})
    assert too_many.status_code == 400
    assert too_many.json()["error"] == "InvalidUnitsError"

    missing = client.get("/api/v1/credits/services/unknown/cost", params={"units": 1})
    assert missing.status_code == 404

    listing = client.get("/api/v1/credits/services")
    assert [s["service_type"] for s in listing.json()] == [service.service_type]


def test_consume_and_balance(client, make_subscription, make_service):
    subscription = make_subscription(credits=10, now=utcnow())
    service = make_service(credits_per_unit=4)
    url = f"/api/v1/credits/subscriptions/{subscription.id}"

    consumed = client.post(f"{url}/consume", json={"service_id": service.id, "units": 2})
    assert consumed.status_code == 200
    assert consumed.json()["total_credits"] == 8

    refused = client.post(f"{url}/consume", json={"service_id": service.id, "units": 1})
    assert refused.status_code == 402

    balance = client.get(f"{url}/balance").json()
    assert balance["available_credits"] == 2

    history = client.get(f"{url}/history").json()
    assert len(history) == 1


def test_subscription_lifecycle(client, plans, make_client):
    client_id = make_client()
    plan = plans.create_plan(name="Starter", credits=100, amount=19)

    created = client.post("/api/v1/subscriptions", json={"client_id": client_id, "plan_id": plan.id})
    assert created.status_code == 201
    subscription_id = created.json()["id"]

    duplicate = client.post("/api/v1/subscriptions", json={"client_id": client_id, "plan_id": plan.id})
    assert duplicate.status_code == 409

    assert client.get(f"/api/v1/subscriptions/{subscription_id}/status").json()["active"] is True
    assert client.post(f"/api/v1/subscriptions/{subscription_id}/pause").json()["status"] == "paused"
    assert client.post(f"/api/v1/subscriptions/{subscription_id}/resume").json()["status"] == "active"

    canceled = client.post(f"/api/v1/subscriptions/{subscription_id}/cancel", json={"reason": "moving"})
    assert canceled.json()["status"] == "canceled"
    assert client.post(f"/api/v1/subscriptions/{subscription_id}/renew").status_code == 409

    history = client.get(f"/api/v1/subscriptions/{subscription_id}/history").json()
    assert [h["reason"] for h in history] == ["moving"]

    assert client.get(f"/api/v1/plans/{plan.id}").json()["prices"][0]["credits"] == 100
    assert client.get("/api/v1/plans/999").status_code == 404


def test_referral_flow(client, make_client, make_subscription):
    referrer = make_client()
    make_subscription(client_id=referrer)

    link = client.post("/api/v1/referral/links", json={"client_id": referrer}).json()
    click = client.post(
        "/api/v1/referral/track-click",
        json={"code": link["code"], "ip_address": "198.51.100.7"},
        headers={"user-agent": "Mozilla/5.0"},
    )
    assert click.status_code == 200
    assert click.json()["fraud"]["risk_level"] == "low"

    completed = client.post(
        "/api/v1/referral/complete",
        json={"referral_link": link["link"], "new_client_id": make_client()},
    )
    assert completed.status_code == 200
    assert completed.json()["discount_applied"] is True

    again = client.post(
        "/api/v1/referral/complete",
        json={"referral_link": link["link"], "new_client_id": make_client()},
    )
    assert again.status_code == 409

    stats = client.get(f"/api/v1/referral/clients/{referrer}/stats").json()
    assert stats["credits_earned"] == 10
    assert stats["total_clicks"] == 1


def test_referral_settings_endpoints(client):
    assert client.get("/api/v1/referral/settings").json() == {"credit_per_referral": 10, "expiration_days": 30}

    updated = client.put("/api/v1/referral/settings", json={"credit_per_referral": 20, "expiration_days": 14})
    assert updated.status_code == 200
    assert client.get("/api/v1/referral/settings").json()["credit_per_referral"] == 20

    invalid = client.put("/api/v1/referral/settings", json={"credit_per_referral": 20, "expiration_days": 0})
    assert invalid.status_code == 422


def test_discount_endpoints(client, make_client):
    client_id = make_client()
    created = client.post(
        "/api/v1/discounts",
        json={"code": "SPRING", "name": "Spring", "type": "percentage", "value": 20, "applies_to": "all", "user_max_uses": 1},
    )
    assert created.status_code == 201

    applicable = client.get("/api/v1/discounts/applicable", params={"user_id": client_id, "target_type": "plans"})
    assert [d["code"] for d in applicable.json()] == ["SPRING"]

    applied = client.post("/api/v1/discounts/apply", json={"code": "SPRING", "client_id": client_id, "amount": 50})
    assert applied.json()["discount_amount"] == 10

    refused = client.post("/api/v1/discounts/apply", json={"code": "SPRING", "client_id": client_id, "amount": 50})
    assert refused.status_code == 422


def test_mint_and_redeem_referral_credit(client, make_subscription):
    subscription = make_subscription(credits=10)
    url = f"/api/v1/credits/subscriptions/{subscription.id}"

    minted = client.post(f"{url}/referral-credits", json={"credit_amount": 15, "referred_email": "friend@example.com"})
    assert minted.status_code == 201
    credit_id = minted.json()["id"]

    assert client.get(f"{url}/balance").json()["referral_credits"] == 15
    assert client.get(f"{url}/expiring", params={"days": 60}).json()["expiring_amount"] == 15

    redeemed = client.post(f"{url}/referral-credits/{credit_id}/consume", json={"amount": 15})
    assert redeemed.status_code == 200
    again = client.post(f"{url}/referral-credits/{credit_id}/consume", json={"amount": 15})
    assert again.status_code == 400
