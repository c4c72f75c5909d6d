"""Tests for the FastAPI billing endpoints."""

from __future__ import annotations

import json

import stripe
from fastapi.testclient import TestClient

import web.api as billing_api
from backend.billing.stripe_client import BillingClient
from backend.errors import UnauthorizedError
from backend.factory import build_billing_service
from backend.services.billing_service import BillingService
from backend.services.webhook_service import WebhookService
from tests.fakes import AUTH_USER_ID, FakeStripeSDK, sign_webhook_payload
from web.api import app


client = TestClient(app)
WEBHOOK_SECRET = "whsec_test"


def _auth_headers() -> dict[str, str]:
    return {"Authorization": "Bearer test-token"}


def _mock_authenticated(monkeypatch, email: str | None = "a@example.com", **payload: object) -> None:
    user_payload: dict[str, object] = {"id": AUTH_USER_ID, "email": email, **payload}
    monkeypatch.setattr(billing_api, "get_user_from_bearer_token", lambda _token: user_payload)


def _install_billing(monkeypatch, sdk: FakeStripeSDK | None) -> None:
    monkeypatch.setenv("APP_BASE_URL", "https://app.example")
    if sdk is None:
        service = BillingService(billing_client=None, customer_resolver=None, app_base_url="https://app.example")
    else:
        service = build_billing_service(BillingClient(sdk))
    monkeypatch.setattr(billing_api, "get_billing_service", lambda: service)


def test_health_endpoint() -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_create_portal_without_session_returns_401_and_skips_billing(monkeypatch) -> None:
    sdk = FakeStripeSDK()
    _install_billing(monkeypatch, sdk)

    response = client.post("/api/subscriptions/create-portal")

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    assert sdk.calls == []


def test_create_portal_rejects_invalid_token(monkeypatch) -> None:
    sdk = FakeStripeSDK()
    _install_billing(monkeypatch, sdk)

    def _reject(_token: str) -> dict[str, object]:
        raise UnauthorizedError()

    monkeypatch.setattr(billing_api, "get_user_from_bearer_token", _reject)

    response = client.post("/api/subscriptions/create-portal", headers=_auth_headers())

    assert response.status_code == 401
    assert sdk.calls == []


def test_create_portal_session_without_email_returns_401(monkeypatch) -> None:
    sdk = FakeStripeSDK()
    _install_billing(monkeypatch, sdk)
    _mock_authenticated(monkeypatch, email=None)

    response = client.post("/api/subscriptions/create-portal", headers=_auth_headers())

    assert response.status_code == 401
    assert sdk.calls == []


def test_create_portal_when_unconfigured_returns_500_before_session(monkeypatch) -> None:
    _install_billing(monkeypatch, None)
    resolved: list[str] = []
    monkeypatch.setattr(
        billing_api,
        "get_user_from_bearer_token",
        lambda token: resolved.append(token) or {"id": AUTH_USER_ID, "email": "a@example.com"},
    )

    response = client.post("/api/subscriptions/create-portal", headers=_auth_headers())

    assert response.status_code == 500
    assert response.json() == {"error": "Stripe not configured"}
    assert resolved == []


def test_create_portal_creates_customer_for_new_email(monkeypatch) -> None:
    sdk = FakeStripeSDK()
    _install_billing(monkeypatch, sdk)
    _mock_authenticated(monkeypatch, user_metadata={"full_name": "Ada Lovelace"})

    response = client.post("/api/subscriptions/create-portal", headers=_auth_headers())

    assert response.status_code == 200
    assert response.json() == {"portalUrl": "https://billing.example/p/123"}
    assert sdk.calls_to("customers.list") == [{"email": "a@example.com", "limit": 1}]
    created = sdk.calls_to("customers.create")
    assert len(created) == 1
    assert created[0]["email"] == "a@example.com"
    assert created[0]["name"] == "Ada Lovelace"
    assert created[0]["metadata"] == {"userId": "a@example.com", "metadataVersion": "1"}
    assert created[0]["options"]["idempotency_key"].startswith("customer-create-")
    assert sdk.calls_to("billing_portal.sessions.create") == [
        {"customer": "cus_1", "return_url": "https://app.example/dashboard"}
    ]


def test_create_portal_reuses_existing_customer(monkeypatch) -> None:
    sdk = FakeStripeSDK()
    sdk.add_customer("cus_existing", "a@example.com")
    _install_billing(monkeypatch, sdk)
    _mock_authenticated(monkeypatch)

    first = client.post("/api/subscriptions/create-portal", headers=_auth_headers())
    second = client.post("/api/subscriptions/create-portal", headers=_auth_headers())

    assert first.status_code == second.status_code == 200
    assert sdk.calls_to("customers.create") == []
    portal_calls = sdk.calls_to("billing_portal.sessions.create")
    assert [call["customer"] for call in portal_calls] == ["cus_existing", "cus_existing"]


def test_create_portal_returns_provider_portal_url(monkeypatch) -> None:
    sdk = FakeStripeSDK(portal_url="https://billing.example/p/other")
    sdk.add_customer("cus_9", "a@example.com")
    _install_billing(monkeypatch, sdk)
    _mock_authenticated(monkeypatch)

    response = client.post("/api/subscriptions/create-portal", headers=_auth_headers())

    assert response.json()["portalUrl"] == "https://billing.example/p/other"


def test_create_portal_accepts_session_cookie(monkeypatch) -> None:
    sdk = FakeStripeSDK()
    sdk.add_customer("cus_9", "a@example.com")
    _install_billing(monkeypatch, sdk)
    tokens: list[str] = []

    def _lookup(token: str) -> dict[str, object]:
        tokens.append(token)
        return {"id": AUTH_USER_ID, "email": "a@example.com"}

    monkeypatch.setattr(billing_api, "get_user_from_bearer_token", _lookup)
    cookie_client = TestClient(app, cookies={"session_token": "cookie-token"})

    response = cookie_client.post("/api/subscriptions/create-portal")

    assert response.status_code == 200
    assert tokens == ["cookie-token"]


def test_create_portal_provider_failure_returns_generic_500(monkeypatch) -> None:
    sdk = FakeStripeSDK(
        fail_on={"billing_portal.sessions.create": stripe.APIError("provider exploded", http_status=500)}
    )
    _install_billing(monkeypatch, sdk)
    _mock_authenticated(monkeypatch)

    response = client.post("/api/subscriptions/create-portal", headers=_auth_headers())

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
    # The customer created before the failure is kept and reused next time.
    assert len(sdk.customers_by_id) == 1


def test_create_portal_unexpected_failure_returns_generic_500(monkeypatch) -> None:
    sdk = FakeStripeSDK(fail_on={"customers.list": RuntimeError("socket closed")})
    _install_billing(monkeypatch, sdk)
    _mock_authenticated(monkeypatch)

    response = client.post("/api/subscriptions/create-portal", headers=_auth_headers())

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_create_checkout_rejects_unknown_tier(monkeypatch) -> None:
    sdk = FakeStripeSDK()
    _install_billing(monkeypatch, sdk)
    _mock_authenticated(monkeypatch)

    response = client.post(
        "/api/subscriptions/create-checkout",
        json={"tier": "GOLD"},
        headers=_auth_headers(),
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid subscription tier"}
    assert sdk.calls == []


def test_create_checkout_requires_price_id(monkeypatch) -> None:
    monkeypatch.delenv("STRIPE_PLUS_PRICE_ID", raising=False)
    sdk = FakeStripeSDK()
    _install_billing(monkeypatch, sdk)
    _mock_authenticated(monkeypatch)

    response = client.post(
        "/api/subscriptions/create-checkout",
        json={"tier": "PLUS"},
        headers=_auth_headers(),
    )

    assert response.status_code == 500
    assert response.json() == {"error": "Price ID not configured"}


def test_create_checkout_builds_subscription_session(monkeypatch) -> None:
    monkeypatch.setenv("STRIPE_PREMIUM_PRICE_ID", "price_premium")
    sdk = FakeStripeSDK()
    _install_billing(monkeypatch, sdk)
    _mock_authenticated(monkeypatch)

    response = client.post(
        "/api/subscriptions/create-checkout",
        json={"tier": "premium"},
        headers=_auth_headers(),
    )

    assert response.status_code == 200
    assert response.json() == {"checkoutUrl": "https://checkout.example/c/456", "sessionId": "cs_test_1"}
    (params,) = sdk.calls_to("checkout.sessions.create")
    assert params["mode"] == "subscription"
    assert params["line_items"] == [{"price": "price_premium", "quantity": 1}]
    assert params["success_url"] == "https://app.example/dashboard?success=true&tier=PREMIUM"
    assert params["cancel_url"] == "https://app.example/pricing?canceled=true"
    assert params["customer_email"] == "a@example.com"
    assert params["subscription_data"] == {"metadata": {"userId": "a@example.com", "tier": "PREMIUM"}}


def test_create_checkout_without_session_returns_401_and_skips_billing(monkeypatch) -> None:
    sdk = FakeStripeSDK()
    _install_billing(monkeypatch, sdk)

    response = client.post("/api/subscriptions/create-checkout", json={"tier": "PLUS"})

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    assert sdk.calls == []


def test_create_checkout_when_unconfigured_returns_500_before_session(monkeypatch) -> None:
    _install_billing(monkeypatch, None)
    resolved: list[str] = []
    monkeypatch.setattr(
        billing_api,
        "get_user_from_bearer_token",
        lambda token: resolved.append(token) or {"id": AUTH_USER_ID, "email": "a@example.com"},
    )

    for kwargs in ({"json": {"tier": "PLUS"}}, {"content": b"not json"}, {}):
        response = client.post("/api/subscriptions/create-checkout", headers=_auth_headers(), **kwargs)

        assert response.status_code == 500
        assert response.json() == {"error": "Stripe not configured"}
    assert resolved == []


def test_create_checkout_malformed_body_without_session_returns_401(monkeypatch) -> None:
    sdk = FakeStripeSDK()
    _install_billing(monkeypatch, sdk)

    response = client.post("/api/subscriptions/create-checkout", content=b"{broken")

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    assert sdk.calls == []


def test_create_checkout_unusable_body_is_invalid_tier(monkeypatch) -> None:
    sdk = FakeStripeSDK()
    _install_billing(monkeypatch, sdk)
    _mock_authenticated(monkeypatch)

    for kwargs in (
        {},
        {"content": b"{broken"},
        {"content": b"\xff\xfe"},
        {"json": ["PLUS"]},
        {"json": "PLUS"},
        {"json": {"tier": 3}},
        {"json": {}},
    ):
        response = client.post("/api/subscriptions/create-checkout", headers=_auth_headers(), **kwargs)

        assert response.status_code == 400, kwargs
        assert response.json() == {"error": "Invalid subscription tier"}
    assert sdk.calls == []


def test_subscription_status_without_session_returns_401(monkeypatch) -> None:
    sdk = FakeStripeSDK()
    _install_billing(monkeypatch, sdk)

    response = client.get("/api/subscriptions/status")

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    assert sdk.calls == []


def test_subscription_status_demo_mode_uses_session_tier(monkeypatch) -> None:
    _install_billing(monkeypatch, None)
    _mock_authenticated(monkeypatch, app_metadata={"subscription_tier": "plus"})

    response = client.get("/api/subscriptions/status", headers=_auth_headers())

    assert response.status_code == 200
    payload = response.json()
    assert payload["tier"] == "PLUS"
    assert payload["tierName"] == "Plus"
    assert payload["demoMode"] is True
    assert payload["stripeSubscription"] is None
    assert payload["limits"]["accounts"] == 5


def test_subscription_status_reads_active_provider_subscription(monkeypatch) -> None:
    monkeypatch.setenv("STRIPE_PREMIUM_PRICE_ID", "price_premium")
    sdk = FakeStripeSDK()
    sdk.add_customer("cus_1", "a@example.com")
    sdk.subscriptions_by_customer["cus_1"] = {
        "id": "sub_1",
        "status": "active",
        "items": {"data": [{"price": {"id": "price_premium"}}]},
        "current_period_start": 1700000000,
        "current_period_end": 1702592000,
        "cancel_at_period_end": True,
    }
    _install_billing(monkeypatch, sdk)
    _mock_authenticated(monkeypatch)

    response = client.get("/api/subscriptions/status", headers=_auth_headers())

    payload = response.json()
    assert payload["tier"] == "PREMIUM"
    assert payload["demoMode"] is False
    assert payload["stripeSubscription"]["id"] == "sub_1"
    assert payload["stripeSubscription"]["cancelAtPeriodEnd"] is True
    assert payload["stripeSubscription"]["currentPeriodStart"].startswith("2023-11-14")


def test_subscription_status_survives_provider_failure(monkeypatch) -> None:
    sdk = FakeStripeSDK(fail_on={"customers.list": stripe.APIConnectionError("timeout")})
    _install_billing(monkeypatch, sdk)
    _mock_authenticated(monkeypatch)

    response = client.get("/api/subscriptions/status", headers=_auth_headers())

    assert response.status_code == 200
    assert response.json()["tier"] == "FREE"
    assert response.json()["demoMode"] is True


def _install_webhooks(monkeypatch, sdk: FakeStripeSDK | None, secret: str | None = WEBHOOK_SECRET) -> None:
    billing_client = BillingClient(sdk) if sdk is not None else None
    service = WebhookService(billing_client=billing_client, webhook_secret=secret)
    monkeypatch.setattr(billing_api, "get_webhook_service", lambda: service)


def _event_body(event_type: str, data_object: dict[str, object]) -> str:
    return json.dumps({"id": "evt_1", "type": event_type, "data": {"object": data_object}})


def test_webhook_requires_signature_header(monkeypatch) -> None:
    _install_webhooks(monkeypatch, FakeStripeSDK())

    response = client.post("/api/subscriptions/webhook", content=_event_body("invoice.upcoming", {}))

    assert response.status_code == 400
    assert response.json() == {"error": "Missing signature"}


def test_webhook_requires_secret(monkeypatch) -> None:
    _install_webhooks(monkeypatch, FakeStripeSDK(), secret=None)
    body = _event_body("invoice.upcoming", {})

    response = client.post(
        "/api/subscriptions/webhook",
        content=body,
        headers={"stripe-signature": sign_webhook_payload(body, WEBHOOK_SECRET)},
    )

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook secret not configured"}


def test_webhook_rejects_bad_signature(monkeypatch) -> None:
    _install_webhooks(monkeypatch, FakeStripeSDK())
    body = _event_body("invoice.upcoming", {})

    response = client.post(
        "/api/subscriptions/webhook",
        content=body,
        headers={"stripe-signature": sign_webhook_payload(body, "whsec_other")},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid signature"}


def test_webhook_acknowledges_verified_event(monkeypatch) -> None:
    _install_webhooks(monkeypatch, FakeStripeSDK())
    body = _event_body(
        "checkout.session.completed",
        {"id": "cs_1", "metadata": {"userId": "a@example.com", "tier": "PLUS"}},
    )

    response = client.post(
        "/api/subscriptions/webhook",
        content=body,
        headers={"stripe-signature": sign_webhook_payload(body, WEBHOOK_SECRET)},
    )

    assert response.status_code == 200
    assert response.json() == {"received": True, "eventId": "evt_1"}


def test_webhook_handler_failure_returns_event_details(monkeypatch) -> None:
    def _explode(_event):
        raise RuntimeError("database down")

    service = WebhookService(
        billing_client=BillingClient(FakeStripeSDK()),
        webhook_secret=WEBHOOK_SECRET,
        handlers={"invoice.payment_failed": _explode},
    )
    monkeypatch.setattr(billing_api, "get_webhook_service", lambda: service)
    body = _event_body("invoice.payment_failed", {"subscription": "sub_1"})

    response = client.post(
        "/api/subscriptions/webhook",
        content=body,
        headers={"stripe-signature": sign_webhook_payload(body, WEBHOOK_SECRET)},
    )

    assert response.status_code == 500
    assert response.json() == {
        "error": "Webhook processing failed",
        "eventId": "evt_1",
        "eventType": "invoice.payment_failed",
    }


def test_webhook_when_unconfigured_returns_500(monkeypatch) -> None:
    _install_webhooks(monkeypatch, None)

    response = client.post(
        "/api/subscriptions/webhook",
        content="{}",
        headers={"stripe-signature": "t=1,v1=abc"},
    )

    assert response.status_code == 500
    assert response.json() == {"error": "Stripe not configured"}


def test_webhook_rejects_undecodable_body(monkeypatch) -> None:
    _install_webhooks(monkeypatch, FakeStripeSDK())

    response = client.post(
        "/api/subscriptions/webhook",
        content=b"\xff\xfe{}",
        headers={"stripe-signature": "t=1,v1=abc"},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid payload"}
