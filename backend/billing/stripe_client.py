"""Stripe adapter used by the billing services only."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import stripe
from pydantic import ValidationError

from backend.errors import ExternalServiceError, InvalidRequestError
from shared.models import (
    BillingCustomer,
    CheckoutSession,
    CustomerMetadata,
    PortalSession,
    ProviderSubscription,
    WebhookEvent,
)


logger = logging.getLogger(__name__)


_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
)


@dataclass(slots=True)
class StripeSettings:
    secret_key: str
    api_version: str
    webhook_secret: str | None = None
    max_network_retries: int = 0


def build_stripe_sdk_client(settings: StripeSettings) -> stripe.StripeClient:
    return stripe.StripeClient(
        settings.secret_key,
        stripe_version=settings.api_version,
        max_network_retries=settings.max_network_retries,
    )


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a Stripe object or a plain mapping."""

    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        return default
    return default if value is None else value


def _timestamp(value: Any) -> datetime | None:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


class BillingClient:
    """Thin wrapper over the Stripe SDK client.

    Every provider failure is normalized into ``ExternalServiceError`` so the
    services above never see SDK exception types.
    """

    def __init__(self, sdk_client: Any, settings: StripeSettings | None = None) -> None:
        self._sdk = sdk_client
        self.settings = settings

    def _call(self, operation: str, func, *args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except _RETRYABLE_ERRORS as exc:
            raise ExternalServiceError(
                type(exc).__name__, retryable=True, operation=operation
            ) from exc
        except stripe.StripeError as exc:
            raise ExternalServiceError(
                f"{type(exc).__name__} status={getattr(exc, 'http_status', None)}",
                retryable=False,
                operation=operation,
            ) from exc

    def find_customer_by_email(self, email: str) -> BillingCustomer | None:
        """Return the first customer whose email matches exactly, if any."""

        result = self._call(
            "customers.list",
            self._sdk.customers.list,
            params={"email": email, "limit": 1},
        )
        customers = _field(result, "data", [])
        if not customers:
            return None
        return self._parse(
            "customers.list",
            BillingCustomer,
            {"id": _field(customers[0], "id"), "email": _field(customers[0], "email")},
        )

    def create_customer(
        self,
        *,
        email: str,
        name: str | None,
        metadata: CustomerMetadata,
        idempotency_key: str | None = None,
    ) -> BillingCustomer:
        params: dict[str, Any] = {"email": email, "metadata": metadata.to_provider()}
        if name:
            params["name"] = name
        options: dict[str, Any] = {}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key

        customer = self._call(
            "customers.create",
            self._sdk.customers.create,
            params=params,
            options=options,
        )
        return self._parse(
            "customers.create",
            BillingCustomer,
            {"id": _field(customer, "id"), "email": _field(customer, "email")},
        )

    def create_portal_session(self, *, customer_id: str, return_url: str) -> PortalSession:
        session = self._call(
            "billing_portal.sessions.create",
            self._sdk.billing_portal.sessions.create,
            params={"customer": customer_id, "return_url": return_url},
        )
        return self._parse(
            "billing_portal.sessions.create",
            PortalSession,
            {"id": _field(session, "id"), "url": _field(session, "url")},
        )

    def create_checkout_session(self, params: dict[str, Any]) -> CheckoutSession:
        session = self._call(
            "checkout.sessions.create",
            self._sdk.checkout.sessions.create,
            params=params,
        )
        return self._parse(
            "checkout.sessions.create",
            CheckoutSession,
            {"id": _field(session, "id"), "url": _field(session, "url")},
        )

    def find_active_subscription(self, customer_id: str) -> ProviderSubscription | None:
        result = self._call(
            "subscriptions.list",
            self._sdk.subscriptions.list,
            params={"customer": customer_id, "status": "active", "limit": 1},
        )
        subscriptions = _field(result, "data", [])
        if not subscriptions:
            return None

        subscription = subscriptions[0]
        items = _field(_field(subscription, "items"), "data", [])
        price_id = _field(_field(items[0], "price"), "id") if items else None
        return self._parse(
            "subscriptions.list",
            ProviderSubscription,
            {
                "id": _field(subscription, "id"),
                "status": _field(subscription, "status"),
                "price_id": price_id,
                "current_period_start": _timestamp(_field(subscription, "current_period_start")),
                "current_period_end": _timestamp(_field(subscription, "current_period_end")),
                "cancel_at_period_end": bool(_field(subscription, "cancel_at_period_end", False)),
            },
        )

    def construct_event(self, payload: bytes | str, signature: str, secret: str) -> WebhookEvent:
        """Verify a webhook signature and parse the event envelope."""

        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as exc:
            raise InvalidRequestError("Invalid payload") from exc

        try:
            stripe.WebhookSignature.verify_header(
                body, signature, secret, stripe.Webhook.DEFAULT_TOLERANCE
            )
        except stripe.SignatureVerificationError as exc:
            raise InvalidRequestError("Invalid signature") from exc

        try:
            return WebhookEvent.model_validate(json.loads(body))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise InvalidRequestError("Invalid payload") from exc

    @staticmethod
    def _parse(operation: str, model: type, data: dict[str, Any]) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            logger.warning("billing_response_malformed operation=%s", operation)
            raise ExternalServiceError(
                "malformed provider response", retryable=False, operation=operation
            ) from exc
