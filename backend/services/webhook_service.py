"""Dispatch of verified billing provider webhook events."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from backend.billing.stripe_client import BillingClient
from backend.errors import ConfigurationError, InvalidRequestError
from shared.models import WebhookEvent, WebhookOutcome
from shared.subscription_tiers import get_tier_by_price_id


logger = logging.getLogger(__name__)


EventHandler = Callable[[WebhookEvent], WebhookOutcome]


def _str_or_none(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    if isinstance(value, dict):
        return _str_or_none(value.get("id"))
    return None


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    metadata = obj.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def _first_price_id(subscription: dict[str, Any]) -> str | None:
    items = subscription.get("items")
    data = items.get("data") if isinstance(items, dict) else None
    if not isinstance(data, list) or not data:
        return None
    price = data[0].get("price") if isinstance(data[0], dict) else None
    return _str_or_none(price)


def handle_checkout_completed(event: WebhookEvent) -> WebhookOutcome:
    checkout = event.data_object
    metadata = _metadata(checkout)
    user_id = _str_or_none(metadata.get("userId"))
    tier = _str_or_none(metadata.get("tier"))
    if not user_id or not tier:
        logger.error("webhook_checkout_missing_metadata event_id=%s", event.id)
        return WebhookOutcome(event_type=event.type, action="ignored_missing_metadata")

    logger.info("webhook_checkout_completed user_id=%s tier=%s", user_id, tier)
    return WebhookOutcome(
        event_type=event.type,
        action="activate_subscription",
        user_id=user_id,
        tier=tier,
        status="active",
        customer_id=_str_or_none(checkout.get("customer")),
        subscription_id=_str_or_none(checkout.get("subscription")),
    )


def _subscription_outcome(event: WebhookEvent, action: str) -> WebhookOutcome:
    subscription = event.data_object
    user_id = _str_or_none(_metadata(subscription).get("userId"))
    if not user_id:
        logger.error("webhook_subscription_missing_user event_id=%s type=%s", event.id, event.type)
        return WebhookOutcome(event_type=event.type, action="ignored_missing_metadata")

    return WebhookOutcome(
        event_type=event.type,
        action=action,
        user_id=user_id,
        tier=get_tier_by_price_id(_first_price_id(subscription)),
        status=_str_or_none(subscription.get("status")),
        subscription_id=_str_or_none(subscription.get("id")),
        customer_id=_str_or_none(subscription.get("customer")),
    )


def handle_subscription_created(event: WebhookEvent) -> WebhookOutcome:
    outcome = _subscription_outcome(event, "record_subscription")
    logger.info("webhook_subscription_created user_id=%s tier=%s", outcome.user_id, outcome.tier)
    return outcome


def handle_subscription_updated(event: WebhookEvent) -> WebhookOutcome:
    outcome = _subscription_outcome(event, "update_subscription")
    logger.info(
        "webhook_subscription_updated user_id=%s tier=%s status=%s",
        outcome.user_id,
        outcome.tier,
        outcome.status,
    )
    return outcome


def handle_subscription_deleted(event: WebhookEvent) -> WebhookOutcome:
    outcome = _subscription_outcome(event, "downgrade_to_free")
    if outcome.user_id is None:
        return outcome
    logger.info("webhook_subscription_deleted user_id=%s", outcome.user_id)
    return outcome.model_copy(update={"tier": "FREE", "status": "canceled"})


def handle_trial_will_end(event: WebhookEvent) -> WebhookOutcome:
    outcome = _subscription_outcome(event, "notify_trial_ending")
    trial_end = event.data_object.get("trial_end")
    if outcome.user_id is not None and isinstance(trial_end, (int, float)):
        ends_on = datetime.fromtimestamp(trial_end, tz=timezone.utc).isoformat()
        logger.info("webhook_trial_will_end user_id=%s ends_on=%s", outcome.user_id, ends_on)
    return outcome


def _invoice_outcome(event: WebhookEvent, action: str) -> WebhookOutcome:
    invoice = event.data_object
    subscription_id = _str_or_none(invoice.get("subscription"))
    if subscription_id is None:
        return WebhookOutcome(event_type=event.type, action="ignored_no_subscription")
    return WebhookOutcome(
        event_type=event.type,
        action=action,
        subscription_id=subscription_id,
        customer_id=_str_or_none(invoice.get("customer")),
        status=_str_or_none(invoice.get("status")),
    )


def handle_invoice_payment_succeeded(event: WebhookEvent) -> WebhookOutcome:
    outcome = _invoice_outcome(event, "record_payment")
    logger.info("webhook_payment_succeeded subscription_id=%s", outcome.subscription_id)
    return outcome


def handle_invoice_payment_failed(event: WebhookEvent) -> WebhookOutcome:
    outcome = _invoice_outcome(event, "mark_past_due")
    if outcome.subscription_id is not None:
        outcome = outcome.model_copy(update={"status": "past_due"})
    logger.warning("webhook_payment_failed subscription_id=%s", outcome.subscription_id)
    return outcome


def handle_invoice_upcoming(event: WebhookEvent) -> WebhookOutcome:
    outcome = _invoice_outcome(event, "notify_upcoming_invoice")
    amount_due = event.data_object.get("amount_due")
    if outcome.subscription_id is not None and isinstance(amount_due, int):
        logger.info(
            "webhook_invoice_upcoming subscription_id=%s amount_due=%.2f",
            outcome.subscription_id,
            amount_due / 100,
        )
    return outcome


EVENT_HANDLERS: dict[str, EventHandler] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_created,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "customer.subscription.trial_will_end": handle_trial_will_end,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
    "invoice.upcoming": handle_invoice_upcoming,
}


class WebhookProcessingError(Exception):
    """Raised when a verified event could not be handled."""

    def __init__(self, event: WebhookEvent) -> None:
        super().__init__(f"Webhook processing failed for {event.type} [{event.id}]")
        self.event = event


class WebhookService:
    def __init__(
        self,
        billing_client: BillingClient | None,
        webhook_secret: str | None,
        handlers: dict[str, EventHandler] | None = None,
    ) -> None:
        self._billing_client = billing_client
        self._webhook_secret = webhook_secret
        self._handlers = dict(EVENT_HANDLERS if handlers is None else handlers)

    def verify(self, payload: bytes, signature: str | None) -> WebhookEvent:
        """Check configuration and signature, returning the parsed event."""

        if self._billing_client is None:
            logger.error("billing_not_configured missing=STRIPE_SECRET_KEY")
            raise ConfigurationError()
        if not signature:
            logger.error("webhook_signature_missing")
            raise InvalidRequestError("Missing signature")
        if not self._webhook_secret:
            logger.error("webhook_secret_missing missing=STRIPE_WEBHOOK_SECRET")
            raise ConfigurationError("Webhook secret not configured")

        try:
            return self._billing_client.construct_event(payload, signature, self._webhook_secret)
        except InvalidRequestError as exc:
            logger.error("webhook_verification_failed reason=%s", exc.message)
            raise

    def dispatch(self, event: WebhookEvent) -> WebhookOutcome:
        logger.info("webhook_event_received type=%s event_id=%s", event.type, event.id)
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("webhook_event_unhandled type=%s", event.type)
            return WebhookOutcome(event_type=event.type, action="unhandled")

        try:
            outcome = handler(event)
        except Exception as exc:
            logger.exception("webhook_event_failed type=%s event_id=%s", event.type, event.id)
            raise WebhookProcessingError(event) from exc

        logger.info("webhook_event_processed type=%s event_id=%s action=%s", event.type, event.id, outcome.action)
        return outcome
