"""Composition root for backend services."""

from __future__ import annotations

import logging

from backend.billing.stripe_client import BillingClient, StripeSettings, build_stripe_sdk_client
from backend.services.billing_service import BillingService
from backend.services.customer_resolver import CustomerResolver
from backend.services.webhook_service import WebhookService
from shared import config


logger = logging.getLogger(__name__)


def stripe_settings_from_env() -> StripeSettings | None:
    """Return Stripe settings, or None when no secret key is configured."""

    secret_key = config.stripe_secret_key()
    if not secret_key:
        return None
    return StripeSettings(
        secret_key=secret_key,
        api_version=config.stripe_api_version(),
        webhook_secret=config.stripe_webhook_secret(),
        max_network_retries=config.stripe_max_network_retries(),
    )


def build_billing_client() -> BillingClient | None:
    settings = stripe_settings_from_env()
    if settings is None:
        logger.warning("billing_client_disabled reason=missing_secret_key")
        return None
    return BillingClient(build_stripe_sdk_client(settings), settings=settings)


def build_billing_service(billing_client: BillingClient | None = None) -> BillingService:
    """Build the billing request flows.

    The billing client is built from the environment unless one is given.
    """

    if billing_client is None:
        billing_client = build_billing_client()
    customer_resolver = CustomerResolver(billing_client) if billing_client is not None else None
    return BillingService(
        billing_client=billing_client,
        customer_resolver=customer_resolver,
        app_base_url=config.app_base_url(),
    )


def build_webhook_service(billing_client: BillingClient | None = None) -> WebhookService:
    if billing_client is None:
        billing_client = build_billing_client()
    return WebhookService(
        billing_client=billing_client,
        webhook_secret=config.stripe_webhook_secret(),
    )
