"""Billing portal, checkout and subscription status flows."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from backend.billing.stripe_client import BillingClient
from backend.errors import ConfigurationError, ExternalServiceError, InvalidRequestError
from backend.services.customer_resolver import CustomerResolver
from shared.models import (
    AuthenticatedSession,
    CheckoutResponse,
    PortalResponse,
    StripeSubscriptionSummary,
    SubscriptionStatusResponse,
)
from shared.subscription_tiers import PAID_TIERS, get_tier_by_price_id, subscription_tiers, tier_key


logger = logging.getLogger(__name__)


SessionResolver = Callable[[], AuthenticatedSession]


@dataclass(slots=True)
class BillingService:
    """Request flows over an explicitly injected billing client.

    ``billing_client`` is None when the provider is not configured; flows
    that need it fail with ``ConfigurationError`` before touching the session.
    """

    billing_client: BillingClient | None
    customer_resolver: CustomerResolver | None
    app_base_url: str

    def _require_client(self) -> tuple[BillingClient, CustomerResolver]:
        if self.billing_client is None or self.customer_resolver is None:
            logger.error("billing_not_configured missing=STRIPE_SECRET_KEY")
            raise ConfigurationError()
        return self.billing_client, self.customer_resolver

    def create_portal(self, resolve_session: SessionResolver) -> PortalResponse:
        """Return a hosted billing portal URL for the caller."""

        billing_client, customer_resolver = self._require_client()
        session = resolve_session()

        customer = customer_resolver.resolve(email=session.email, name=session.user.name)
        portal_session = billing_client.create_portal_session(
            customer_id=customer.id,
            return_url=f"{self.app_base_url}/dashboard",
        )
        logger.info("billing_portal_session_created customer_id=%s", customer.id)
        return PortalResponse(portal_url=portal_session.url)

    def create_checkout(
        self,
        resolve_session: SessionResolver,
        resolve_tier: Callable[[], str | None],
    ) -> CheckoutResponse:
        """Return a subscription checkout URL for a paid tier.

        The requested tier is only read once the provider and the session
        have both been checked.
        """

        billing_client, _ = self._require_client()
        session = resolve_session()

        tier = resolve_tier()
        if not tier or tier not in PAID_TIERS:
            raise InvalidRequestError("Invalid subscription tier")

        tier_config = subscription_tiers()[tier]
        if not tier_config.price_id:
            logger.error("billing_price_id_missing tier=%s", tier)
            raise ConfigurationError("Price ID not configured")

        metadata = {"userId": session.email, "tier": tier}
        checkout_session = billing_client.create_checkout_session(
            {
                "mode": "subscription",
                "payment_method_types": ["card"],
                "line_items": [{"price": tier_config.price_id, "quantity": 1}],
                "success_url": f"{self.app_base_url}/dashboard?success=true&tier={tier}",
                "cancel_url": f"{self.app_base_url}/pricing?canceled=true",
                "customer_email": session.email,
                "metadata": metadata,
                "subscription_data": {"metadata": dict(metadata)},
                "allow_promotion_codes": True,
                "billing_address_collection": "required",
            }
        )
        logger.info("billing_checkout_session_created session_id=%s tier=%s", checkout_session.id, tier)
        return CheckoutResponse(checkout_url=checkout_session.url, session_id=checkout_session.id)

    def subscription_status(self, resolve_session: SessionResolver) -> SubscriptionStatusResponse:
        """Report the caller's tier, reconciled with the provider when possible."""

        session = resolve_session()
        current_tier = tier_key(session.subscription)
        provider_subscription = None

        if self.billing_client is not None:
            try:
                customer = self.billing_client.find_customer_by_email(session.email)
                if customer is not None:
                    provider_subscription = self.billing_client.find_active_subscription(customer.id)
            except ExternalServiceError as exc:
                logger.warning(
                    "billing_status_lookup_failed retryable=%s error=%s",
                    exc.retryable,
                    exc,
                )
        else:
            logger.info("billing_status_demo_mode reason=not_configured")

        if provider_subscription is not None:
            current_tier = get_tier_by_price_id(provider_subscription.price_id) or current_tier

        tier_config = subscription_tiers()[current_tier]
        summary = None
        if provider_subscription is not None:
            summary = StripeSubscriptionSummary(
                id=provider_subscription.id,
                status=provider_subscription.status,
                current_period_start=provider_subscription.current_period_start,
                current_period_end=provider_subscription.current_period_end,
                cancel_at_period_end=provider_subscription.cancel_at_period_end,
            )

        return SubscriptionStatusResponse(
            tier=current_tier,
            tier_name=tier_config.name,
            price=tier_config.price,
            features=list(tier_config.features),
            limits=tier_config.limits,
            is_active=True,
            demo_mode=provider_subscription is None,
            stripe_subscription=summary,
        )
