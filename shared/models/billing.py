"""Pydantic contracts for sessions, subscriptions and billing payloads."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


CUSTOMER_METADATA_SCHEMA_VERSION = 1


class SubscriptionTier(str, Enum):
    """Subscription tiers in ascending order of entitlement."""

    FREE = "free"
    PLUS = "plus"
    PREMIUM = "premium"

    @classmethod
    def parse(cls, value: object) -> "SubscriptionTier | None":
        """Return the tier matching ``value`` case-insensitively, else None."""

        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class SessionUser(BaseModel):
    """Authenticated user identity as reported by the identity provider.

    ``subscription`` is the single source of truth for the tier attached to
    a session; it is read from the provider's ``app_metadata`` claim.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    email: str | None = None
    name: str | None = None
    image: str | None = None
    subscription: SubscriptionTier | None = None


class AuthenticatedSession(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    user: SessionUser
    access_token: str = Field(repr=False)

    @property
    def email(self) -> str | None:
        return self.user.email

    @property
    def subscription(self) -> SubscriptionTier | None:
        """Derived read-only view of the user's tier."""

        return self.user.subscription


class CustomerMetadata(BaseModel):
    """Versioned metadata linking a billing customer to an application user."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    user_id: str
    schema_version: int = CUSTOMER_METADATA_SCHEMA_VERSION

    def to_provider(self) -> dict[str, str]:
        """Return the provider's flat string map representation."""

        return {"userId": self.user_id, "metadataVersion": str(self.schema_version)}


class BillingCustomer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    email: str | None = None


class PortalSession(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    url: str


class CheckoutSession(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    url: str | None = None


class ProviderSubscription(BaseModel):
    """Subset of a provider subscription used to report status."""

    model_config = ConfigDict(extra="ignore")

    id: str
    status: str
    price_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False


class PortalResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    portal_url: str = Field(alias="portalUrl")


class CheckoutRequest(BaseModel):
    tier: str | None = None

    @field_validator("tier", mode="before")
    @classmethod
    def _strip_tier(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return None


class CheckoutResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    checkout_url: str | None = Field(alias="checkoutUrl")
    session_id: str = Field(alias="sessionId")


class TierLimits(BaseModel):
    """Per-tier resource limits; -1 means unlimited."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    users: int
    accounts: int
    transactions: int
    budgets: int
    categories: int


class StripeSubscriptionSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: str
    current_period_start: datetime | None = Field(default=None, alias="currentPeriodStart")
    current_period_end: datetime | None = Field(default=None, alias="currentPeriodEnd")
    cancel_at_period_end: bool = Field(default=False, alias="cancelAtPeriodEnd")


class SubscriptionStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tier: str
    tier_name: str = Field(alias="tierName")
    price: float
    features: list[str]
    limits: TierLimits
    is_active: bool = Field(default=True, alias="isActive")
    demo_mode: bool = Field(alias="demoMode")
    stripe_subscription: StripeSubscriptionSummary | None = Field(default=None, alias="stripeSubscription")


class WebhookEvent(BaseModel):
    """Verified provider event envelope."""

    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def data_object(self) -> dict[str, Any]:
        value = self.data.get("object")
        return value if isinstance(value, dict) else {}


class WebhookOutcome(BaseModel):
    """Observable effect of a handled webhook event."""

    model_config = ConfigDict(extra="forbid")

    event_type: str
    action: str
    user_id: str | None = None
    tier: str | None = None
    status: str | None = None
    subscription_id: str | None = None
    customer_id: str | None = None
