"""Pydantic models shared across backend and web layers."""

from .billing import (
    AuthenticatedSession,
    BillingCustomer,
    CheckoutRequest,
    CheckoutResponse,
    CheckoutSession,
    CustomerMetadata,
    PortalResponse,
    PortalSession,
    ProviderSubscription,
    SessionUser,
    StripeSubscriptionSummary,
    SubscriptionStatusResponse,
    SubscriptionTier,
    TierLimits,
    WebhookEvent,
    WebhookOutcome,
)
from .finance import (
    Budget,
    Category,
    SplitPart,
    Transaction,
    TransactionSplit,
    User,
    UserPreferences,
    build_splits,
)

__all__ = [
    "AuthenticatedSession",
    "BillingCustomer",
    "Budget",
    "Category",
    "CheckoutRequest",
    "CheckoutResponse",
    "CheckoutSession",
    "CustomerMetadata",
    "PortalResponse",
    "PortalSession",
    "ProviderSubscription",
    "SessionUser",
    "SplitPart",
    "StripeSubscriptionSummary",
    "SubscriptionStatusResponse",
    "SubscriptionTier",
    "TierLimits",
    "Transaction",
    "TransactionSplit",
    "User",
    "UserPreferences",
    "WebhookEvent",
    "WebhookOutcome",
    "build_splits",
]
