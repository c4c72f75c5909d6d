"""Subscription tier catalog and feature gating helpers."""

from __future__ import annotations

from dataclasses import dataclass

from shared import config
from shared.models import SubscriptionTier, TierLimits


UNLIMITED = -1
TIER_ORDER: tuple[str, ...] = ("FREE", "PLUS", "PREMIUM")
PAID_TIERS: frozenset[str] = frozenset({"PLUS", "PREMIUM"})


@dataclass(frozen=True, slots=True)
class TierConfig:
    key: str
    id: str
    name: str
    price: float
    price_id: str | None
    features: tuple[str, ...]
    limits: TierLimits


def subscription_tiers() -> dict[str, TierConfig]:
    """Return the tier catalog keyed by upper-case tier name.

    Price ids are read from the environment on each call.
    """

    return {
        "FREE": TierConfig(
            key="FREE",
            id=SubscriptionTier.FREE.value,
            name="Free",
            price=0,
            price_id=None,
            features=(
                "Single user account",
                "Manual transaction entry",
                "Basic budgets and analytics",
                "Manual investment tracking",
                "PDF/Excel reports",
                "Up to 3 accounts",
            ),
            limits=TierLimits(users=1, accounts=3, transactions=UNLIMITED, budgets=5, categories=20),
        ),
        "PLUS": TierConfig(
            key="PLUS",
            id=SubscriptionTier.PLUS.value,
            name="Plus",
            price=2.99,
            price_id=config.stripe_plus_price_id(),
            features=(
                "Everything in Free",
                "Multi-user collaboration (up to 5 users)",
                "OCR receipt processing",
                "Enhanced investment analytics",
                "Priority sync and support",
                "Up to 5 accounts",
            ),
            limits=TierLimits(users=5, accounts=5, transactions=UNLIMITED, budgets=20, categories=50),
        ),
        "PREMIUM": TierConfig(
            key="PREMIUM",
            id=SubscriptionTier.PREMIUM.value,
            name="Premium",
            price=9.99,
            price_id=config.stripe_premium_price_id(),
            features=(
                "Everything in Plus",
                "Automatic bank connections (Plaid)",
                "Real-time transaction sync",
                "Automatic investment sync",
                "Advanced automation rules",
                "Tax optimization features",
                "Professional integrations",
                "Up to 10 accounts",
            ),
            limits=TierLimits(
                users=10,
                accounts=10,
                transactions=UNLIMITED,
                budgets=UNLIMITED,
                categories=UNLIMITED,
            ),
        ),
    }


def tier_key(tier: SubscriptionTier | str | None) -> str:
    """Return the catalog key for a tier value, defaulting to FREE."""

    parsed = SubscriptionTier.parse(tier)
    if parsed is None:
        return "FREE"
    return parsed.name


def get_tier_by_price_id(price_id: str | None) -> str | None:
    if not price_id:
        return None
    for key, tier in subscription_tiers().items():
        if tier.price_id == price_id:
            return key
    return None


def can_access_feature(user_tier: str, required_tier: str) -> bool:
    """Return whether ``user_tier`` ranks at or above ``required_tier``."""

    user_index = TIER_ORDER.index(tier_key(user_tier))
    required_index = TIER_ORDER.index(tier_key(required_tier))
    return user_index >= required_index


def check_usage_limit(user_tier: str, resource: str, current_count: int) -> bool:
    """Return whether one more ``resource`` fits under the tier's limit.

    Resources the catalog does not know are never allowed.
    """

    limits = subscription_tiers()[tier_key(user_tier)].limits
    limit = limits.model_dump().get(resource)
    if limit is None:
        return False
    return limit == UNLIMITED or current_count < limit


def get_upgrade_message(user_tier: str, required_tier: str) -> str:
    required = tier_key(required_tier)
    if required in PAID_TIERS:
        tier = subscription_tiers()[required]
        return f"This feature requires {tier.name} subscription (${tier.price}/month)"
    return "This feature requires a subscription upgrade"
