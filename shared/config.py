"""Configuration helpers for environment variables."""

from __future__ import annotations

import os
import logging

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


_DEFAULT_APP_BASE_URL = "http://localhost:3000"
_DEFAULT_STRIPE_API_VERSION = "2023-10-16"
_DEFAULT_SESSION_COOKIE_NAME = "session_token"


def _should_load_dotenv() -> bool:
    """Return whether local dotenv loading should run."""
    app_env = os.getenv("APP_ENV", "dev").strip().lower()
    return app_env in {"dev", "local"}


if _should_load_dotenv():
    load_dotenv()


def get_env(name: str, default: str | None = None) -> str | None:
    """Return a raw environment value or default."""
    return os.getenv(name, default)


def _non_empty(name: str) -> str | None:
    value = (get_env(name, "") or "").strip()
    return value or None


def app_env() -> str:
    """Return the current application environment."""
    return (get_env("APP_ENV", "dev") or "dev").strip() or "dev"


def app_base_url() -> str:
    """Return the public application URL used for billing redirects."""
    value = _non_empty("APP_BASE_URL") or _non_empty("NEXTAUTH_URL") or _DEFAULT_APP_BASE_URL
    return value.rstrip("/")


def cors_allow_origins() -> list[str]:
    """Return CORS allowed origins from env with safe environment defaults."""
    raw_origins = get_env("CORS_ALLOW_ORIGINS", "") or ""
    parsed_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]

    if parsed_origins:
        return parsed_origins

    if app_env().strip().lower() in {"dev", "local"}:
        return ["http://localhost:3000", "http://127.0.0.1:3000"]

    ui_origin = (get_env("UI_ORIGIN", "") or "").strip()
    if ui_origin:
        return [ui_origin]

    logger.warning(
        "cors_allow_origins_empty_in_prod app_env=%s; define CORS_ALLOW_ORIGINS or UI_ORIGIN",
        app_env(),
    )

    return []


def stripe_secret_key() -> str | None:
    """Return the Stripe secret key when configured."""
    return _non_empty("STRIPE_SECRET_KEY")


def stripe_webhook_secret() -> str | None:
    """Return the Stripe webhook signing secret when configured."""
    return _non_empty("STRIPE_WEBHOOK_SECRET")


def stripe_plus_price_id() -> str | None:
    """Return the Stripe price id of the Plus tier."""
    return _non_empty("STRIPE_PLUS_PRICE_ID")


def stripe_premium_price_id() -> str | None:
    """Return the Stripe price id of the Premium tier."""
    return _non_empty("STRIPE_PREMIUM_PRICE_ID")


def stripe_api_version() -> str:
    """Return the pinned Stripe API version."""
    return _non_empty("STRIPE_API_VERSION") or _DEFAULT_STRIPE_API_VERSION


def stripe_max_network_retries() -> int:
    """Return SDK-level network retries, zero unless explicitly configured."""
    raw_value = _non_empty("STRIPE_MAX_NETWORK_RETRIES")
    if raw_value is None:
        return 0
    try:
        return max(int(raw_value), 0)
    except ValueError:
        logger.warning("stripe_max_network_retries_invalid value=%s", raw_value)
        return 0


def auth_url() -> str | None:
    """Return the identity provider base URL when configured."""
    return _non_empty("AUTH_URL")


def auth_anon_key() -> str | None:
    """Return the identity provider public (anon) key when configured."""
    return _non_empty("AUTH_ANON_KEY")


def session_cookie_name() -> str:
    """Return the cookie name carrying the session token."""
    return _non_empty("SESSION_COOKIE_NAME") or _DEFAULT_SESSION_COOKIE_NAME
