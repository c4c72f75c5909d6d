"""Identity provider token validation for API endpoints."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from uuid import UUID
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from backend.errors import UnauthorizedError
from shared import config
from shared.models import AuthenticatedSession, SessionUser, SubscriptionTier


logger = logging.getLogger(__name__)


REQUIRED_AUTH_USER_ID_FIELD = "id"
SUBSCRIPTION_CLAIM = "subscription_tier"


@dataclass(slots=True)
class AuthSettings:
    url: str
    anon_key: str


def auth_settings_from_env() -> AuthSettings | None:
    """Return identity provider settings, or None when not configured."""

    url = (config.auth_url() or "").rstrip("/")
    anon_key = config.auth_anon_key()
    if not url or not anon_key:
        return None
    return AuthSettings(url=url, anon_key=anon_key)


def _is_uuid_like(value: str) -> bool:
    try:
        UUID(value)
    except (ValueError, TypeError):
        return False
    return True


def get_user_from_bearer_token(token: str, *, settings: AuthSettings | None = None) -> dict[str, object]:
    """Return the identity provider user payload for a bearer token."""

    settings = settings or auth_settings_from_env()
    if settings is None:
        logger.error("auth_not_configured")
        raise UnauthorizedError()

    request = Request(
        url=f"{settings.url}/auth/v1/user",
        headers={
            "apikey": settings.anon_key,
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        },
        method="GET",
    )

    try:
        with urlopen(request) as response:  # noqa: S310 - trusted auth URL from env
            if response.status != 200:
                raise UnauthorizedError()
            payload = json.loads(response.read().decode("utf-8"))
            if not isinstance(payload, dict):
                raise UnauthorizedError()
            user_id = payload.get(REQUIRED_AUTH_USER_ID_FIELD)
            if not isinstance(user_id, str) or not _is_uuid_like(user_id):
                raise UnauthorizedError()
            return payload
    except HTTPError as exc:
        raise UnauthorizedError() from exc
    except URLError as exc:
        logger.warning("auth_provider_unreachable reason=%s", exc.reason)
        raise UnauthorizedError() from exc
    except json.JSONDecodeError as exc:
        raise UnauthorizedError() from exc


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def session_from_user_payload(payload: dict[str, object], access_token: str) -> AuthenticatedSession:
    """Build a session from the provider user payload.

    The display name comes from ``user_metadata``; the subscription tier comes
    from the server-controlled ``app_metadata`` claim only.
    """

    user_metadata = payload.get("user_metadata")
    if not isinstance(user_metadata, dict):
        user_metadata = {}
    app_metadata = payload.get("app_metadata")
    if not isinstance(app_metadata, dict):
        app_metadata = {}

    user = SessionUser(
        id=str(payload[REQUIRED_AUTH_USER_ID_FIELD]),
        email=_optional_str(payload.get("email")),
        name=_optional_str(user_metadata.get("full_name")) or _optional_str(user_metadata.get("name")),
        image=_optional_str(user_metadata.get("avatar_url")),
        subscription=SubscriptionTier.parse(app_metadata.get(SUBSCRIPTION_CLAIM)),
    )
    return AuthenticatedSession(user=user, access_token=access_token)


def extract_session_token(authorization: str | None, cookie_token: str | None = None) -> str | None:
    """Return the bearer token, falling back to the session cookie."""

    if authorization:
        prefix = "Bearer "
        if not authorization.startswith(prefix):
            return None
        token = authorization[len(prefix) :].strip()
        return token or None
    if cookie_token and cookie_token.strip():
        return cookie_token.strip()
    return None
