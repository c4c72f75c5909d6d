"""FastAPI entrypoint for the billing HTTP endpoints."""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any, Callable, TypeVar

from fastapi import Depends, FastAPI, Header
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from backend.auth.session_auth import extract_session_token, get_user_from_bearer_token, session_from_user_payload
from backend.errors import BillingServiceError, ExternalServiceError, UnauthorizedError
from backend.factory import build_billing_service, build_webhook_service
from backend.services.billing_service import BillingService
from backend.services.webhook_service import WebhookProcessingError, WebhookService
from shared import config as _config
from shared.models import AuthenticatedSession, CheckoutRequest


logger = logging.getLogger(__name__)

_T = TypeVar("_T")


@lru_cache(maxsize=1)
def get_billing_service() -> BillingService:
    """Create and cache the billing service once per process."""

    service = build_billing_service()
    logger.info("billing_service_ready configured=%s", service.billing_client is not None)
    return service


@lru_cache(maxsize=1)
def get_webhook_service() -> WebhookService:
    """Create and cache the webhook service once per process."""

    return build_webhook_service(get_billing_service().billing_client)


def _resolve_authenticated_session(authorization: str | None, request: Request) -> AuthenticatedSession:
    """Resolve the caller's session from the Authorization header or cookie."""

    cookie_token = request.cookies.get(_config.session_cookie_name())
    token = extract_session_token(authorization, cookie_token)
    if token is None:
        raise UnauthorizedError()

    user_payload = get_user_from_bearer_token(token)
    session = session_from_user_payload(user_payload, token)
    if not session.email:
        logger.info("session_without_email user_id=%s", session.user.id)
        raise UnauthorizedError()
    return session


async def _read_raw_body(request: Request) -> bytes:
    return await request.body()


def _checkout_tier_from_body(body: bytes) -> str | None:
    """Return the requested tier, or None when the body carries no usable tier."""

    try:
        payload = json.loads(body) if body else {}
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    try:
        return CheckoutRequest.model_validate(payload).tier
    except ValidationError:
        return None


def _run_billing_flow(operation: str, flow: Callable[[], _T]) -> _T:
    """Run one request flow, converting unexpected failures to a generic error."""

    try:
        return flow()
    except ExternalServiceError as exc:
        logger.error(
            "billing_flow_failed operation=%s retryable=%s error=%s",
            operation,
            exc.retryable,
            exc,
        )
        raise
    except BillingServiceError:
        raise
    except Exception as exc:
        logger.exception("billing_flow_unexpected_error operation=%s", operation)
        raise ExternalServiceError(type(exc).__name__, operation=operation) from exc


app = FastAPI(title="Finance App Billing API")

ALLOW_ORIGINS = _config.cors_allow_origins()


@app.middleware("http")
async def log_http_requests(request: Request, call_next):
    """Log incoming requests, HTTP status codes and unexpected errors."""

    logger.info("http_request_received method=%s path=%s", request.method, request.url.path)
    try:
        response = await call_next(request)
    except Exception:
        logger.exception(
            "http_request_failed method=%s path=%s",
            request.method,
            request.url.path,
        )
        raise

    logger.info(
        "http_response_sent method=%s path=%s status_code=%s",
        request.method,
        request.url.path,
        response.status_code,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger.info("cors_allow_origins=%s", ALLOW_ORIGINS)


@app.exception_handler(BillingServiceError)
async def handle_billing_error(request: Request, exc: BillingServiceError) -> JSONResponse:
    """Render taxonomy errors as ``{"error": message}``."""

    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(WebhookProcessingError)
async def handle_webhook_processing_error(request: Request, exc: WebhookProcessingError) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "error": "Webhook processing failed",
            "eventId": exc.event.id,
            "eventType": exc.event.type,
        },
    )


@app.exception_handler(Exception)
async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
    """Return a JSON 500 response for unhandled exceptions."""

    logger.exception(
        "unhandled_exception method=%s path=%s exception_type=%s",
        request.method,
        request.url.path,
        type(exc).__name__,
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/health")
def health() -> dict[str, str]:
    """Healthcheck endpoint."""

    return {"status": "ok"}


@app.post("/api/subscriptions/create-portal")
def create_portal(request: Request, authorization: str | None = Header(default=None)) -> dict[str, Any]:
    """Return a hosted billing portal URL for the authenticated user."""

    service = get_billing_service()
    result = _run_billing_flow(
        "create_portal",
        lambda: service.create_portal(lambda: _resolve_authenticated_session(authorization, request)),
    )
    return result.model_dump(by_alias=True)


@app.post("/api/subscriptions/create-checkout")
def create_checkout(
    request: Request,
    body: bytes = Depends(_read_raw_body),
    authorization: str | None = Header(default=None),
) -> dict[str, Any]:
    """Return a checkout URL for upgrading to a paid tier."""

    service = get_billing_service()
    result = _run_billing_flow(
        "create_checkout",
        lambda: service.create_checkout(
            lambda: _resolve_authenticated_session(authorization, request),
            lambda: _checkout_tier_from_body(body),
        ),
    )
    return result.model_dump(by_alias=True)


@app.get("/api/subscriptions/status")
def subscription_status(request: Request, authorization: str | None = Header(default=None)) -> dict[str, Any]:
    """Return the authenticated user's subscription tier and limits."""

    service = get_billing_service()
    result = _run_billing_flow(
        "subscription_status",
        lambda: service.subscription_status(lambda: _resolve_authenticated_session(authorization, request)),
    )
    return result.model_dump(by_alias=True, mode="json")


@app.post("/api/subscriptions/webhook")
async def stripe_webhook(request: Request) -> dict[str, Any]:
    """Verify and dispatch a billing provider webhook event."""

    service = get_webhook_service()
    body = await request.body()
    event = service.verify(body, request.headers.get("stripe-signature"))
    service.dispatch(event)
    return {"received": True, "eventId": event.id}
