"""Error taxonomy for the billing request flows."""

from __future__ import annotations


class BillingServiceError(Exception):
    """Base error carrying the HTTP status and the public message."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.public_message
        super().__init__(self.message)


class ConfigurationError(BillingServiceError):
    """Raised when a required external client or setting is missing."""

    status_code = 500
    public_message = "Stripe not configured"


class UnauthorizedError(BillingServiceError):
    """Raised when a request does not resolve to a session with an email."""

    status_code = 401
    public_message = "Unauthorized"


class InvalidRequestError(BillingServiceError):
    status_code = 400
    public_message = "Bad request"


class ExternalServiceError(BillingServiceError):
    """Raised when the billing provider fails or answers unexpectedly.

    The public message never carries provider details; ``retryable`` tells
    whether the same call may succeed later.
    """

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, detail: str, *, retryable: bool = False, operation: str | None = None) -> None:
        super().__init__(self.public_message)
        self.detail = detail
        self.retryable = retryable
        self.operation = operation

    def __str__(self) -> str:
        return f"{self.operation or 'billing'}: {self.detail}"
