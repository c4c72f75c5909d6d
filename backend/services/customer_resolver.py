"""Find-or-create resolution of billing customers keyed by email."""

from __future__ import annotations

import hashlib
import logging
import threading
from typing import Protocol

from shared.models import BillingCustomer, CustomerMetadata


logger = logging.getLogger(__name__)


class CustomerBillingClient(Protocol):
    def find_customer_by_email(self, email: str) -> BillingCustomer | None:
        """Return the customer matching the email exactly, if any."""

    def create_customer(
        self,
        *,
        email: str,
        name: str | None,
        metadata: CustomerMetadata,
        idempotency_key: str | None = None,
    ) -> BillingCustomer:
        """Create a billing customer."""


def normalize_email(email: str) -> str:
    return email.strip().lower()


def customer_idempotency_key(email: str) -> str:
    """Return the deterministic create key shared by every process."""

    digest = hashlib.sha256(normalize_email(email).encode("utf-8")).hexdigest()
    return f"customer-create-{digest[:32]}"


class _KeyedLocks:
    """Reference-counted locks, one per key, dropped when unused."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}

    def acquire(self, key: str) -> threading.Lock:
        with self._guard:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, users + 1)
        lock.acquire()
        return lock

    def release(self, key: str, lock: threading.Lock) -> None:
        lock.release()
        with self._guard:
            _, users = self._locks[key]
            if users <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class CustomerResolver:
    """Resolve the billing customer of an application user.

    Lookups and creations use the normalized email. Resolution is serialized
    per normalized email inside the process, and the provider is re-queried
    once the lock is held. Creation carries an idempotency key so concurrent
    creations from other processes collapse to a single provider record.
    """

    def __init__(self, billing_client: CustomerBillingClient) -> None:
        self._billing_client = billing_client
        self._locks = _KeyedLocks()

    def resolve(self, *, email: str, name: str | None = None) -> BillingCustomer:
        key = normalize_email(email)
        lock = self._locks.acquire(key)
        try:
            existing = self._billing_client.find_customer_by_email(key)
            if existing is not None:
                logger.info("billing_customer_reused customer_id=%s", existing.id)
                return existing

            customer = self._billing_client.create_customer(
                email=key,
                name=name,
                metadata=CustomerMetadata(user_id=email),
                idempotency_key=customer_idempotency_key(key),
            )
            logger.info("billing_customer_created customer_id=%s", customer.id)
            return customer
        finally:
            self._locks.release(key, lock)
