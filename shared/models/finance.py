"""Core shared schemas for the personal finance domain."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


SPLIT_TOLERANCE = Decimal("0.01")
USER_PREFERENCES_SCHEMA_VERSION = 1


class TransactionSplit(BaseModel):
    """Share of a parent transaction attributed to one category."""

    model_config = ConfigDict(extra="forbid")

    id: str
    transaction_id: str
    amount: Decimal = Field(gt=0)
    category_id: str
    percentage: Decimal = Field(ge=0, le=100)
    description: str | None = None


class Transaction(BaseModel):
    """A booked transaction, optionally split across several categories.

    A parent transaction (``is_parent``) carries at least two splits whose
    amounts add up to ``original_amount`` and whose percentages add up to 100.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    original_amount: Decimal = Field(gt=0)
    description: str = Field(min_length=1)
    is_parent: bool = False
    date: datetime
    category_id: str | None = None
    account_id: str | None = None
    splits: list[TransactionSplit] | None = None

    @model_validator(mode="after")
    def _check_splits(self) -> "Transaction":
        if not self.splits:
            if self.is_parent:
                raise ValueError("a parent transaction requires at least two splits")
            return self

        if not self.is_parent:
            raise ValueError("splits are only allowed on parent transactions")
        if len(self.splits) < 2:
            raise ValueError("a parent transaction requires at least two splits")

        for split in self.splits:
            if split.transaction_id != self.id:
                raise ValueError(f"split {split.id} does not belong to transaction {self.id}")

        amount_total = sum((split.amount for split in self.splits), Decimal("0"))
        if abs(amount_total - self.original_amount) > SPLIT_TOLERANCE:
            raise ValueError("split amounts must sum to the original transaction amount")

        percentage_total = sum((split.percentage for split in self.splits), Decimal("0"))
        if abs(percentage_total - Decimal("100")) > SPLIT_TOLERANCE:
            raise ValueError("split percentages must sum to 100")
        return self


class SplitPart(BaseModel):
    """Requested share of a transaction before ids and percentages are assigned."""

    model_config = ConfigDict(extra="forbid")

    amount: Decimal = Field(gt=0)
    category_id: str
    description: str | None = None


def build_splits(transaction: Transaction, parts: list[SplitPart]) -> Transaction:
    """Return a parent copy of ``transaction`` split according to ``parts``.

    Percentages are derived from each part's amount. Validation of the result
    enforces the split invariants.
    """

    splits = [
        TransactionSplit(
            id=f"{transaction.id}-split-{index}",
            transaction_id=transaction.id,
            amount=part.amount,
            category_id=part.category_id,
            percentage=(part.amount / transaction.original_amount * 100).quantize(Decimal("0.0001")),
            description=part.description,
        )
        for index, part in enumerate(parts, start=1)
    ]
    payload = transaction.model_dump()
    payload.update(is_parent=True, splits=[split.model_dump() for split in splits])
    return Transaction.model_validate(payload)


class Category(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    type: str
    color: str
    is_default: bool = False


class Budget(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    category_id: str
    amount: Decimal = Field(ge=0)
    period: Literal["monthly", "yearly"]
    start_date: date
    is_active: bool = True


class UserPreferences(BaseModel):
    """Versioned user preference schema; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    schema_version: Literal[1] = USER_PREFERENCES_SCHEMA_VERSION
    currency: str = Field(default="USD", min_length=3, max_length=3)
    locale: str = "en-US"
    theme: Literal["light", "dark", "system"] = "system"
    notifications_enabled: bool = True


class User(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    identity_provider_id: str
    email: str
    preferences: UserPreferences = Field(default_factory=UserPreferences)
