"""Bank transaction and ledger entry models."""
import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import ConfigDict, Field, field_validator

from ledgermatch.models.base import LMBaseModel, RecordModel


class Direction(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class EntryKind(str, Enum):
    REVENUE = "revenue"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class EntryStatus(str, Enum):
    UNCLASSIFIED = "unclassified"
    CLASSIFIED = "classified"
    RECONCILED = "reconciled"
    PENDING = "pending"


# Which ledger entry kind can explain a bank movement of a given direction.
COMPATIBLE_KINDS = {
    Direction.CREDIT: EntryKind.REVENUE,
    Direction.DEBIT: EntryKind.EXPENSE,
}


class Transaction(RecordModel):
    """A bank-account movement. Owned by the banking collaborator."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, frozen=True)

    id: str = Field(..., min_length=1)
    date: dt.date
    amount: Decimal
    direction: Direction
    description: str = ""
    counterparty: Optional[str] = None
    category: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def finite_amount(cls, value: Decimal) -> Decimal:
        if not value.is_finite():
            raise ValueError("amount must be a finite number")
        return value

    @property
    def magnitude(self) -> Decimal:
        return abs(self.amount)


class LedgerEntry(RecordModel):
    """A bookkeeping record. The core only ever returns modified copies."""

    id: str = Field(..., min_length=1)
    date: dt.date
    amount: Decimal
    kind: EntryKind
    description: str = ""
    category: Optional[str] = None
    counterparty: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0, le=1)
    status: EntryStatus = EntryStatus.UNCLASSIFIED
    notes: Optional[str] = None
    auto_generated: bool = False

    @field_validator("amount")
    @classmethod
    def finite_amount(cls, value: Decimal) -> Decimal:
        if not value.is_finite():
            raise ValueError("amount must be a finite number")
        return value

    @property
    def magnitude(self) -> Decimal:
        return abs(self.amount)

    def is_compatible_with(self, transaction: Transaction) -> bool:
        return COMPATIBLE_KINDS.get(transaction.direction) == self.kind

    def with_note(self, note: str) -> "LedgerEntry":
        notes = f"{self.notes}\n{note}" if self.notes else note
        return self.model_copy(update={"notes": notes})


class RecordError(LMBaseModel):
    """A single record that could not be parsed and was skipped."""

    record_type: str
    record_id: Optional[str] = None
    position: int = Field(..., ge=0)
    reason: str
