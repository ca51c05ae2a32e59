"""Pydantic schemas for ledger state, payments and correction entries."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from src.schemas.billing import ZERO, StoreModel


class LedgerState(StoreModel):
    """Per-account aggregate cached over the account's bills.

    Recomputable from bills, payment journals and adjustments; see
    LedgerService.recompute.
    """

    account_id: str
    arrears: Decimal = Field(ZERO, description="Outstanding balance of all but the newest bill")
    overpool_amount: Decimal = Field(ZERO, description="Unapplied payment excess")
    last_reading: Decimal | None = None
    current_amount_due: Decimal = Field(ZERO, description="Outstanding balance of all bills")
    last_sequence_number: int = Field(0, ge=0, description="Last issued bill sequence")
    updated_at: datetime | None = None


class PaymentStatus(str, Enum):
    """Verification state of a payment."""

    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class Payment(StoreModel):
    """Customer payment produced by the verification workflow."""

    account_id: str
    amount: Decimal
    reference_number: str = Field(..., min_length=1)
    payment_date: date
    status: PaymentStatus = PaymentStatus.PENDING
    applied_at: datetime | None = None
    rejection_reason: str | None = None


class JournalStatus(str, Enum):
    """State of a payment application journal entry."""

    PENDING = "pending"
    """Post-state planned, not confirmed written"""

    APPLIED = "applied"
    """Every planned write committed"""


class JournaledWrite(BaseModel):
    """One planned document write, stored verbatim in the journal."""

    collection: str
    doc_id: str
    data: dict[str, Any]


class PaymentApplication(StoreModel):
    """Write-ahead journal of one payment application.

    Keyed by the payment reference number, which doubles as the idempotency key.
    """

    account_id: str
    reference_number: str
    amount: Decimal
    status: JournalStatus = JournalStatus.PENDING
    writes: list[JournaledWrite] = Field(default_factory=list)
    applied_to_bills: dict[str, Decimal] = Field(
        default_factory=dict, description="Bill number -> amount applied"
    )
    overpool_credit: Decimal = ZERO
    remaining_ledger_balance: Decimal = ZERO
    created_at: datetime | None = None
    applied_at: datetime | None = None


class BillAdjustment(StoreModel):
    """Append-only credit correction against an issued bill."""

    adjustment_id: str
    account_id: str
    bill_number: str
    amount: Decimal = Field(..., gt=0)
    reason: str
    applied_to_bill: Decimal = ZERO
    to_overpool: Decimal = ZERO
    created_at: datetime | None = None


__all__ = [
    "BillAdjustment",
    "JournaledWrite",
    "JournalStatus",
    "LedgerState",
    "Payment",
    "PaymentApplication",
    "PaymentStatus",
]
