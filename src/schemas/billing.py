"""Pydantic schemas for accounts, meter readings and bills."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

ZERO = Decimal("0")


class StoreModel(BaseModel):
    """Base for schemas persisted as store documents.

    Documents are JSON: Decimals serialize as strings so no precision is lost.
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, data: dict[str, Any]):
        return cls.model_validate(data)


class Account(StoreModel):
    """Customer account as seen by the billing core (read-only here)."""

    account_id: str = Field(..., description="Account number")
    name: str = Field("", description="Customer display name")
    is_senior: bool = Field(False, description="Senior citizen discount applies")
    email: str | None = Field(None, description="Receipt email address")
    notify_chat_id: int | None = Field(None, description="Telegram chat for notifications")


class MeterReading(StoreModel):
    """Pair of meter values closing one billing period for an account."""

    account_id: str
    current_value: Decimal | None = None
    previous_value: Decimal | None = None
    due_date: date = Field(..., description="Period end / bill due date")
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900)

    @property
    def billing_period(self) -> str:
        """Uniqueness key of the bill this reading produces ("YYYY-MM")."""
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def consumption(self) -> Decimal | None:
        """Current minus previous value, None when either value is missing."""
        if self.current_value is None or self.previous_value is None:
            return None
        return self.current_value - self.previous_value


class ChargeBreakdown(StoreModel):
    """Charge computed from consumption and the senior flag (immutable)."""

    model_config = ConfigDict(frozen=True)

    water_charge: Decimal
    tax: Decimal
    senior_discount: Decimal
    penalty: Decimal
    subtotal_before_penalty: Decimal
    total_due: Decimal


class BillStatus(str, Enum):
    """Payment state of a bill."""

    PENDING = "pending"
    """Nothing paid yet"""

    PARTIALLY_PAID = "partially_paid"
    """Some of the original amount is still outstanding"""

    PAID = "paid"
    """Remaining amount is zero"""


class Bill(StoreModel):
    """
    Bill issued for one account and billing period.

    original_amount is fixed at issue. remaining_amount only decreases, through
    payments (applied_payments) and correction credits (credits_applied).
    """

    account_id: str
    sequence_number: int = Field(..., ge=1)
    bill_number: str
    billing_period: str
    due_date: date
    consumption: Decimal
    previous_reading: Decimal
    current_reading: Decimal
    charge: ChargeBreakdown

    arrears_at_issue: Decimal = ZERO
    overpayment_applied: Decimal = ZERO
    amount_before_penalty: Decimal
    penalty_assessed: Decimal
    original_amount: Decimal
    remaining_amount: Decimal
    status: BillStatus = BillStatus.PENDING

    overpayment_held: Decimal = Field(
        ZERO, description="Payment excess recorded on this bill, zeroed once absorbed"
    )
    applied_payments: dict[str, Decimal] = Field(
        default_factory=dict, description="Payment reference -> amount applied"
    )
    credits_applied: Decimal = ZERO
    issued_at: datetime | None = None

    @property
    def is_outstanding(self) -> bool:
        return self.remaining_amount > 0

    def refresh_status(self) -> None:
        """Derive status from remaining vs original amount."""
        if self.remaining_amount == 0:
            self.status = BillStatus.PAID
        elif self.remaining_amount < self.original_amount:
            self.status = BillStatus.PARTIALLY_PAID
        else:
            self.status = BillStatus.PENDING

    def check_invariants(self) -> None:
        """Assert the bill's balance equations hold."""
        assert self.remaining_amount >= 0, f"bill {self.bill_number}: negative remaining"
        assert self.remaining_amount <= self.original_amount, (
            f"bill {self.bill_number}: remaining exceeds original"
        )
        paid = sum(self.applied_payments.values(), ZERO)
        assert self.remaining_amount == self.original_amount - paid - self.credits_applied, (
            f"bill {self.bill_number}: remaining does not match payments and credits"
        )
        assert (self.remaining_amount == 0) == (self.status == BillStatus.PAID), (
            f"bill {self.bill_number}: status {self.status.value} with remaining "
            f"{self.remaining_amount}"
        )

    def __repr__(self) -> str:
        return (
            f"<Bill(account_id={self.account_id}, bill_number={self.bill_number}, "
            f"period={self.billing_period}, original={self.original_amount}, "
            f"remaining={self.remaining_amount}, status={self.status.value})>"
        )


__all__ = [
    "Account",
    "Bill",
    "BillStatus",
    "ChargeBreakdown",
    "MeterReading",
    "StoreModel",
    "ZERO",
]
