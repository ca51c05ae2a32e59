"""Pydantic document schemas for the billing ledger."""

from src.schemas.billing import (
    Account,
    Bill,
    BillStatus,
    ChargeBreakdown,
    MeterReading,
    StoreModel,
)
from src.schemas.ledger import (
    BillAdjustment,
    JournaledWrite,
    JournalStatus,
    LedgerState,
    Payment,
    PaymentApplication,
    PaymentStatus,
)

__all__ = [
    "Account",
    "Bill",
    "BillAdjustment",
    "BillStatus",
    "ChargeBreakdown",
    "JournaledWrite",
    "JournalStatus",
    "LedgerState",
    "MeterReading",
    "Payment",
    "PaymentApplication",
    "PaymentStatus",
    "StoreModel",
]
