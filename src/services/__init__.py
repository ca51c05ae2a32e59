"""Billing computation and account-ledger services."""

from src.services.account_locks import AccountLocks
from src.services.batch_runner import BatchResult, BatchRunner
from src.services.bill_engine import BillEngine, BillPlan
from src.services.charge_calculator import ChargeCalculator, money
from src.services.ledger_service import LedgerService
from src.services.payment_engine import PaymentEngine, PaymentOutcome
from src.services.rate_schedule import RateSchedule
from src.services.store import Store, StoreReader

__all__ = [
    "AccountLocks",
    "BatchResult",
    "BatchRunner",
    "BillEngine",
    "BillPlan",
    "ChargeCalculator",
    "LedgerService",
    "PaymentEngine",
    "PaymentOutcome",
    "RateSchedule",
    "Store",
    "StoreReader",
    "money",
]
