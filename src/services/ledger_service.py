"""Ledger rules and the LedgerState aggregate.

LedgerState caches, per account, the outstanding balances of the account's
bills plus the unapplied overpayment pool. It is the single materialized view
over the bill documents; recompute() rebuilds it from source documents and
repair() writes the rebuilt state back.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, NamedTuple

from src.schemas.billing import ZERO, Account, Bill, ChargeBreakdown
from src.schemas.ledger import (
    BillAdjustment,
    JournalStatus,
    LedgerState,
    PaymentApplication,
)
from src.services import collections
from src.services.errors import UnknownAccount
from src.services.store import Store, StoreReader

logger = logging.getLogger(__name__)

# Fields compared by drift detection
TRACKED_FIELDS = (
    "arrears",
    "overpool_amount",
    "current_amount_due",
    "last_sequence_number",
    "last_reading",
)


class OverpaymentAbsorption(NamedTuple):
    """Result of applying the overpayment pool to a new bill's charge."""

    applied: Decimal
    amount_before_penalty: Decimal
    penalty: Decimal
    remaining_pool: Decimal

    @property
    def total_due(self) -> Decimal:
        return self.amount_before_penalty + self.penalty


class LedgerDrift(NamedTuple):
    """Cached ledger field that disagrees with its recomputed value."""

    field: str
    cached: Any
    recomputed: Any


def absorb_overpayment(
    breakdown: ChargeBreakdown, pool: Decimal, penalty_rate: Decimal
) -> OverpaymentAbsorption:
    """Reduce a bill's payable amount by the overpayment pool.

    The pool reduces the amount before penalty; the penalty is then recomputed
    on what is left. A pool covering the whole amount leaves nothing payable
    and no penalty.

    Args:
        breakdown: Charge of the new bill
        pool: Current overpayment pool of the account
        penalty_rate: Penalty rate applied to the reduced amount

    Returns:
        OverpaymentAbsorption
    """
    base = breakdown.subtotal_before_penalty
    if pool <= 0:
        return OverpaymentAbsorption(ZERO, base, breakdown.penalty, pool)
    if pool >= base:
        return OverpaymentAbsorption(base, ZERO, ZERO, pool - base)
    reduced = base - pool
    return OverpaymentAbsorption(pool, reduced, reduced * penalty_rate, ZERO)


def outstanding_total(bills: list[Bill]) -> Decimal:
    return sum((bill.remaining_amount for bill in bills), ZERO)


def unpaid_count(bills: list[Bill]) -> int:
    return sum(1 for bill in bills if bill.is_outstanding)


def summarize_bills(ledger: LedgerState, bills: list[Bill]) -> None:
    """Set the balance fields of a ledger from the account's bills (oldest first)."""
    ledger.current_amount_due = outstanding_total(bills)
    ledger.arrears = outstanding_total(bills[:-1])
    ledger.updated_at = datetime.now(timezone.utc)


class LedgerService:
    """Load, recompute, repair and audit per-account ledgers."""

    def __init__(self, store: Store):
        self.store = store

    async def load_account(self, account_id: str, reader: StoreReader | None = None) -> Account:
        reader = reader or self.store
        document = await reader.get(collections.ACCOUNTS, account_id)
        if document is None:
            raise UnknownAccount(f"Account {account_id} not found", account_id=account_id)
        return Account.from_document(document.data)

    async def load(self, account_id: str, reader: StoreReader | None = None) -> LedgerState:
        """Cached ledger of the account (an empty ledger if none was written yet)."""
        reader = reader or self.store
        document = await reader.get(collections.LEDGERS, account_id)
        if document is None:
            return LedgerState(account_id=account_id)
        return LedgerState.from_document(document.data)

    async def load_bills(self, account_id: str, reader: StoreReader | None = None) -> list[Bill]:
        """All bills of the account, oldest (lowest sequence number) first."""
        reader = reader or self.store
        documents = await reader.query(collections.bills(account_id))
        bills = [Bill.from_document(document.data) for document in documents]
        return sorted(bills, key=lambda bill: bill.sequence_number)

    async def load_journals(
        self, account_id: str, reader: StoreReader | None = None
    ) -> list[PaymentApplication]:
        reader = reader or self.store
        documents = await reader.query(collections.payment_applications(account_id))
        return [PaymentApplication.from_document(document.data) for document in documents]

    async def load_adjustments(
        self, account_id: str, reader: StoreReader | None = None
    ) -> list[BillAdjustment]:
        reader = reader or self.store
        documents = await reader.query(collections.bill_adjustments(account_id))
        return [BillAdjustment.from_document(document.data) for document in documents]

    async def pending_journal(
        self, account_id: str, reader: StoreReader | None = None
    ) -> PaymentApplication | None:
        """A payment application whose post-state is not confirmed written, if any."""
        reader = reader or self.store
        documents = await reader.query(
            collections.payment_applications(account_id),
            lambda data: data.get("status") == JournalStatus.PENDING.value,
        )
        if not documents:
            return None
        return PaymentApplication.from_document(documents[0].data)

    async def recompute(self, account_id: str) -> LedgerState:
        """Rebuild the account's ledger from bills, applied journals and adjustments."""
        bills = await self.load_bills(account_id)
        journals = [
            journal
            for journal in await self.load_journals(account_id)
            if journal.status == JournalStatus.APPLIED
        ]
        adjustments = await self.load_adjustments(account_id)

        applied_refs = {journal.reference_number for journal in journals}
        received = sum((journal.amount for journal in journals), ZERO)
        applied_to_bills = sum(
            (
                amount
                for bill in bills
                for reference, amount in bill.applied_payments.items()
                if reference in applied_refs
            ),
            ZERO,
        )
        absorbed = sum((bill.overpayment_applied for bill in bills), ZERO)
        credited_to_pool = sum((adjustment.to_overpool for adjustment in adjustments), ZERO)

        ledger = LedgerState(
            account_id=account_id,
            overpool_amount=received - applied_to_bills + credited_to_pool - absorbed,
            last_reading=bills[-1].current_reading if bills else None,
            last_sequence_number=bills[-1].sequence_number if bills else 0,
        )
        summarize_bills(ledger, bills)
        return ledger

    async def detect_drift(self, account_id: str) -> list[LedgerDrift]:
        """Fields where the cached ledger disagrees with the recomputed one."""
        cached = await self.load(account_id)
        recomputed = await self.recompute(account_id)
        return [
            LedgerDrift(field, getattr(cached, field), getattr(recomputed, field))
            for field in TRACKED_FIELDS
            if getattr(cached, field) != getattr(recomputed, field)
        ]

    async def repair(self, account_id: str) -> LedgerState:
        """Overwrite the cached ledger with the recomputed one."""
        drift = await self.detect_drift(account_id)
        ledger = await self.recompute(account_id)
        if drift:
            logger.warning(
                "Ledger drift for account %s: %s",
                account_id,
                ", ".join(f"{d.field} {d.cached} -> {d.recomputed}" for d in drift),
            )
        await self.store.put(collections.LEDGERS, account_id, ledger.to_document())
        return ledger

    async def check_conservation(self, account_id: str) -> list[str]:
        """Audit the account's money flows.

        Per bill: remaining equals original minus payments minus credits.
        Per account: money received equals money applied to bills plus the pool
        plus pool absorbed by bills, minus credits routed to the pool.

        Returns:
            Violation descriptions (empty when the books balance)
        """
        violations = []
        bills = await self.load_bills(account_id)
        ledger = await self.load(account_id)
        journals = [
            journal
            for journal in await self.load_journals(account_id)
            if journal.status == JournalStatus.APPLIED
        ]
        adjustments = await self.load_adjustments(account_id)

        for bill in bills:
            paid = sum(bill.applied_payments.values(), ZERO)
            if bill.remaining_amount != bill.original_amount - paid - bill.credits_applied:
                violations.append(
                    f"bill {bill.bill_number}: remaining {bill.remaining_amount} != "
                    f"original {bill.original_amount} - paid {paid} - "
                    f"credits {bill.credits_applied}"
                )
            if bill.remaining_amount < 0:
                violations.append(f"bill {bill.bill_number}: negative remaining")

        received = sum((journal.amount for journal in journals), ZERO)
        settled = sum(
            (bill.original_amount - bill.remaining_amount - bill.credits_applied for bill in bills),
            ZERO,
        )
        absorbed = sum((bill.overpayment_applied for bill in bills), ZERO)
        credited_to_pool = sum((adjustment.to_overpool for adjustment in adjustments), ZERO)
        accounted = settled + ledger.overpool_amount + absorbed - credited_to_pool
        if received != accounted:
            violations.append(
                f"account {account_id}: received {received} != accounted {accounted}"
            )

        if violations:
            logger.error("Conservation check failed for %s: %s", account_id, violations)
        return violations


__all__ = [
    "LedgerDrift",
    "LedgerService",
    "OverpaymentAbsorption",
    "absorb_overpayment",
    "outstanding_total",
    "summarize_bills",
    "unpaid_count",
]
