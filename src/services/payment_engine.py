"""Payment application: verified payment -> bills settled oldest first.

Every application is journaled. The PaymentApplication document holds the
complete planned post-state and is written before any bill or ledger; it is
marked applied only after all of them committed. The payment reference number
keys the journal, so re-processing a payment never applies it twice.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import NamedTuple

from src.schemas.billing import ZERO
from src.schemas.ledger import (
    JournaledWrite,
    JournalStatus,
    Payment,
    PaymentApplication,
    PaymentStatus,
)
from src.services import collections
from src.services.account_locks import AccountLocks
from src.services.charge_calculator import money
from src.services.config import BillingSettings, get_settings
from src.services.errors import (
    BillingError,
    LedgerWriteFailed,
    PaymentNotVerified,
    StoreUnavailable,
)
from src.services.events import (
    BillingEvent,
    DisconnectionCleared,
    EventSink,
    NullEventSink,
    OverpaymentRecorded,
    PaymentRejected,
    PaymentVerified,
)
from src.services.ledger_service import LedgerService, summarize_bills, unpaid_count
from src.services.store import Store, WriteOperation, write_with_retries

logger = logging.getLogger(__name__)


class PaymentOutcome(NamedTuple):
    """Result of applying a payment."""

    journal: PaymentApplication
    already_applied: bool

    @property
    def applied_to_bills(self) -> dict[str, Decimal]:
        return self.journal.applied_to_bills

    @property
    def overpool_credit(self) -> Decimal:
        return self.journal.overpool_credit

    @property
    def remaining_ledger_balance(self) -> Decimal:
        return self.journal.remaining_ledger_balance


class PaymentEngine:
    """Apply verified payments to an account's outstanding bills."""

    def __init__(
        self,
        store: Store,
        ledger_service: LedgerService | None = None,
        locks: AccountLocks | None = None,
        events: EventSink | None = None,
        settings: BillingSettings | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.ledger_service = ledger_service or LedgerService(store)
        self.locks = locks or AccountLocks()
        self.events = events or NullEventSink()

    async def process(self, payment: Payment) -> PaymentOutcome | None:
        """Dispatch a payment on its verification status."""
        if payment.status == PaymentStatus.VERIFIED:
            return await self.apply_payment(payment)
        if payment.status == PaymentStatus.REJECTED:
            await self.reject_payment(payment, payment.rejection_reason)
            return None
        raise PaymentNotVerified(
            f"Payment {payment.reference_number} is still pending verification",
            account_id=payment.account_id,
        )

    async def apply_payment(self, payment: Payment) -> PaymentOutcome:
        """Apply a verified payment to the account's bills, oldest first.

        Args:
            payment: Verified payment

        Returns:
            PaymentOutcome (already_applied=True when the reference was applied before)

        Raises:
            PaymentNotVerified: Payment is not verified
            ValueError: Negative amount
            UnknownAccount: No such account
            LedgerWriteFailed: Post-state not fully written, or another payment of the
                account is; retry that payment
        """
        if payment.status != PaymentStatus.VERIFIED:
            raise PaymentNotVerified(
                f"Payment {payment.reference_number} is {payment.status.value}",
                account_id=payment.account_id,
            )
        if payment.amount < 0:
            raise ValueError(f"Payment amount must not be negative: {payment.amount}")

        account_id = payment.account_id
        async with self.locks.hold(account_id):
            await self.ledger_service.load_account(account_id)

            journal = await self._load_journal(account_id, payment.reference_number)
            if journal is not None and journal.status == JournalStatus.APPLIED:
                logger.info(
                    "Payment %s of %s already applied, skipping",
                    payment.reference_number,
                    account_id,
                )
                return PaymentOutcome(journal=journal, already_applied=True)

            pending = await self.ledger_service.pending_journal(account_id)
            if pending is not None and pending.reference_number != payment.reference_number:
                raise LedgerWriteFailed(
                    f"Payment {pending.reference_number} is not fully applied; retry it first",
                    account_id=account_id,
                )

            events: list[BillingEvent] = []
            if journal is None:
                journal, events = await self._plan(payment)
                await self._put_journal(journal)
            else:
                logger.warning(
                    "Retrying unfinished application of payment %s for %s",
                    payment.reference_number,
                    account_id,
                )

            operations = [
                WriteOperation(write.collection, write.doc_id, write.data)
                for write in journal.writes
            ]
            failures = await write_with_retries(
                self.store, operations, self.settings.bulk_write_retries
            )
            if failures:
                raise LedgerWriteFailed(
                    f"Payment {payment.reference_number}: {len(failures)} writes failed "
                    f"({failures[0].error})",
                    account_id=account_id,
                )

            journal.status = JournalStatus.APPLIED
            journal.applied_at = datetime.now(timezone.utc)
            await self._put_journal(journal)

        logger.info(
            "Applied payment %s of %s to %s: %d bills, %s to pool, %s still due",
            payment.reference_number,
            money(payment.amount),
            account_id,
            len(journal.applied_to_bills),
            money(journal.overpool_credit),
            money(journal.remaining_ledger_balance),
        )

        events.insert(
            0,
            PaymentVerified(
                account_id=account_id,
                amount=money(payment.amount),
                remaining_ledger_balance=money(journal.remaining_ledger_balance),
                reference_number=payment.reference_number,
            ),
        )
        if journal.overpool_credit > 0:
            events.insert(
                1, OverpaymentRecorded(account_id=account_id, amount=money(journal.overpool_credit))
            )
        await self.events.publish_all(events)
        return PaymentOutcome(journal=journal, already_applied=False)

    async def reject_payment(self, payment: Payment, reason: str | None = None) -> Payment:
        """Mark a payment rejected; the ledger is never touched.

        Raises:
            BillingError: The payment was already applied
        """
        account_id = payment.account_id
        async with self.locks.hold(account_id):
            journal = await self._load_journal(account_id, payment.reference_number)
            if journal is not None:
                raise BillingError(
                    f"Payment {payment.reference_number} is already applied to the ledger",
                    account_id=account_id,
                )
            rejected = payment.model_copy(
                update={"status": PaymentStatus.REJECTED, "rejection_reason": reason}
            )
            try:
                await self.store.put(
                    collections.payments(account_id),
                    payment.reference_number,
                    rejected.to_document(),
                )
            except StoreUnavailable as e:
                logger.error(
                    "Could not record rejection of payment %s: %s",
                    payment.reference_number,
                    e.message,
                )
                raise

        logger.info("Rejected payment %s of %s: %s", payment.reference_number, account_id, reason)
        await self.events.publish_all(
            [
                PaymentRejected(
                    account_id=account_id,
                    reference_number=payment.reference_number,
                    reason=reason,
                )
            ]
        )
        return rejected

    async def _plan(self, payment: Payment) -> tuple[PaymentApplication, list[BillingEvent]]:
        """Build the journal (complete post-state) for a first application."""
        account_id = payment.account_id
        bills = await self.ledger_service.load_bills(account_id)
        ledger = await self.ledger_service.load(account_id)
        unpaid_before = unpaid_count(bills)

        remaining = payment.amount
        applied_to_bills: dict[str, Decimal] = {}
        touched = []
        last_settled = None
        for bill in bills:
            if remaining <= 0:
                break
            if not bill.is_outstanding:
                continue
            paid = min(remaining, bill.remaining_amount)
            bill.remaining_amount -= paid
            bill.applied_payments[payment.reference_number] = (
                bill.applied_payments.get(payment.reference_number, ZERO) + paid
            )
            bill.refresh_status()
            bill.check_invariants()
            applied_to_bills[bill.bill_number] = paid
            touched.append(bill)
            remaining -= paid
            if not bill.is_outstanding:
                last_settled = bill

        excess = remaining
        if excess > 0:
            ledger.overpool_amount += excess
            holder = last_settled or (bills[-1] if bills else None)
            if holder is not None:
                holder.overpayment_held += excess
                if holder not in touched:
                    touched.append(holder)

        summarize_bills(ledger, bills)
        now = datetime.now(timezone.utc)
        applied_payment = payment.model_copy(update={"applied_at": now})

        writes = [
            JournaledWrite(
                collection=collections.bills(account_id),
                doc_id=bill.bill_number,
                data=bill.to_document(),
            )
            for bill in touched
        ]
        writes.append(
            JournaledWrite(
                collection=collections.LEDGERS, doc_id=account_id, data=ledger.to_document()
            )
        )
        writes.append(
            JournaledWrite(
                collection=collections.payments(account_id),
                doc_id=payment.reference_number,
                data=applied_payment.to_document(),
            )
        )

        journal = PaymentApplication(
            account_id=account_id,
            reference_number=payment.reference_number,
            amount=payment.amount,
            writes=writes,
            applied_to_bills=applied_to_bills,
            overpool_credit=excess,
            remaining_ledger_balance=ledger.current_amount_due,
            created_at=now,
        )

        events: list[BillingEvent] = []
        threshold = self.settings.disconnection_threshold
        if unpaid_before >= threshold > unpaid_count(bills):
            events.append(DisconnectionCleared(account_id=account_id))
        return journal, events

    async def _load_journal(
        self, account_id: str, reference_number: str
    ) -> PaymentApplication | None:
        document = await self.store.get(
            collections.payment_applications(account_id), reference_number
        )
        if document is None:
            return None
        return PaymentApplication.from_document(document.data)

    async def _put_journal(self, journal: PaymentApplication) -> None:
        try:
            await self.store.put(
                collections.payment_applications(journal.account_id),
                journal.reference_number,
                journal.to_document(),
            )
        except StoreUnavailable as e:
            raise LedgerWriteFailed(
                f"Journal of payment {journal.reference_number} not written: {e.message}",
                account_id=journal.account_id,
            ) from e


__all__ = ["PaymentEngine", "PaymentOutcome"]
