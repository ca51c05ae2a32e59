"""Bill issuance: meter reading -> bill, ledger update and events."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import NamedTuple

from src.schemas.billing import ZERO, Bill, MeterReading
from src.schemas.ledger import BillAdjustment, LedgerState
from src.services import collections
from src.services.account_locks import AccountLocks
from src.services.charge_calculator import ChargeCalculator, money
from src.services.config import BillingSettings, get_settings
from src.services.errors import (
    BillingError,
    DuplicateBillingPeriod,
    InvalidReading,
    LedgerWriteFailed,
    StoreUnavailable,
)
from src.services.events import (
    BillCreated,
    BillingEvent,
    DisconnectionRisk,
    EventSink,
    NullEventSink,
    OverpaymentRecorded,
)
from src.services.ledger_service import (
    LedgerService,
    absorb_overpayment,
    outstanding_total,
    summarize_bills,
    unpaid_count,
)
from src.services.store import Store, StoreReader, WriteOperation, write_with_retries

logger = logging.getLogger(__name__)


class BillPlan(NamedTuple):
    """Everything one bill issuance writes, plus the events it emits after commit."""

    bill: Bill
    ledger: LedgerState
    operations: list[WriteOperation]
    events: list[BillingEvent]

    @property
    def account_id(self) -> str:
        return self.bill.account_id


class BillEngine:
    """Turn meter readings into bills and keep the account ledger in step."""

    def __init__(
        self,
        store: Store,
        calculator: ChargeCalculator | None = None,
        ledger_service: LedgerService | None = None,
        locks: AccountLocks | None = None,
        events: EventSink | None = None,
        settings: BillingSettings | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.calculator = calculator or ChargeCalculator.from_settings(self.settings)
        self.ledger_service = ledger_service or LedgerService(store)
        self.locks = locks or AccountLocks()
        self.events = events or NullEventSink()

    async def prepare_bill(
        self, reading: MeterReading, reader: StoreReader | None = None
    ) -> BillPlan:
        """Compute a bill and the ledger post-state without writing anything.

        The caller must hold the account's exclusion key.

        Args:
            reading: Meter reading closing the billing period
            reader: View to read through (defaults to the store)

        Returns:
            BillPlan

        Raises:
            InvalidReading: Missing value or no positive consumption
            UnknownAccount: No such account
            LedgerWriteFailed: A payment application for the account is unfinished
            DuplicateBillingPeriod: The period is already billed
        """
        reader = reader or self.store
        account_id = reading.account_id
        consumption = reading.consumption
        if consumption is None:
            raise InvalidReading(
                f"Reading for {reading.billing_period} is missing a meter value",
                account_id=account_id,
            )
        if consumption <= 0:
            raise InvalidReading(
                f"No billable consumption ({consumption}) for {reading.billing_period}",
                account_id=account_id,
            )

        account = await self.ledger_service.load_account(account_id, reader)

        pending = await self.ledger_service.pending_journal(account_id, reader)
        if pending is not None:
            raise LedgerWriteFailed(
                f"Payment {pending.reference_number} is not fully applied; retry it first",
                account_id=account_id,
            )

        existing = await reader.query(
            collections.bills(account_id),
            lambda data: data.get("billing_period") == reading.billing_period,
        )
        if existing:
            raise DuplicateBillingPeriod(
                f"Bill {existing[0].id} already covers {reading.billing_period}",
                account_id=account_id,
            )

        prior_bills = await self.ledger_service.load_bills(account_id, reader)
        ledger = await self.ledger_service.load(account_id, reader)

        breakdown = self.calculator.compute(consumption, account.is_senior)
        absorption = absorb_overpayment(
            breakdown, ledger.overpool_amount, self.calculator.penalty_rate
        )
        arrears = outstanding_total(prior_bills)

        highest_issued = prior_bills[-1].sequence_number if prior_bills else 0
        if highest_issued != ledger.last_sequence_number:
            logger.warning(
                "Sequence counter of %s is %d but highest bill is %d",
                account_id,
                ledger.last_sequence_number,
                highest_issued,
            )
        sequence_number = max(ledger.last_sequence_number, highest_issued) + 1

        bill = Bill(
            account_id=account_id,
            sequence_number=sequence_number,
            bill_number=str(sequence_number).zfill(self.settings.bill_number_width),
            billing_period=reading.billing_period,
            due_date=reading.due_date,
            consumption=consumption,
            previous_reading=reading.previous_value,
            current_reading=reading.current_value,
            charge=breakdown,
            arrears_at_issue=arrears,
            overpayment_applied=absorption.applied,
            amount_before_penalty=absorption.amount_before_penalty,
            penalty_assessed=absorption.penalty,
            original_amount=absorption.total_due,
            remaining_amount=absorption.total_due,
            issued_at=datetime.now(timezone.utc),
        )
        bill.refresh_status()

        operations = []
        if absorption.applied > 0:
            # Each bill's held excess is absorbed once; the new bill holds what is left
            for prior in prior_bills:
                if prior.overpayment_held > 0:
                    prior.overpayment_held = ZERO
                    operations.append(self._bill_write(prior))
            bill.overpayment_held = absorption.remaining_pool

        all_bills = [*prior_bills, bill]
        ledger.overpool_amount = absorption.remaining_pool
        ledger.last_reading = reading.current_value
        ledger.last_sequence_number = sequence_number
        summarize_bills(ledger, all_bills)

        operations.insert(0, self._bill_write(bill))
        operations.append(WriteOperation(collections.LEDGERS, account_id, ledger.to_document()))

        events: list[BillingEvent] = [
            BillCreated(
                account_id=account_id,
                billing_period=bill.billing_period,
                due_date=bill.due_date,
                overpayment_applied=money(bill.overpayment_applied),
                bill_number=bill.bill_number,
                total_due=money(bill.original_amount),
            )
        ]
        unpaid = unpaid_count(all_bills)
        if unpaid >= self.settings.disconnection_threshold:
            events.append(DisconnectionRisk(account_id=account_id, unpaid_bills=unpaid))

        return BillPlan(bill=bill, ledger=ledger, operations=operations, events=events)

    async def create_bill(self, reading: MeterReading) -> Bill:
        """Issue one bill outside a batch.

        Raises:
            StoreUnavailable: The bill or ledger could not be persisted
            (plus everything prepare_bill raises)
        """
        async with self.locks.hold(reading.account_id):
            plan = await self.prepare_bill(reading)
            failures = await write_with_retries(
                self.store, plan.operations, self.settings.bulk_write_retries
            )
            if failures:
                await self._repair_after_failure(plan.account_id)
                raise StoreUnavailable(
                    f"Bill {plan.bill.bill_number} not persisted: {failures[0].error}",
                    account_id=plan.account_id,
                )

        logger.info(
            "Issued bill %s for %s (%s): %s",
            plan.bill.bill_number,
            plan.account_id,
            plan.bill.billing_period,
            money(plan.bill.original_amount),
        )
        await self.events.publish_all(plan.events)
        return plan.bill

    async def issue_credit(
        self, account_id: str, bill_number: str, amount: Decimal, reason: str
    ) -> BillAdjustment:
        """Credit an issued bill without touching its original amount.

        The credit reduces the bill's remaining amount; any part exceeding it goes
        to the overpayment pool.

        Raises:
            ValueError: Non-positive amount
            BillingError: Bill not found
            UnknownAccount, LedgerWriteFailed, StoreUnavailable
        """
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive: {amount}")

        async with self.locks.hold(account_id):
            await self.ledger_service.load_account(account_id)
            pending = await self.ledger_service.pending_journal(account_id)
            if pending is not None:
                raise LedgerWriteFailed(
                    f"Payment {pending.reference_number} is not fully applied; retry it first",
                    account_id=account_id,
                )

            bills = await self.ledger_service.load_bills(account_id)
            bill = next((b for b in bills if b.bill_number == bill_number), None)
            if bill is None:
                raise BillingError(f"Bill {bill_number} not found", account_id=account_id)

            to_bill = min(amount, bill.remaining_amount)
            to_overpool = amount - to_bill
            bill.remaining_amount -= to_bill
            bill.credits_applied += to_bill
            bill.overpayment_held += to_overpool
            bill.refresh_status()

            existing = await self.ledger_service.load_adjustments(account_id)
            adjustment = BillAdjustment(
                adjustment_id=f"{bill_number}-{len(existing) + 1:04d}",
                account_id=account_id,
                bill_number=bill_number,
                amount=amount,
                reason=reason,
                applied_to_bill=to_bill,
                to_overpool=to_overpool,
                created_at=datetime.now(timezone.utc),
            )

            ledger = await self.ledger_service.load(account_id)
            ledger.overpool_amount += to_overpool
            summarize_bills(ledger, bills)

            operations = [
                WriteOperation(
                    collections.bill_adjustments(account_id),
                    adjustment.adjustment_id,
                    adjustment.to_document(),
                ),
                self._bill_write(bill),
                WriteOperation(collections.LEDGERS, account_id, ledger.to_document()),
            ]
            failures = await write_with_retries(
                self.store, operations, self.settings.bulk_write_retries
            )
            if failures:
                await self._repair_after_failure(account_id)
                raise StoreUnavailable(
                    f"Credit on bill {bill_number} not persisted: {failures[0].error}",
                    account_id=account_id,
                )

        logger.info(
            "Credited %s on bill %s of %s (%s to pool): %s",
            money(to_bill),
            bill_number,
            account_id,
            money(to_overpool),
            reason,
        )
        if to_overpool > 0:
            await self.events.publish_all(
                [OverpaymentRecorded(account_id=account_id, amount=money(to_overpool))]
            )
        return adjustment

    async def _repair_after_failure(self, account_id: str) -> None:
        try:
            await self.ledger_service.repair(account_id)
        except StoreUnavailable as e:
            logger.error("Could not repair ledger of %s: %s", account_id, e.message)

    @staticmethod
    def _bill_write(bill: Bill) -> WriteOperation:
        return WriteOperation(
            collections.bills(bill.account_id), bill.bill_number, bill.to_document()
        )


__all__ = ["BillEngine", "BillPlan"]
