"""Document factories shared by the test suites."""

from datetime import date
from decimal import Decimal

from src.schemas.billing import Account, Bill, ChargeBreakdown, MeterReading
from src.schemas.ledger import LedgerState, Payment, PaymentStatus
from src.services import collections
from src.services.store import BulkWriteResult, FailedWrite, Store, WriteOperation


async def add_account(store, account_id="ACC-001", is_senior=False, notify_chat_id=None):
    account = Account(
        account_id=account_id,
        name=f"Customer {account_id}",
        is_senior=is_senior,
        notify_chat_id=notify_chat_id,
    )
    await store.put(collections.ACCOUNTS, account_id, account.to_document())
    return account


def make_reading(account_id="ACC-001", previous=0, current=5, month=1, year=2024):
    return MeterReading(
        account_id=account_id,
        previous_value=Decimal(previous),
        current_value=Decimal(current),
        due_date=date(year, month, 28),
        month=month,
        year=year,
    )


def make_payment(
    account_id="ACC-001", amount="100", reference="REF-1", status=PaymentStatus.VERIFIED
):
    return Payment(
        account_id=account_id,
        amount=Decimal(amount),
        reference_number=reference,
        payment_date=date(2024, 2, 1),
        status=status,
    )


async def seed_bills(store, account_id, amounts):
    """Write bills with the given original amounts (oldest first) and a matching ledger."""
    bills = []
    for index, amount in enumerate(amounts, start=1):
        amount = Decimal(amount)
        bill = Bill(
            account_id=account_id,
            sequence_number=index,
            bill_number=str(index).zfill(10),
            billing_period=f"2024-{index:02d}",
            due_date=date(2024, index, 28),
            consumption=Decimal("0"),
            previous_reading=Decimal("0"),
            current_reading=Decimal("0"),
            charge=ChargeBreakdown(
                water_charge=amount,
                tax=Decimal("0"),
                senior_discount=Decimal("0"),
                penalty=Decimal("0"),
                subtotal_before_penalty=amount,
                total_due=amount,
            ),
            amount_before_penalty=amount,
            penalty_assessed=Decimal("0"),
            original_amount=amount,
            remaining_amount=amount,
        )
        await store.put(collections.bills(account_id), bill.bill_number, bill.to_document())
        bills.append(bill)

    total = sum((bill.remaining_amount for bill in bills), Decimal("0"))
    ledger = LedgerState(
        account_id=account_id,
        arrears=total - (bills[-1].remaining_amount if bills else Decimal("0")),
        current_amount_due=total,
        last_sequence_number=len(bills),
        last_reading=Decimal("0") if bills else None,
    )
    await store.put(collections.LEDGERS, account_id, ledger.to_document())
    return bills


class FlakyStore(Store):
    """Wraps a store and fails bulk writes to matching collections.

    `times` is how many bulk write attempts fail per document (None = always).
    """

    def __init__(self, inner: Store, collection_prefix: str, times: int | None = None):
        self.inner = inner
        self.collection_prefix = collection_prefix
        self.times = times
        self.max_operations = inner.max_operations
        self.attempts: dict[tuple[str, str], int] = {}

    def heal(self) -> None:
        self.times = 0

    def _fails(self, op: WriteOperation) -> bool:
        if not op.collection.startswith(self.collection_prefix):
            return False
        seen = self.attempts.get(op.key, 0)
        self.attempts[op.key] = seen + 1
        return self.times is None or seen < self.times

    async def get(self, collection, doc_id):
        return await self.inner.get(collection, doc_id)

    async def query(self, collection, predicate=None):
        return await self.inner.query(collection, predicate)

    async def put(self, collection, doc_id, data):
        await self.inner.put(collection, doc_id, data)

    async def bulk_write(self, operations):
        failing = [op for op in operations if self._fails(op)]
        passing = [op for op in operations if op not in failing]
        result = await self.inner.bulk_write(passing)
        return BulkWriteResult(
            result.committed,
            result.failed + [FailedWrite(op, "injected failure") for op in failing],
        )
