"""Batch bill generation over many meter readings.

Readings are grouped by account. Each account's readings run in order under
the account's exclusion key; distinct accounts run concurrently. Bill plans
are staged into write units no larger than the store's bulk write ceiling.
Reads inside the batch go through an overlay, so an account's later readings
see its earlier, not yet committed bills.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, NamedTuple

from src.schemas.billing import MeterReading
from src.services.account_locks import AccountLocks
from src.services.bill_engine import BillEngine, BillPlan
from src.services.config import BillingSettings, get_settings
from src.services.errors import (
    BillingError,
    DuplicateBillingPeriod,
    InvalidReading,
    StoreUnavailable,
)
from src.services.events import EventSink, NullEventSink
from src.services.logging import batch_context, current_batch_id
from src.services.store import (
    Document,
    Predicate,
    Store,
    StoreReader,
    WriteOperation,
    write_with_retries,
)

logger = logging.getLogger(__name__)


class BatchItemError(NamedTuple):
    """Why one reading did not produce a committed bill."""

    account_id: str
    billing_period: str
    error: str
    skipped: bool


@dataclass
class BatchResult:
    """Outcome counts of one batch run."""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[BatchItemError] = field(default_factory=list)
    batch_id: str = ""

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.skipped


class _WriteUnit:
    """Plans whose writes go to the store together."""

    def __init__(self):
        self.plans: list[BillPlan] = []
        self.operations: dict[tuple[str, str], WriteOperation] = {}
        self.releases: list[str] = []

    def size_with(self, plan: BillPlan) -> int:
        return len(self.operations.keys() | {op.key for op in plan.operations})

    def add(self, plan: BillPlan) -> None:
        self.plans.append(plan)
        for op in plan.operations:
            self.operations[op.key] = op

    def holds(self, account_id: str) -> bool:
        return any(plan.account_id == account_id for plan in self.plans)

    def release_locks(self, locks: AccountLocks) -> None:
        for account_id in self.releases:
            locks.release(account_id)
        self.releases.clear()


class _StagedView(StoreReader):
    """Store reads with staged and in-flight writes layered on top."""

    def __init__(self, store: Store):
        self.store = store
        self.layers: list[_WriteUnit] = []

    def _staged(self, collection: str) -> dict[str, dict]:
        staged = {}
        for unit in self.layers:
            for (op_collection, doc_id), op in unit.operations.items():
                if op_collection == collection:
                    staged[doc_id] = op.data
        return staged

    async def get(self, collection: str, doc_id: str) -> Document | None:
        staged = self._staged(collection)
        if doc_id in staged:
            return Document(doc_id, staged[doc_id])
        return await self.store.get(collection, doc_id)

    async def query(self, collection: str, predicate: Predicate | None = None) -> list[Document]:
        documents = {document.id: document.data for document in await self.store.query(collection)}
        documents.update(self._staged(collection))
        return [
            Document(doc_id, data)
            for doc_id, data in sorted(documents.items())
            if predicate is None or predicate(data)
        ]


class _BatchRun:
    """State of one run_batch call."""

    def __init__(self, runner: "BatchRunner"):
        self.runner = runner
        self.result = BatchResult()
        self.view = _StagedView(runner.store)
        self.unit = _WriteUnit()
        self.view.layers.append(self.unit)
        self.commit_lock = asyncio.Lock()
        self.semaphore = asyncio.Semaphore(runner.settings.max_concurrent_accounts)

    async def run_account(self, account_id: str, readings: list[MeterReading]) -> None:
        async with self.semaphore:
            locks = self.runner.locks
            await locks.acquire(account_id)
            handed_off = False
            try:
                for reading in readings:
                    plan = await self._prepare(reading)
                    if plan is not None:
                        await self.stage(plan)
                async with self.commit_lock:
                    if self.unit.holds(account_id):
                        # Released once the unit holding the account's writes commits
                        self.unit.releases.append(account_id)
                        handed_off = True
            finally:
                if not handed_off:
                    locks.release(account_id)

    async def _prepare(self, reading: MeterReading) -> BillPlan | None:
        try:
            return await self.runner.bill_engine.prepare_bill(reading, reader=self.view)
        except (InvalidReading, DuplicateBillingPeriod) as e:
            logger.warning(
                "Skipping reading of %s for %s: %s",
                reading.account_id,
                reading.billing_period,
                e.message,
            )
            self.result.skipped += 1
            self.result.errors.append(
                BatchItemError(reading.account_id, reading.billing_period, e.message, True)
            )
        except BillingError as e:
            logger.error(
                "Billing failed for %s (%s): %s",
                reading.account_id,
                reading.billing_period,
                e.message,
            )
            self.result.failed += 1
            self.result.errors.append(
                BatchItemError(reading.account_id, reading.billing_period, e.message, False)
            )
        except Exception as e:
            # Malformed stored documents and the like fail only this reading
            logger.exception(
                "Unexpected error billing %s (%s)", reading.account_id, reading.billing_period
            )
            self.result.failed += 1
            self.result.errors.append(
                BatchItemError(reading.account_id, reading.billing_period, str(e), False)
            )
        return None

    async def stage(self, plan: BillPlan) -> None:
        async with self.commit_lock:
            limit = self.runner.store.max_operations
            if self.unit.plans and self.unit.size_with(plan) > limit:
                await self._commit_current()
            self.unit.add(plan)

    async def flush(self) -> None:
        async with self.commit_lock:
            if self.unit.plans:
                await self._commit_current()

    def discard(self) -> None:
        """Drop uncommitted plans and free the accounts waiting on them."""
        if self.unit.plans:
            logger.warning("Discarding %d uncommitted bills", len(self.unit.plans))
        self.unit.release_locks(self.runner.locks)
        self.view.layers.remove(self.unit)
        self.unit = _WriteUnit()
        self.view.layers.append(self.unit)

    async def _commit_current(self) -> None:
        unit = self.unit
        self.unit = _WriteUnit()
        # The committing unit stays visible until its writes are in the store
        self.view.layers.append(self.unit)
        try:
            await self._commit(unit)
        finally:
            self.view.layers.remove(unit)
            unit.release_locks(self.runner.locks)

    async def _commit(self, unit: _WriteUnit) -> None:
        runner = self.runner
        failures = await write_with_retries(
            runner.store, list(unit.operations.values()), runner.settings.bulk_write_retries
        )
        failed_keys = {failure.operation.key: failure.error for failure in failures}

        failed_accounts = set()
        committed = []
        for plan in unit.plans:
            errors = [failed_keys[op.key] for op in plan.operations if op.key in failed_keys]
            if errors:
                failed_accounts.add(plan.account_id)
                self.result.failed += 1
                self.result.errors.append(
                    BatchItemError(plan.account_id, plan.bill.billing_period, errors[0], False)
                )
            else:
                committed.append(plan)
        self.result.succeeded += len(committed)

        logger.info(
            "Committed write unit: %d operations, %d bills, %d failed",
            len(unit.operations),
            len(committed),
            len(unit.plans) - len(committed),
        )

        for account_id in sorted(failed_accounts):
            try:
                await runner.bill_engine.ledger_service.repair(account_id)
            except StoreUnavailable as e:
                logger.error("Could not repair ledger of %s: %s", account_id, e.message)

        for plan in committed:
            await runner.events.publish_all(plan.events)


class BatchRunner:
    """Generate bills for many readings with bounded writes and concurrency."""

    def __init__(
        self,
        bill_engine: BillEngine,
        store: Store | None = None,
        locks: AccountLocks | None = None,
        events: EventSink | None = None,
        settings: BillingSettings | None = None,
    ):
        self.bill_engine = bill_engine
        self.store = store or bill_engine.store
        self.locks = locks or bill_engine.locks
        self.events = events or bill_engine.events or NullEventSink()
        self.settings = settings or bill_engine.settings or get_settings()

    async def run_batch(self, readings: Iterable[MeterReading]) -> BatchResult:
        """Bill every reading.

        Per-reading failures are counted, never raised. Cancellation keeps the
        write units committed so far and drops the rest.

        Returns:
            BatchResult
        """
        groups: dict[str, list[MeterReading]] = {}
        for reading in readings:
            groups.setdefault(reading.account_id, []).append(reading)

        run = _BatchRun(self)
        with batch_context(current_batch_id()) as batch_id:
            run.result.batch_id = batch_id
            logger.info(
                "Starting batch: %d readings across %d accounts",
                sum(len(group) for group in groups.values()),
                len(groups),
            )

            try:
                outcomes = await asyncio.gather(
                    *(run.run_account(account_id, group) for account_id, group in groups.items()),
                    return_exceptions=True,
                )
                await run.flush()
            except asyncio.CancelledError:
                run.discard()
                raise

            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome

            result = run.result
            logger.info(
                "Batch finished: %d succeeded, %d failed, %d skipped",
                result.succeeded,
                result.failed,
                result.skipped,
            )
        return result


__all__ = ["BatchItemError", "BatchResult", "BatchRunner"]
