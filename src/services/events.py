"""Domain events produced by the billing engines and the sinks that receive them."""

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, NamedTuple, Union

logger = logging.getLogger(__name__)


class DisconnectionRisk(NamedTuple):
    """Account has reached the unpaid-bill threshold after a bill was issued."""

    account_id: str
    unpaid_bills: int


class BillCreated(NamedTuple):
    account_id: str
    billing_period: str
    due_date: date
    overpayment_applied: Decimal
    bill_number: str
    total_due: Decimal


class PaymentVerified(NamedTuple):
    account_id: str
    amount: Decimal
    remaining_ledger_balance: Decimal
    reference_number: str


class PaymentRejected(NamedTuple):
    account_id: str
    reference_number: str
    reason: str | None


class OverpaymentRecorded(NamedTuple):
    account_id: str
    amount: Decimal


class DisconnectionCleared(NamedTuple):
    """Unpaid bills dropped below the threshold after a payment."""

    account_id: str


BillingEvent = Union[
    DisconnectionRisk,
    BillCreated,
    PaymentVerified,
    PaymentRejected,
    OverpaymentRecorded,
    DisconnectionCleared,
]


class EventSink:
    """Receiver of billing events.

    Subclasses override publish(). Engines call publish_all(), which never
    raises: a failing sink must not undo or abort committed ledger work.
    """

    async def publish(self, event: BillingEvent) -> None:
        raise NotImplementedError

    async def publish_all(self, events: Iterable[BillingEvent]) -> None:
        for event in events:
            try:
                await self.publish(event)
            except Exception:
                logger.exception(
                    "Failed to publish %s for account %s",
                    type(event).__name__,
                    event.account_id,
                )


class CollectingEventSink(EventSink):
    """Keeps published events in memory."""

    def __init__(self):
        self.events: list[BillingEvent] = []

    async def publish(self, event: BillingEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> list:
        return [event for event in self.events if isinstance(event, event_type)]


class NullEventSink(EventSink):
    """Discards every event."""

    async def publish(self, event: BillingEvent) -> None:
        return None


__all__ = [
    "BillCreated",
    "BillingEvent",
    "CollectingEventSink",
    "DisconnectionCleared",
    "DisconnectionRisk",
    "EventSink",
    "NullEventSink",
    "OverpaymentRecorded",
    "PaymentRejected",
    "PaymentVerified",
]
