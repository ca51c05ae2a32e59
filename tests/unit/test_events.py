"""Unit tests for event sinks."""

import pytest

from src.services.events import (
    CollectingEventSink,
    DisconnectionCleared,
    EventSink,
    OverpaymentRecorded,
)


class ExplodingSink(EventSink):
    def __init__(self):
        self.attempts = 0

    async def publish(self, event):
        self.attempts += 1
        raise RuntimeError("sink down")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_collecting_sink_filters_by_type():
    sink = CollectingEventSink()
    await sink.publish_all(
        [DisconnectionCleared(account_id="A"), OverpaymentRecorded(account_id="A", amount=1)]
    )

    assert len(sink.events) == 2
    assert sink.of_type(DisconnectionCleared) == [DisconnectionCleared(account_id="A")]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_publish_all_continues_after_failures(caplog):
    sink = ExplodingSink()

    await sink.publish_all([DisconnectionCleared(account_id="A"), DisconnectionCleared("B")])

    assert sink.attempts == 2
    assert "Failed to publish DisconnectionCleared for account A" in caplog.text
