"""Unit tests for per-account exclusion keys."""

import asyncio

import pytest

from src.services.account_locks import AccountLocks


@pytest.mark.unit
@pytest.mark.asyncio
async def test_entries_dropped_after_last_release():
    locks = AccountLocks()
    for index in range(100):
        async with locks.hold(f"ACC-{index:03d}"):
            assert len(locks) == 1
    assert len(locks) == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_entry_kept_while_waiters_remain():
    locks = AccountLocks()
    await locks.acquire("A")
    waiter = asyncio.create_task(locks.acquire("A"))
    await asyncio.sleep(0)

    locks.release("A")
    await waiter

    # The waiter now holds the same key a newcomer must wait on
    assert locks.is_locked("A")
    assert len(locks) == 1
    locks.release("A")
    assert len(locks) == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancelled_waiter_is_forgotten():
    locks = AccountLocks()
    await locks.acquire("A")
    waiter = asyncio.create_task(locks.acquire("A"))
    await asyncio.sleep(0)

    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    locks.release("A")

    assert len(locks) == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_hold_serializes_one_account():
    locks = AccountLocks()
    order = []

    async def worker(name):
        async with locks.hold("A"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("first"), worker("second"))

    assert order == ["first-in", "first-out", "second-in", "second-out"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_distinct_accounts_do_not_contend():
    locks = AccountLocks()
    async with locks.hold("A"):
        assert locks.is_locked("A")
        assert not locks.is_locked("B")
        async with locks.hold("B"):
            assert locks.is_locked("B")
    assert not locks.is_locked("A")
