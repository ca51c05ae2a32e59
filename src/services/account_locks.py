"""Per-account exclusion keys shared by the billing and payment engines."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class AccountLocks:
    """One asyncio.Lock per account id, alive while someone holds or awaits it.

    Bill creation and payment application for the same account serialize on
    this lock; distinct accounts never contend. An entry is dropped when its
    last holder releases it, so the registry only grows with concurrency.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    async def acquire(self, account_id: str) -> None:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        self._users[account_id] = self._users.get(account_id, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._forget(account_id)
            raise

    def release(self, account_id: str) -> None:
        self._locks[account_id].release()
        self._forget(account_id)

    def _forget(self, account_id: str) -> None:
        users = self._users[account_id] - 1
        if users:
            self._users[account_id] = users
        else:
            del self._users[account_id]
            del self._locks[account_id]

    @asynccontextmanager
    async def hold(self, account_id: str) -> AsyncIterator[None]:
        """Hold the account's key for the duration of the block."""
        await self.acquire(account_id)
        try:
            yield
        finally:
            self.release(account_id)

    def is_locked(self, account_id: str) -> bool:
        lock = self._locks.get(account_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


__all__ = ["AccountLocks"]
