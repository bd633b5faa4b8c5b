"""In-process coordination for group ledgers."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class GroupLocks:
    """One ``asyncio.Lock`` per group id.

    Expense mutations and settlement regeneration for the same group run one
    at a time; different groups never wait on each other.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._holders: dict[int, int] = {}

    def get(self, group_id: int) -> asyncio.Lock:
        lock = self._locks.get(group_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[group_id] = lock
        return lock

    def is_locked(self, group_id: int) -> bool:
        lock = self._locks.get(group_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, group_id: int) -> AsyncIterator[None]:
        lock = self.get(group_id)
        self._holders[group_id] = self._holders.get(group_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[group_id] -= 1
            if not self._holders[group_id]:
                self._holders.pop(group_id, None)
                self._locks.pop(group_id, None)

    def __len__(self) -> int:
        return len(self._locks)


group_locks = GroupLocks()
