"""Per-job mutual exclusion for read-modify-write operations."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class JobLockRegistry:
    """
    One ``asyncio.Lock`` per job id.

    Serializes cycles, extensions, cancellation and finalization on the
    same job within one process. Locks are created on first use and
    dropped once nobody holds or waits on them.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, job_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(job_id, asyncio.Lock())
        self._waiters[job_id] = self._waiters.get(job_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[job_id] -= 1
            if self._waiters[job_id] == 0:
                del self._waiters[job_id]
                self._locks.pop(job_id, None)

    def is_locked(self, job_id: str) -> bool:
        lock = self._locks.get(job_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


__all__ = ["JobLockRegistry"]
