"""
Per-PO serialization inside one process.

Every status-mutating engine call holds the lock for its PO for the whole
unit of work (load, mutate, commit). Across processes the row lock taken by
SELECT ... FOR UPDATE does the same job on PostgreSQL.
"""

import asyncio
from contextlib import asynccontextmanager


class PoLockRegistry:
    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, po_id):
        key = str(po_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


po_locks = PoLockRegistry()
