from __future__ import annotations

import asyncio


class InMemoryPersistence:
    """
    Process-local snapshot holder.

    Useful for tests and for embedders that only need crash-consistency within a
    process. Sharing one instance between two stores simulates a restart.
    """

    def __init__(self, initial: bytes | None = None) -> None:
        self._data: bytes | None = initial
        self._lock = asyncio.Lock()
        self.saves = 0

    @property
    def data(self) -> bytes | None:
        return self._data

    async def load(self) -> bytes | None:
        async with self._lock:
            return self._data

    async def save(self, data: bytes) -> bool:
        async with self._lock:
            self._data = bytes(data)
            self.saves += 1
            return True
