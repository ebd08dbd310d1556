from __future__ import annotations

import asyncio
from typing import Optional


class Store:
    """String keys to string values, shared by every client connection.

    Each operation holds the lock for one dictionary access and never across
    network I/O, so a slow client cannot stall the others. Concurrent writers
    to the same key are ordered by lock acquisition; the last one wins.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            self._data[key] = value

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data
