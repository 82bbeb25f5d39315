"""Keyed mutual exclusion for strategies, trades and balances.

One asyncio.Lock per key, created on first use and dropped once no task
holds or waits for it. All ticks run on a single event loop, so these locks
serialize overlapping ticks and alerts within one process.
"""

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0  # holders plus waiters


class KeyedLocks:
    """Lazily-created asyncio locks addressed by key.

    Usage:
        locks = KeyedLocks()
        async with locks.hold(("settle", trade_id)):
            ...
        if locks.is_held(strategy_id):
            skip()
    """

    def __init__(self) -> None:
        self._entries: dict[Hashable, _Entry] = {}

    @property
    def active_keys(self) -> int:
        """Number of keys currently held or waited on."""
        return len(self._entries)

    def is_held(self, key: Hashable) -> bool:
        """Return True if some task currently holds the lock for key."""
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Wait for and hold the lock for key."""
        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry()
            self._entries[key] = entry
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]
