"""Per-thread asyncio locks."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


class ThreadLocks:
    """Keyed FIFO locks; entries are dropped once no caller holds or waits on them."""

    def __init__(self) -> None:
        self.locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def get_lock(self, key: str) -> asyncio.Lock:
        lock = self.locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self.locks[key] = lock
        return lock

    def is_busy(self, key: str) -> bool:
        return self._users.get(key, 0) > 0

    def _release_user(self, key: str) -> None:
        remaining = self._users.get(key, 0) - 1
        if remaining > 0:
            self._users[key] = remaining
            return
        self._users.pop(key, None)
        self.locks.pop(key, None)

    async def run_exclusive(self, key: str, work: Callable[[], Awaitable[T]]) -> T:
        """Run *work* while holding the lock for *key*; waiters are served in arrival order."""
        lock = self.get_lock(key)
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                return await work()
        finally:
            self._release_user(key)
