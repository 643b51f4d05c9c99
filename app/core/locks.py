import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator


class KeyedLocks:
    """Per-key asyncio locks serializing read-then-write on one entity.

    Locks are held in a weak mapping so idle keys are dropped once no
    coroutine references them. Process-local only.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._get(key)
        async with lock:
            yield

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()
