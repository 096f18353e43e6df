"""
In-process keyed mutexes.

Mutations on one goal or group goal are serialized by holding the lock for
that entity across the read-modify-write and the commit. Operations touching
several entities take their locks in sorted key order.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, Tuple

logger = logging.getLogger(__name__)

LockKey = Tuple[str, str]


class KeyedLock:
    def __init__(self):
        self._locks: Dict[LockKey, asyncio.Lock] = {}
        self._waiters: Dict[LockKey, int] = {}

    def _get(self, key: LockKey) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
            self._waiters[key] = 0
        return self._locks[key]

    def locked(self, kind: str, entity_id) -> bool:
        lock = self._locks.get((kind, str(entity_id)))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def acquire(self, kind: str, entity_id) -> AsyncIterator[None]:
        async with self.acquire_many([(kind, entity_id)]):
            yield

    @asynccontextmanager
    async def acquire_many(self, keys: Iterable[Tuple[str, object]]) -> AsyncIterator[None]:
        ordered = sorted({(kind, str(entity_id)) for kind, entity_id in keys})
        acquired = []
        try:
            for key in ordered:
                lock = self._get(key)
                self._waiters[key] += 1
                try:
                    await lock.acquire()
                finally:
                    self._waiters[key] -= 1
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                # Drop idle locks
                if self._waiters[key] == 0 and not self._locks[key].locked():
                    del self._locks[key]
                    del self._waiters[key]

    def __len__(self) -> int:
        return len(self._locks)
