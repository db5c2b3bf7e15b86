import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager
from uuid import UUID


def item_key(inventory_item_id: UUID) -> str:
    return f"item:{inventory_item_id}"


def order_key(order_id: str) -> str:
    return f"order:{order_id}"


class KeyedLocks:
    """
    Registry of asyncio locks keyed by resource (one per inventory item, one per order).

    `acquire(*keys)` takes every requested lock in sorted key order, so two tasks
    locking overlapping key sets can never wait on each other in a cycle.
    Locks are dropped from the registry once no task holds or waits on them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(str(key))
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def acquire(self, *keys: Hashable) -> AsyncIterator[None]:
        ordered = sorted({str(k) for k in keys})
        for k in ordered:
            self._users[k] = self._users.get(k, 0) + 1
            self._locks.setdefault(k, asyncio.Lock())

        held: list[str] = []
        try:
            for k in ordered:
                await self._locks[k].acquire()
                held.append(k)
            yield
        finally:
            for k in reversed(held):
                self._locks[k].release()
            for k in ordered:
                self._users[k] -= 1
                if self._users[k] == 0:
                    del self._users[k]
                    del self._locks[k]
