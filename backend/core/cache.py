import logging
import time
from collections.abc import Callable, Hashable
from typing import Any

logger = logging.getLogger("inventory.cache")

MISSING = object()


class TTLCache:
    """
    Process-wide read cache keyed by (resource_type, key).

    One instance is created per app (see `main.lifespan`) and handed to the
    services that need it. Entries expire after `ttl_seconds`; writers call
    `invalidate()` for the resource they changed.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[tuple[str, Hashable], tuple[float, Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, resource_type: str, key: Hashable, default: Any = MISSING) -> Any:
        entry = self._entries.get((resource_type, key))
        if entry is None:
            return default
        expires_at, value = entry
        if expires_at <= self._clock():
            del self._entries[(resource_type, key)]
            return default
        return value

    def set(self, resource_type: str, key: Hashable, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entries[(resource_type, key)] = (self._clock() + self.ttl_seconds, value)

    def invalidate(self, resource_type: str, key: Hashable = MISSING) -> int:
        """Drop one key, or every key of `resource_type` when no key is given."""
        if key is not MISSING:
            removed = 1 if self._entries.pop((resource_type, key), None) is not None else 0
        else:
            stale = [k for k in self._entries if k[0] == resource_type]
            for k in stale:
                del self._entries[k]
            removed = len(stale)
        if removed:
            logger.debug("Invalidated %d %s cache entries", removed, resource_type)
        return removed

    def clear(self) -> None:
        self._entries.clear()
