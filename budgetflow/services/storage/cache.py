"""
TTL Cache for Per-User Reads

DESIGN DECISION: Cached reads live in an explicit cache object owned by
each service, never in module-level state. Keys are tuples whose first
two items are (namespace, user_id), so every mutating service call can
drop exactly the affected user's entries with `invalidate`.
"""

import time
from typing import Any, Callable, Hashable, Optional

import structlog


logger = structlog.get_logger(__name__)

_MISSING = object()


class TTLCache:
    """
    Mapping with per-entry expiry.

    `clock` returns seconds; it defaults to time.monotonic and can be
    replaced in tests to expire entries without sleeping.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple, tuple[float, Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: tuple, default: Any = None) -> Any:
        entry = self._entries.get(key, _MISSING)
        if entry is _MISSING:
            return default
        stored_at, value = entry
        if self._clock() - stored_at >= self._ttl:
            del self._entries[key]
            return default
        return value

    def set(self, key: tuple, value: Any) -> None:
        if self._ttl <= 0:
            return
        self._entries[key] = (self._clock(), value)

    def invalidate(self, *prefix: Hashable) -> int:
        """
        Drop every entry whose key starts with `prefix`.

        Returns the number of entries removed.
        """
        doomed = [key for key in self._entries if key[:len(prefix)] == prefix]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug("cache_invalidated", prefix=[str(p) for p in prefix], removed=len(doomed))
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()


def freeze(value: Optional[dict]) -> tuple:
    """Turn a kwargs dict into a hashable, order-independent key part."""
    if not value:
        return ()
    return tuple(sorted((k, str(v)) for k, v in value.items()))
