"""Process-local TTL cache for per-user targets.

Targets are read on every log write and every pattern check, so the store
adapter keeps recent rows here. The cache is an injected collaborator: any
object satisfying :class:`TargetsCache` (e.g. a Redis-backed one) can
replace :class:`InMemoryTTLCache` without touching the pipeline.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_ENTRIES = 5000

# Upper bound on entries inspected per opportunistic sweep
_SWEEP_LIMIT = 5000


@runtime_checkable
class TargetsCache(Protocol):
    """Minimal key/value cache with per-entry TTL."""

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if missing or expired."""
        ...

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value for ``ttl`` seconds (cache default when None)."""
        ...

    def evict(self, key: str) -> None:
        """Drop a key if present."""
        ...


class InMemoryTTLCache:
    """OrderedDict-backed LRU cache with expiry timestamps.

    Expired entries are swept opportunistically on every access. When the
    cache is full the least recently used entry is evicted.

    Usage::

        cache = InMemoryTTLCache(ttl=300, max_entries=1000)
        cache.set("user-1", targets)
        cache.get("user-1")
        cache.evict("user-1")
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._ttl = ttl
        self._max_entries = max_entries
        self._clock = clock
        # key -> (expires_at, value)
        self._entries: OrderedDict[str, tuple[float, Any]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Any | None:
        now = self._clock()
        self._sweep(now)
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if now >= expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        now = self._clock()
        self._sweep(now)
        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self._max_entries:
            oldest, _ = self._entries.popitem(last=False)
            logger.debug("Targets cache full; evicted %s", oldest)
        self._entries[key] = (now + (ttl if ttl is not None else self._ttl), value)

    def evict(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def _sweep(self, now: float) -> None:
        expired = [
            key
            for i, (key, (expires_at, _)) in enumerate(self._entries.items())
            if i < _SWEEP_LIMIT and now >= expires_at
        ]
        for key in expired:
            del self._entries[key]
