"""Cache service: process-lifetime TTL cache shielding upstream providers."""
from __future__ import annotations

import logging
import time
from typing import Any, Optional

logger = logging.getLogger(__name__)

# TTLs used by the read API
AUTH_TTL = 300
DETAIL_TTL = 3600


def cache_key(namespace: str, source_id, *parts) -> str:
    """Build ``namespace:source_id[:part...]`` so entries can be dropped per source."""
    return ":".join([namespace, str(source_id), *(str(p) for p in parts)])


class CacheService:
    """In-memory key/value cache with per-entry expiry.

    Entries are ``(value, expires_at)`` on the monotonic clock. There is no
    size bound; expired entries are evicted lazily on read and in bulk by
    ``purge_expired()`` which the periodic sync loop calls. The event loop is
    single-threaded so no lock is needed.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            self._entries.pop(key, None)
            return
        self._entries[key] = (value, self._clock() + ttl_seconds)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear_source(self, source_id) -> int:
        """Drop every entry namespaced under *source_id*; returns how many."""
        source_id = str(source_id)
        doomed = [k for k in self._entries if k.split(":", 2)[1:2] == [source_id]]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.info(f"Cleared {len(doomed)} cache entries for source {source_id}")
        return len(doomed)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}
