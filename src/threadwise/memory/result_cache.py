"""
Short-lived result cache shared by tool executors.

A tool that produces a large payload stores it here and hands the oracle only the key; a later tool
call passes the key back to work on the full payload.  Entries expire a fixed time after they were
stored.  Expired entries are never returned and never counted: :meth:`ResultCache.get` drops them on
lookup, every :meth:`ResultCache.put` and ``len()`` drops all of them, and
:meth:`ResultCache.run_sweeper` purges periodically where an event loop outlives a single request.

Keys are random UUIDs and there is no tenant isolation beyond key secrecy, which is fine for a
single process with a short TTL.
"""

import asyncio
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Dict,
    List,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60


@dataclass(frozen=True)
class CacheEntry:
    """A cached value and the clock reading at which it expires."""

    key: str
    value: Any
    expires_at: float


class ResultCache:
    """In-memory cache store with TTL support, safe for concurrent use."""

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def put(self, value: Any) -> str:
        """Store *value* under a fresh key and return the key."""
        key = str(uuid.uuid4())
        now = self._clock()
        with self._lock:
            expired = self._drop_expired(now)
            self._entries[key] = CacheEntry(key=key, value=value, expires_at=now + self.ttl)
        self._log_expired(expired)
        logger.info("Cached result under ID: %s", key)
        return key

    def get(self, key: str) -> Any | None:
        """Return the value stored under *key*, or *None* when unknown or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                logger.info("Expired cached result for ID: %s", key)
                return None
            return entry.value

    def delete(self, key: str) -> bool:
        """Remove *key*; return whether it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = self._drop_expired(now)
        self._log_expired(expired)
        return len(expired)

    async def run_sweeper(self, interval: float) -> None:
        """Purge expired entries every *interval* seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            removed = self.purge_expired()
            if removed:
                logger.debug("Cache sweep removed %d entries", removed)

    def _drop_expired(self, now: float) -> List[str]:
        # Caller holds the lock.
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        return expired

    @staticmethod
    def _log_expired(keys: List[str]) -> None:
        for key in keys:
            logger.info("Expired cached result for ID: %s", key)

    def __len__(self) -> int:
        """Number of live entries."""
        now = self._clock()
        with self._lock:
            expired = self._drop_expired(now)
            count = len(self._entries)
        self._log_expired(expired)
        return count
