"""Content-addressed cache for generated summaries."""
import hashlib
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

from processor.models import EventRecord, PublicEvent, format_timestamp

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600


def fingerprint(event: Union[PublicEvent, EventRecord]) -> str:
    """
    Cache key for an event summary.

    SHA256 over the compact JSON array ``[title, location, startAt, endAt]``.
    Status and visibility are not hashed; callers drop the key when the
    status changes.
    """
    canonical = json.dumps(
        [
            event.title,
            event.location,
            format_timestamp(event.start_at),
            format_timestamp(event.end_at),
        ],
        separators=(',', ':'),
        ensure_ascii=False
    )
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    summary: str
    created_at: float


class SummaryCache:
    """Thread-safe summary store with lazy time-to-live expiry."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the cache.

        Args:
            ttl_seconds: Maximum entry age before it is treated as absent
            clock: Time source in seconds
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, CacheEntry] = {}
        self._generations: Dict[str, int] = {}
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[str]:
        """
        Look up a summary.

        An entry older than the TTL is evicted here and reported absent.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._clock() - entry.created_at > self.ttl_seconds:
                del self._entries[key]
                self._misses += 1
                logger.debug(f"Summary cache entry expired: {key[:12]}")
                return None

            self._hits += 1
            return entry.summary

    def generation(self, key: str) -> int:
        """Number of times ``key`` has been invalidated."""
        with self._lock:
            return self._generations.get(key, 0)

    def set(
        self, key: str, summary: str, generation: Optional[int] = None
    ) -> bool:
        """
        Store a summary.

        When ``generation`` is given the write only happens if ``key`` has
        not been invalidated since that generation was read, so a summary
        generated before an invalidation cannot be stored after it.

        Returns:
            True if the summary was stored
        """
        with self._lock:
            stale = (
                generation is not None
                and generation != self._generations.get(key, 0)
            )
            if not stale:
                self._entries[key] = CacheEntry(summary=summary, created_at=self._clock())
        if stale:
            logger.info(f"Discarded summary invalidated during generation: {key[:12]}")
            return False
        logger.debug(f"Summary cached: {key[:12]}")
        return True

    def invalidate(self, key: str) -> bool:
        """
        Remove an entry unconditionally.

        Also rejects any pending write that read the key's generation
        before this call.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            self._generations[key] = self._generations.get(key, 0) + 1
        if removed:
            logger.info(f"Summary cache entry invalidated: {key[:12]}")
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                'size': len(self._entries),
                'hits': self._hits,
                'misses': self._misses,
            }

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries
