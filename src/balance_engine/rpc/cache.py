"""TTL-based cache for query results."""

import logging
import time
from collections.abc import Callable

from balance_engine.core.models import CacheStats, Query, QueryResult

logger = logging.getLogger(__name__)


class CacheEntry:
    """
    Cache entry with TTL support.

    Parameters
    ----------
    result : QueryResult
        Cached query outcome
    ttl : float
        Time-to-live in seconds
    stored_at : float
        Clock reading when the entry was written

    """

    __slots__ = ("result", "stored_at", "ttl")

    def __init__(self, result: QueryResult, ttl: float, stored_at: float) -> None:
        self.result = result
        self.ttl = ttl
        self.stored_at = stored_at

    def is_valid(self, now: float) -> bool:
        """
        Check whether the entry is still valid.

        Parameters
        ----------
        now : float
            Current clock reading

        Returns
        -------
        bool
            True while ``now - stored_at < ttl``

        """
        return now - self.stored_at < self.ttl


class ResultCache:
    """
    In-memory cache of query results keyed by ``(network, address)``.

    Failed results are kept for ``error_ttl`` only, so a broken address is not
    hot-looped but is retried soon; successes are kept for ``success_ttl``.

    Parameters
    ----------
    success_ttl : float
        Seconds a successful result stays valid
    error_ttl : float
        Seconds a failed result stays valid
    clock : Callable[[], float]
        Monotonic clock, injectable for tests

    """

    def __init__(
        self,
        success_ttl: float = 300.0,
        error_ttl: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.success_ttl = success_ttl
        self.error_ttl = error_ttl
        self._clock = clock
        self._entries: dict[Query, CacheEntry] = {}

    def get(self, key: Query) -> QueryResult | None:
        """
        Get a cached result if it exists and has not expired.

        Expired entries are treated as absent and left for ``sweep``.

        Parameters
        ----------
        key : Query
            Cache key

        Returns
        -------
        QueryResult | None
            Cached result if valid, None otherwise

        """
        entry = self._entries.get(key)
        if entry is None or not entry.is_valid(self._clock()):
            return None
        return entry.result

    def put(self, key: Query, result: QueryResult) -> float:
        """
        Store a result with a TTL chosen by its outcome.

        Parameters
        ----------
        key : Query
            Cache key
        result : QueryResult
            Result to cache

        Returns
        -------
        float
            TTL applied, in seconds

        """
        ttl = self.success_ttl if result.ok else self.error_ttl
        self._entries[key] = CacheEntry(result, ttl, self._clock())
        return ttl

    def invalidate(self, key: Query) -> None:
        """Drop a single entry."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Clear all cached entries."""
        self._entries.clear()

    def sweep(self) -> int:
        """
        Remove all expired entries from cache.

        Returns
        -------
        int
            Number of entries removed

        """
        now = self._clock()
        expired_keys = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
        for key in expired_keys:
            del self._entries[key]
        if expired_keys:
            logger.debug("Swept %d expired cache entries", len(expired_keys))
        return len(expired_keys)

    def stats(self) -> CacheStats:
        """
        Count entries at call time.

        Returns
        -------
        CacheStats
            Total, valid and expired counts

        """
        now = self._clock()
        valid = sum(1 for entry in self._entries.values() if entry.is_valid(now))
        total = len(self._entries)
        return CacheStats(total=total, valid=valid, expired=total - valid)

    def __len__(self) -> int:
        return len(self._entries)
