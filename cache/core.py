"""
Core caching functionality for the daemon gateway.

This module provides the in-memory TTL store behind every cached gateway
response: per-node daemon answers, network-wide aggregates and explorer
results. Expired entries are evicted lazily on read and by an optional
background sweep; the sweep only reclaims memory, it never changes what a
reader sees.
"""
import asyncio
import time
from typing import Any, Callable, Dict, Optional

import structlog

logger = structlog.get_logger()


class _Absent:
    """Sentinel type returned by :meth:`Cache.get` for missing keys."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


class Cache:
    """
    Simple in-memory TTL cache.

    Values may be anything, including falsy ones, so a miss is reported with
    the ``ABSENT`` sentinel rather than ``None``.
    """

    def __init__(self, max_size: int = 10000, default_ttl: int = 30,
                 clock: Callable[[], float] = time.time):
        """
        Initialize the cache with specified maximum size and default TTL.

        Args:
            max_size: Maximum number of items to store in the cache
            default_ttl: Default time-to-live in seconds for cached items
            clock: Time source returning seconds, replaceable in tests
        """
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._hits = 0
        self._misses = 0
        self._sweeper: Optional[asyncio.Task] = None

    @property
    def default_ttl(self) -> int:
        return self._default_ttl

    def get(self, key: str, default: Any = ABSENT) -> Any:
        """
        Get a value from the cache.

        Args:
            key: Cache key to retrieve
            default: Returned when the key is missing or expired

        Returns:
            The cached value, or ``default`` (``ABSENT``) if not found or expired
        """
        entry = self._cache.get(key)
        if entry is None:
            self._misses += 1
            return default

        if entry['expiry'] <= self._clock():
            self._misses += 1
            del self._cache[key]
            return default

        self._hits += 1
        return entry['value']

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set a value in the cache, replacing any existing entry for the key.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time-to-live in seconds, or None to use default

        Returns:
            True if successful
        """
        now = self._clock()

        # Enforce max size by removing oldest entry if needed
        if len(self._cache) >= self._max_size and key not in self._cache:
            oldest_key = min(self._cache.items(), key=lambda x: x[1]['timestamp'])[0]
            del self._cache[oldest_key]

        self._cache[key] = {
            'value': value,
            'expiry': now + (ttl if ttl is not None else self._default_ttl),
            'timestamp': now
        }
        return True

    def delete(self, key: str) -> bool:
        """Delete a key from the cache. Returns False if the key was not there."""
        if key in self._cache:
            del self._cache[key]
            return True
        return False

    def exists(self, key: str) -> bool:
        """Check if a key exists and is not expired."""
        entry = self._cache.get(key)
        if entry is None:
            return False
        if entry['expiry'] <= self._clock():
            del self._cache[key]
            return False
        return True

    def flush(self) -> bool:
        """Clear all keys in the cache."""
        self._cache.clear()
        self._hits = 0
        self._misses = 0
        return True

    def sweep(self) -> int:
        """
        Remove every expired entry.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        expired = [key for key, entry in self._cache.items() if entry['expiry'] <= now]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.debug("cache_swept", removed=len(expired), size=len(self._cache))
        return len(expired)

    def start_sweeper(self, period: float) -> asyncio.Task:
        """Run :meth:`sweep` every ``period`` seconds on the running loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return self._sweeper

        async def _run():
            while True:
                await asyncio.sleep(period)
                self.sweep()

        self._sweeper = asyncio.get_running_loop().create_task(_run())
        logger.info("cache_sweeper_started", period=period)
        return self._sweeper

    async def stop_sweeper(self) -> None:
        """Cancel the background sweep, if running."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
        logger.info("cache_sweeper_stopped")

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache statistics
        """
        total_requests = self._hits + self._misses
        hit_ratio = self._hits / total_requests if total_requests > 0 else 0

        return {
            'size': len(self._cache),
            'max_size': self._max_size,
            'hits': self._hits,
            'misses': self._misses,
            'hit_ratio': hit_ratio
        }

    def __len__(self) -> int:
        return len(self._cache)


def cache_key(*args: Any) -> str:
    """
    Generate a cache key from its parts.

    The first part is the scope (a node host or a scope tag such as
    ``network``), followed by the port and the method name.

    Returns:
        The parts joined with colons, or an empty string when there are none
    """
    return ":".join(str(arg) for arg in args)
