"""Read-through caching of upstream answers."""
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from cache import ABSENT, Cache
from monitoring.metrics import CACHE_HITS, CACHE_ITEMS, CACHE_MISSES

from .exceptions import GatewayError, error_payload

logger = structlog.get_logger()

Producer = Callable[[], Awaitable[Any]]


class ReadThroughCache:
    """
    Answers from the TTL cache when it can and from a producer when it must.

    Dict results carry a ``cached`` flag telling the client whether the
    answer came from the cache. The flag is set on a shallow copy, so stored
    entries are never modified. Failures are never stored.
    """

    def __init__(self, cache: Cache):
        self.cache = cache

    async def fetch(self, key: str, producer: Producer, ttl: Optional[int] = None,
                    origin: Optional[Dict[str, Any]] = None, annotate: bool = True) -> Any:
        """
        Return the value stored under ``key``, producing and storing it on a miss.

        Args:
            key: Cache key, see :func:`cache.cache_key`
            producer: Zero-argument coroutine function computing the value
            ttl: Lifetime of a freshly produced value, default TTL if None
            origin: Node (or pool URL) the producer talks to; when given, a
                :class:`GatewayError` resolves to ``{error, node}`` instead of
                propagating
            annotate: Whether to add the ``cached`` flag to dict results
        """
        method = key.rsplit(":", 1)[-1]

        value = self.cache.get(key)
        if value is not ABSENT:
            CACHE_HITS.labels(method=method).inc()
            logger.debug("cache_hit", key=key)
            return self._annotate(value, True) if annotate else value

        CACHE_MISSES.labels(method=method).inc()
        logger.debug("cache_miss", key=key)

        try:
            value = await producer()
        except GatewayError as e:
            if origin is None:
                raise
            logger.info("upstream_error_resolved", key=key, node=origin, error=str(e))
            return error_payload(e, origin)

        self.cache.set(key, value, ttl)
        CACHE_ITEMS.set(len(self.cache))
        return self._annotate(value, False) if annotate else value

    @staticmethod
    def _annotate(value: Any, cached: bool) -> Any:
        if not isinstance(value, dict):
            return value
        annotated = dict(value)
        annotated["cached"] = cached
        return annotated
