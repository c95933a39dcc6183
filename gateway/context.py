"""Shared state handed to every gateway component."""
from typing import Iterable, Optional, Tuple, Union

import structlog

from cache import Cache
from error_handling.circuit_breaker import BreakerRegistry

from .client import Upstream
from .config import GatewaySettings
from .mirror import MirrorStore
from .models import Node, Pool

logger = structlog.get_logger()


class GatewayContext:
    """
    Explicitly constructed state of one gateway instance.

    The seed list is fixed for the lifetime of the context. The pool list is
    an immutable tuple that :meth:`replace_pools` swaps out wholesale, so a
    reader that took a snapshot keeps a consistent list while a refresh runs.
    """

    def __init__(self, settings: GatewaySettings,
                 cache: Optional[Cache] = None,
                 upstream: Optional[Upstream] = None,
                 mirror: Optional[MirrorStore] = None):
        self.settings = settings
        if cache is None:
            cache = Cache(max_size=settings.cache_max_size, default_ttl=settings.cache_timeout)
        self.cache = cache
        self.upstream = upstream if upstream is not None else Upstream(
            timeout=settings.timeout,
            breakers=BreakerRegistry(
                failure_threshold=settings.breaker_failure_threshold,
                recovery_timeout=settings.breaker_recovery_timeout,
                max_size=settings.breaker_registry_size
            )
        )
        self.mirror = mirror if mirror is not None else MirrorStore()
        self.seeds: Tuple[Node, ...] = tuple(settings.seeds)
        self._pools: Tuple[Pool, ...] = tuple(settings.pools)

    @property
    def pools(self) -> Tuple[Pool, ...]:
        return self._pools

    def replace_pools(self, pools: Iterable[Pool]) -> None:
        self._pools = tuple(pools)
        logger.info("pool_list_replaced", pools=len(self._pools))

    @property
    def default_node(self) -> Node:
        return self.settings.default_node

    def resolve_node(self, host: Optional[str] = None,
                     port: Optional[Union[int, str]] = None) -> Node:
        """Fill in the configured default host and port for whatever the request omitted."""
        return Node(
            host=host or self.settings.default_host,
            port=int(port) if port else self.settings.default_port
        )
