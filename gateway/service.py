"""
Gateway composition root.

Builds every component around one :class:`GatewayContext` and owns the
lifecycle of the background work: the pool directory refresh, the aggregate
refreshes and the cache sweep.
"""
from typing import Any, Callable, List, Optional

import structlog

from cache import Cache
from config.logging import log_error

from .aggregator import Aggregator
from .client import Upstream
from .config import GatewaySettings
from .context import GatewayContext
from .exceptions import UpstreamError
from .fallback import Explorer
from .mirror import MirrorStore
from .models import MirrorEvent, Pool
from .nodes import NodeQueries
from .orchestrator import ReadThroughCache
from .rpc import JsonRpcDispatcher
from .scheduler import Scheduler

logger = structlog.get_logger()


def parse_pool_list(data: Any) -> List[Pool]:
    """
    Turn the pool directory document into pool stats endpoints.

    The directory maps pool names to ``{"url": ...}`` entries; the stats
    endpoint of a pool is its API URL with ``stats`` appended.
    """
    if not isinstance(data, dict):
        raise ValueError("pool directory is not a JSON object")
    pools = []
    for name, entry in data.items():
        if not isinstance(entry, dict) or not entry.get("url"):
            logger.warning("pool_entry_skipped", pool=name)
            continue
        pools.append(Pool(name=name, url=f"{entry['url']}stats"))
    return pools


class Gateway:
    """One running gateway: components, background jobs and their lifecycle."""

    def __init__(self, settings: Optional[GatewaySettings] = None,
                 mirror: Optional[MirrorStore] = None,
                 upstream: Optional[Upstream] = None,
                 cache: Optional[Cache] = None):
        self.settings = settings or GatewaySettings()
        self.context = GatewayContext(self.settings, cache=cache, upstream=upstream, mirror=mirror)
        self.orchestrator = ReadThroughCache(self.context.cache)
        self.nodes = NodeQueries(self.context, self.orchestrator)
        self.aggregator = Aggregator(self.context, self.orchestrator, self.nodes)
        self.explorer = Explorer(self.context, self.orchestrator, self.aggregator)
        self.dispatcher = JsonRpcDispatcher(self.explorer)
        self.scheduler = Scheduler()
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.is_running = False

    async def refresh_pools(self) -> bool:
        """
        Replace the pool list with the current pool directory.

        On failure the previous list stays in place.

        Returns:
            True if the list was replaced
        """
        try:
            data = await self.context.upstream.fetch_json(self.settings.pool_list_url)
            pools = parse_pool_list(data)
        except (UpstreamError, ValueError) as e:
            log_error(logger, e, {"operation": "refresh_pools"})
            return False

        self.context.replace_pools(pools)
        return True

    async def refresh_network(self) -> None:
        await self.aggregator.global_height()
        await self.aggregator.global_difficulty()

    async def refresh_pool_aggregates(self) -> None:
        await self.aggregator.global_pool_height()
        await self.aggregator.global_pool_difficulty()

    def _on_mirror_event(self, event: MirrorEvent) -> None:
        if event.kind == "error":
            logger.error("mirror_event", source="mirror", kind=event.kind, message=event.message)
        else:
            logger.info("mirror_event", source="mirror", kind=event.kind, message=event.message)

    async def start(self) -> None:
        """Subscribe to the mirror and start the background jobs."""
        if self.is_running:
            return

        self._unsubscribe = self.context.mirror.subscribe(self._on_mirror_event)

        if self.settings.refresh_enabled:
            interval = self.settings.refresh_interval
            if not self.settings.pools:
                self.scheduler.add("pool_list", self.settings.pool_refresh_interval, self.refresh_pools)
            self.scheduler.add("network_aggregates", interval, self.refresh_network)
            self.scheduler.add("pool_aggregates", interval, self.refresh_pool_aggregates)
            self.scheduler.start()

        self.context.cache.start_sweeper(self.settings.refresh_interval)
        self.is_running = True
        logger.info("gateway_started",
                    seeds=len(self.context.seeds),
                    pools=len(self.context.pools),
                    refresh_enabled=self.settings.refresh_enabled)

    async def stop(self) -> None:
        """Stop the background jobs and release the upstream session."""
        if not self.is_running:
            return

        self.is_running = False
        await self.scheduler.stop()
        await self.context.cache.stop_sweeper()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.context.upstream.close()
        logger.info("gateway_stopped")
