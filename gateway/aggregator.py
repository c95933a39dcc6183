"""
Network-wide aggregates.

Height and difficulty are asked of every trusted seed (or every known pool)
at once and reduced to a single trusted value with a confidence score. A
source that fails, times out or answers nonsense is simply a missing sample;
a round never fails as a whole.
"""
import asyncio
from typing import Any, Awaitable, Dict, List, Sequence

import structlog

from cache import cache_key
from monitoring.metrics import record_aggregate

from .constants import NETWORK_SCOPE, POOL_SCOPE
from .context import GatewayContext
from .nodes import NodeQueries
from .orchestrator import ReadThroughCache
from .stats import summarize

logger = structlog.get_logger()


class Aggregator:
    def __init__(self, context: GatewayContext, orchestrator: ReadThroughCache,
                 nodes: NodeQueries):
        self.context = context
        self.orchestrator = orchestrator
        self.nodes = nodes

    async def global_height(self) -> Dict[str, Any]:
        """Consensus chain height over the seed nodes' ``getheight`` answers."""
        return await self._aggregate(
            NETWORK_SCOPE, "globalheight",
            lambda: [self.nodes.get_height(seed.host, seed.port) for seed in self.context.seeds],
            "height"
        )

    async def global_difficulty(self) -> Dict[str, Any]:
        """Consensus difficulty over the seed nodes' ``getinfo`` answers."""
        return await self._aggregate(
            NETWORK_SCOPE, "globaldifficulty",
            lambda: [self.nodes.get_info(seed.host, seed.port) for seed in self.context.seeds],
            "difficulty"
        )

    async def global_pool_height(self) -> Dict[str, Any]:
        """Consensus chain height as reported by the mining pools."""
        return await self._aggregate(
            POOL_SCOPE, "globalpoolheight",
            lambda: [self.nodes.pool_network_info(pool.url) for pool in self.context.pools],
            "height"
        )

    async def global_pool_difficulty(self) -> Dict[str, Any]:
        """Consensus difficulty as reported by the mining pools."""
        return await self._aggregate(
            POOL_SCOPE, "globalpooldifficulty",
            lambda: [self.nodes.pool_network_info(pool.url) for pool in self.context.pools],
            "difficulty"
        )

    async def _aggregate(self, scope: str, quantity: str, calls, field: str) -> Dict[str, Any]:
        async def produce():
            result = summarize(*await self._fan_out(calls(), field))
            record_aggregate(quantity, result.con, result.ans)
            logger.debug("aggregate_computed",
                         quantity=quantity,
                         cnt=result.cnt,
                         ans=result.ans,
                         win=result.win,
                         con=result.con)
            return result.to_dict()

        return await self.orchestrator.fetch(
            cache_key(scope, scope, quantity),
            produce,
            ttl=self.context.settings.aggregate_ttl
        )

    async def _fan_out(self, calls: Sequence[Awaitable[Dict[str, Any]]], field: str):
        """Await every call concurrently and pull ``field`` out of each answer."""
        responses = await asyncio.gather(*calls, return_exceptions=True)
        values: List[Any] = []
        for response in responses:
            if isinstance(response, Exception):
                logger.warning("aggregate_source_failed", field=field, error=str(response))
                continue
            if not isinstance(response, dict) or "error" in response:
                continue
            values.append(response.get(field))
        return values, len(responses)
