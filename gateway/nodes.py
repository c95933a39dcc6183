"""
Single-node queries.

Each query answers for one daemon (or one pool stats URL), going through the
read-through cache. Upstream failures never escape: they come back as the
``{error, node}`` payload so that aggregation and the single-node HTTP
endpoints can treat them as ordinary answers.
"""
import math
from typing import Any, Dict, Optional, Union

import structlog

from cache import cache_key

from .constants import POOL_SCOPE
from .context import GatewayContext
from .exceptions import UpstreamError
from .models import Node
from .orchestrator import ReadThroughCache

logger = structlog.get_logger()

Port = Optional[Union[int, str]]


class NodeQueries:
    def __init__(self, context: GatewayContext, orchestrator: ReadThroughCache):
        self.context = context
        self.orchestrator = orchestrator

    async def _query(self, node: Node, method: str, call) -> Dict[str, Any]:
        async def produce():
            data = await call(self.context.upstream.daemon(node))
            if not isinstance(data, dict):
                raise UpstreamError(node.identity, "malformed response", method=method)
            data = dict(data)
            data["node"] = node.as_dict()
            if method == "getinfo":
                self._add_hash_rate(data)
            return data

        return await self.orchestrator.fetch(
            cache_key(node.host, node.port, method),
            produce,
            origin=node.as_dict()
        )

    def _add_hash_rate(self, data: Dict[str, Any]) -> None:
        difficulty = data.get("difficulty")
        if isinstance(difficulty, (int, float)) and not isinstance(difficulty, bool):
            data["globalHashRate"] = math.floor(
                difficulty / self.context.settings.target_block_time + 0.5
            )

    async def get_info(self, host: Optional[str] = None, port: Port = None) -> Dict[str, Any]:
        """Daemon ``getinfo`` plus the estimated ``globalHashRate``."""
        node = self.context.resolve_node(host, port)
        return await self._query(node, "getinfo", lambda daemon: daemon.get_info())

    async def fee_info(self, host: Optional[str] = None, port: Port = None) -> Dict[str, Any]:
        node = self.context.resolve_node(host, port)
        return await self._query(node, "feeinfo", lambda daemon: daemon.fee_info())

    async def get_height(self, host: Optional[str] = None, port: Port = None) -> Dict[str, Any]:
        node = self.context.resolve_node(host, port)
        return await self._query(node, "getheight", lambda daemon: daemon.get_height())

    async def get_peers(self, host: Optional[str] = None, port: Port = None) -> Dict[str, Any]:
        node = self.context.resolve_node(host, port)
        return await self._query(node, "getpeers", lambda daemon: daemon.get_peers())

    async def get_transactions(self, host: Optional[str] = None, port: Port = None) -> Dict[str, Any]:
        node = self.context.resolve_node(host, port)
        return await self._query(node, "gettransactions", lambda daemon: daemon.get_transactions())

    async def pool_network_info(self, url: str) -> Dict[str, Any]:
        """The ``network`` section of a pool's stats page (height, difficulty)."""
        async def produce():
            data = await self.context.upstream.fetch_json(url)
            if not isinstance(data, dict) or not isinstance(data.get("network"), dict):
                raise UpstreamError(url, "Invalid data returned by remote host")
            return data["network"]

        return await self.orchestrator.fetch(
            cache_key(POOL_SCOPE, url, "networkInfo"),
            produce,
            origin=url
        )
