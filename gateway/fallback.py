"""
Explorer queries: mirror first, live daemon second.

The local mirror answers block, header and transaction lookups cheaply once
it is ready. Whenever it cannot (not ready yet, entry missing, too slow,
broken, or behind the network) the same question goes to a live daemon, and
only if that fails too is the request given up.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from cache import cache_key
from monitoring.metrics import MIRROR_FALLBACKS

from .aggregator import Aggregator
from .client import DaemonClient
from .context import GatewayContext
from .exceptions import (
    MirrorError,
    MirrorNotReadyError,
    SourceUnavailableError,
    StaleMirrorError,
    UpstreamError,
)
from .models import Node
from .orchestrator import ReadThroughCache

logger = structlog.get_logger()

MirrorCall = Callable[[], Awaitable[Any]]
LiveCall = Callable[[DaemonClient], Awaitable[Any]]


def parse_height(identifier: Any) -> Optional[int]:
    """
    Interpret a block identifier as a height.

    Only the canonical decimal spelling of a non-negative integer is a
    height (``"12345"``); anything else, ``"00012345"`` included, is a hash
    and yields ``None``.
    """
    if isinstance(identifier, bool):
        return None
    if isinstance(identifier, int):
        return identifier if identifier >= 0 else None
    if not isinstance(identifier, str):
        return None
    try:
        height = int(identifier)
    except ValueError:
        return None
    if height < 0 or str(height) != identifier:
        return None
    return height


class Explorer:
    def __init__(self, context: GatewayContext, orchestrator: ReadThroughCache,
                 aggregator: Aggregator):
        self.context = context
        self.orchestrator = orchestrator
        self.aggregator = aggregator

    async def _from_mirror(self, operation: str, call: MirrorCall) -> Any:
        mirror = self.context.mirror
        if not mirror.ready:
            raise MirrorNotReadyError(f"mirror not ready for {operation}")
        try:
            return await asyncio.wait_for(call(), timeout=self.context.settings.mirror_query_timeout)
        except asyncio.TimeoutError:
            raise MirrorError(f"mirror query for {operation} timed out")
        except MirrorError:
            raise
        except Exception as e:
            logger.exception("mirror_query_failed", source="mirror", operation=operation)
            raise MirrorError(f"mirror query for {operation} failed: {e}") from e

    async def _live(self, operation: str, node: Node, call: LiveCall) -> Any:
        try:
            return await call(self.context.upstream.daemon(node))
        except UpstreamError as e:
            logger.warning("explorer_source_unavailable",
                           operation=operation,
                           node=node.identity,
                           error=str(e))
            raise SourceUnavailableError(operation) from e

    async def _resolve(self, operation: str, node: Node, mirror_call: MirrorCall,
                       live_call: LiveCall) -> Any:
        try:
            return await self._from_mirror(operation, mirror_call)
        except MirrorError as e:
            MIRROR_FALLBACKS.labels(operation=operation, reason=e.reason).inc()
            logger.debug("mirror_fallback", operation=operation, reason=e.reason, error=str(e))
        return await self._live(operation, node, live_call)

    async def get_blocks(self, node: Node, height: int) -> List[Dict[str, Any]]:
        """Short summaries of the blocks leading up to ``height``."""
        return await self._resolve(
            "get_blocks", node,
            lambda: self.context.mirror.get_blocks(height),
            lambda daemon: daemon.get_blocks(height)
        )

    async def get_block(self, node: Node, block_hash: str) -> Dict[str, Any]:
        return await self._resolve(
            "get_block", node,
            lambda: self.context.mirror.get_block(block_hash),
            lambda daemon: daemon.get_block(block_hash)
        )

    async def get_block_hash(self, node: Node, height: int) -> str:
        return await self._resolve(
            "get_block_hash", node,
            lambda: self.context.mirror.get_block_hash(height),
            lambda daemon: daemon.get_block_hash(height)
        )

    async def get_last_block_header(self, node: Node) -> Dict[str, Any]:
        return await self._resolve(
            "get_last_block_header", node,
            lambda: self.context.mirror.get_last_block_header(),
            lambda daemon: daemon.get_last_block_header()
        )

    async def get_block_header_by_hash(self, node: Node, block_hash: str) -> Dict[str, Any]:
        return await self._resolve(
            "get_block_header_by_hash", node,
            lambda: self.context.mirror.get_block_header_by_hash(block_hash),
            lambda daemon: daemon.get_block_header_by_hash(block_hash)
        )

    async def get_block_header_by_height(self, node: Node, height: int) -> Dict[str, Any]:
        return await self._resolve(
            "get_block_header_by_height", node,
            lambda: self.context.mirror.get_block_header_by_height(height),
            lambda daemon: daemon.get_block_header_by_height(height)
        )

    async def get_transaction(self, node: Node, tx_hash: str) -> Dict[str, Any]:
        return await self._resolve(
            "get_transaction", node,
            lambda: self.context.mirror.get_transaction(tx_hash),
            lambda daemon: daemon.get_transaction(tx_hash)
        )

    async def get_transaction_pool(self, node: Node) -> Dict[str, Any]:
        """Pending transactions as ``{status, transactions}``, cached per node."""
        async def live(daemon: DaemonClient):
            return {"status": "OK", "transactions": await daemon.get_transaction_pool()}

        return await self.orchestrator.fetch(
            cache_key(node.host, node.port, "f_on_transactions_pool_json"),
            lambda: self._resolve(
                "get_transaction_pool", node,
                lambda: self.context.mirror.get_transaction_pool(),
                live
            ),
            annotate=False
        )

    async def get_currency_id(self, node: Node) -> Dict[str, Any]:
        """The daemon's currency id as ``{currency_id_blob}``, cached per node."""
        async def live(daemon: DaemonClient):
            return {"currency_id_blob": await daemon.get_currency_id()}

        return await self.orchestrator.fetch(
            cache_key(node.host, node.port, "getcurrencyid"),
            lambda: self._resolve(
                "get_currency_id", node,
                lambda: self.context.mirror.get_currency_id(),
                live
            ),
            annotate=False
        )

    async def get_block_count(self, node: Node) -> Dict[str, Any]:
        """
        Chain height as ``{count, status}``.

        The mirror's count is only trusted while it stays within
        ``max_deviance`` blocks of the seed nodes' consensus height; without
        a usable consensus it is not trusted at all.
        """
        async def checked():
            mirrored = await self.context.mirror.get_block_count()
            consensus = await self.aggregator.global_height()
            if not consensus.get("ans"):
                raise StaleMirrorError("no network height consensus to check the mirror against")
            deviance = abs(consensus["win"] - mirrored["count"])
            if deviance > self.context.settings.max_deviance:
                raise StaleMirrorError(
                    f"mirror count {mirrored['count']} is {deviance} blocks off "
                    f"the network height {consensus['win']}"
                )
            return mirrored

        async def live(daemon: DaemonClient):
            return {"count": await daemon.get_block_count(), "status": "OK"}

        return await self._resolve("get_block_count", node, checked, live)

    async def get_transaction_hashes_by_payment_id(self, payment_id: str) -> List[str]:
        """Only the mirror indexes payment ids; there is no live fallback."""
        try:
            return await self._from_mirror(
                "get_transaction_hashes_by_payment_id",
                lambda: self.context.mirror.get_transaction_hashes_by_payment_id(payment_id)
            )
        except MirrorError as e:
            MIRROR_FALLBACKS.labels(operation="get_transaction_hashes_by_payment_id",
                                    reason=e.reason).inc()
            raise SourceUnavailableError("get_transaction_hashes_by_payment_id") from e

    async def lookup_block(self, node: Node, identifier: str) -> Dict[str, Any]:
        """Block by height or hash; a height is resolved to its hash first."""
        height = parse_height(identifier)
        if height is None:
            return await self.get_block(node, identifier)
        block_hash = await self.get_block_hash(node, height)
        return await self.get_block(node, block_hash)

    async def lookup_header(self, node: Node, identifier: str) -> Dict[str, Any]:
        """Block header by height or hash."""
        height = parse_height(identifier)
        if height is None:
            return await self.get_block_header_by_hash(node, identifier)
        return await self.get_block_header_by_height(node, height)

    # Not mirrored: straight to the daemon

    async def get_block_template(self, node: Node, reserve_size: int,
                                 wallet_address: str) -> Dict[str, Any]:
        return await self.context.upstream.daemon(node).get_block_template(reserve_size, wallet_address)

    async def submit_block(self, node: Node, block_blob: str) -> Any:
        return await self.context.upstream.daemon(node).submit_block(block_blob)

    async def passthrough(self, node: Node, method: str, params: Any) -> Any:
        return await self.context.upstream.daemon(node).json_rpc(method, params)
