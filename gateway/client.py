"""
Upstream clients.

A thin aiohttp adapter over the daemon's HTTP and JSON-RPC API plus a JSON
fetcher for pool stats pages. All calls share one lazily opened
``ClientSession`` owned by :class:`Upstream`, carry their own timeout, go
through the calling node's circuit breaker and raise :class:`UpstreamError`
on any failure.
"""
import asyncio
import time
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from error_handling.circuit_breaker import BreakerRegistry, CircuitBreaker, CircuitBreakerError
from monitoring.metrics import UPSTREAM_LATENCY, UPSTREAM_REQUESTS

from .constants import JSONRPC_VERSION
from .exceptions import CircuitOpenError, UpstreamError
from .models import Node

logger = structlog.get_logger()

# Daemon methods the gateway calls itself; metrics label anything else "passthrough"
KNOWN_METHODS = frozenset([
    'getinfo', 'feeinfo', 'getheight', 'getpeers', 'gettransactions',
    'f_blocks_list_json', 'f_block_json', 'f_transaction_json',
    'f_on_transactions_pool_json', 'getblockcount', 'on_getblockhash',
    'getlastblockheader', 'getblockheaderbyhash', 'getblockheaderbyheight',
    'getblocktemplate', 'submitblock', 'getcurrencyid',
])


def metric_label(method: str) -> str:
    return method if method in KNOWN_METHODS else 'passthrough'


class DaemonClient:
    """
    Calls against one daemon node.

    Instances are cheap and meant to be created per call; the session and
    breaker they use are shared.
    """

    def __init__(self, node: Node, session: aiohttp.ClientSession, timeout: float,
                 breaker: Optional[CircuitBreaker] = None):
        self.node = node
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.breaker = breaker
        self.base_url = f"http://{node.host}:{node.port}"

    async def _request(self, method: str, http_method: str, path: str,
                       payload: Optional[Dict[str, Any]] = None) -> Any:
        if self.breaker is None:
            return await self._send(method, http_method, path, payload)
        try:
            return await self.breaker.call(self._send, method, http_method, path, payload)
        except CircuitBreakerError:
            UPSTREAM_REQUESTS.labels(method=metric_label(method), outcome='rejected').inc()
            raise CircuitOpenError(self.node.identity) from None

    async def _send(self, method: str, http_method: str, path: str,
                    payload: Optional[Dict[str, Any]]) -> Any:
        label = metric_label(method)
        start_time = time.time()
        try:
            async with self.session.request(
                http_method,
                f"{self.base_url}{path}",
                json=payload,
                timeout=self.timeout
            ) as response:
                if response.status != 200:
                    raise UpstreamError(self.node.identity,
                                        f"daemon returned status {response.status}",
                                        method=method)
                data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            UPSTREAM_REQUESTS.labels(method=label, outcome='timeout').inc()
            logger.warning("upstream_timeout", node=self.node.identity, method=method)
            raise UpstreamError(self.node.identity, "request timed out", method=method)
        except (aiohttp.ClientError, ValueError) as e:
            UPSTREAM_REQUESTS.labels(method=label, outcome='error').inc()
            logger.warning("upstream_request_failed",
                           node=self.node.identity,
                           method=method,
                           error=str(e))
            raise UpstreamError(self.node.identity, str(e) or type(e).__name__, method=method)
        except UpstreamError:
            UPSTREAM_REQUESTS.labels(method=label, outcome='error').inc()
            raise
        finally:
            UPSTREAM_LATENCY.labels(method=label).observe(time.time() - start_time)

        UPSTREAM_REQUESTS.labels(method=label, outcome='ok').inc()
        return data

    async def _get(self, path: str) -> Any:
        return await self._request(path.lstrip('/'), 'GET', path)

    async def json_rpc(self, method: str, params: Any = None) -> Any:
        """Invoke ``method`` on the daemon's ``/json_rpc`` endpoint and return its result."""
        payload = {
            "jsonrpc": JSONRPC_VERSION,
            "id": "gateway",
            "method": method,
            "params": params if params is not None else {}
        }
        data = await self._request(method, 'POST', '/json_rpc', payload)
        if not isinstance(data, dict):
            raise UpstreamError(self.node.identity, "malformed json_rpc response", method=method)
        if data.get("error"):
            error = data["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise UpstreamError(self.node.identity, message, method=method)
        if "result" not in data:
            raise UpstreamError(self.node.identity, "json_rpc response without result", method=method)
        return data["result"]

    def _field(self, result: Any, key: str, method: str) -> Any:
        if not isinstance(result, dict) or key not in result:
            raise UpstreamError(self.node.identity, f"response is missing '{key}'", method=method)
        return result[key]

    # Plain HTTP endpoints

    async def get_info(self) -> Dict[str, Any]:
        return await self._get('/getinfo')

    async def fee_info(self) -> Dict[str, Any]:
        return await self._get('/feeinfo')

    async def get_height(self) -> Dict[str, Any]:
        return await self._get('/getheight')

    async def get_peers(self) -> Dict[str, Any]:
        return await self._get('/getpeers')

    async def get_transactions(self, hashes: Optional[List[str]] = None) -> Dict[str, Any]:
        return await self._request('gettransactions', 'POST', '/gettransactions',
                                   {"txs_hashes": hashes or []})

    # JSON-RPC methods

    async def get_blocks(self, height: int) -> List[Dict[str, Any]]:
        result = await self.json_rpc('f_blocks_list_json', {"height": height})
        return self._field(result, 'blocks', 'f_blocks_list_json')

    async def get_block(self, block_hash: str) -> Dict[str, Any]:
        result = await self.json_rpc('f_block_json', {"hash": block_hash})
        return self._field(result, 'block', 'f_block_json')

    async def get_transaction(self, tx_hash: str) -> Dict[str, Any]:
        return await self.json_rpc('f_transaction_json', {"hash": tx_hash})

    async def get_transaction_pool(self) -> List[Dict[str, Any]]:
        result = await self.json_rpc('f_on_transactions_pool_json')
        return self._field(result, 'transactions', 'f_on_transactions_pool_json')

    async def get_block_count(self) -> int:
        result = await self.json_rpc('getblockcount')
        return self._field(result, 'count', 'getblockcount')

    async def get_block_hash(self, height: int) -> str:
        return await self.json_rpc('on_getblockhash', [height])

    async def get_last_block_header(self) -> Dict[str, Any]:
        result = await self.json_rpc('getlastblockheader')
        return self._field(result, 'block_header', 'getlastblockheader')

    async def get_block_header_by_hash(self, block_hash: str) -> Dict[str, Any]:
        result = await self.json_rpc('getblockheaderbyhash', {"hash": block_hash})
        return self._field(result, 'block_header', 'getblockheaderbyhash')

    async def get_block_header_by_height(self, height: int) -> Dict[str, Any]:
        result = await self.json_rpc('getblockheaderbyheight', {"height": height})
        return self._field(result, 'block_header', 'getblockheaderbyheight')

    async def get_block_template(self, reserve_size: int, wallet_address: str) -> Dict[str, Any]:
        return await self.json_rpc('getblocktemplate', {
            "reserve_size": reserve_size,
            "wallet_address": wallet_address
        })

    async def submit_block(self, block_blob: str) -> Any:
        return await self.json_rpc('submitblock', [block_blob])

    async def get_currency_id(self) -> str:
        result = await self.json_rpc('getcurrencyid')
        return self._field(result, 'currency_id_blob', 'getcurrencyid')


class Upstream:
    """Owns the shared HTTP session and hands out per-call clients."""

    def __init__(self, timeout: float, breakers: Optional[BreakerRegistry] = None):
        self.timeout = timeout
        self.breakers = breakers or BreakerRegistry()
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        # Opened on first use so it binds to the loop that serves requests
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": "daemon-gateway"}
            )
        return self._session

    async def close(self) -> None:
        """Close the shared session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            logger.info("upstream_session_closed")
        self._session = None

    def daemon(self, node: Node) -> DaemonClient:
        return DaemonClient(node, self.session, self.timeout, self.breakers.get(node.identity))

    async def fetch_json(self, url: str) -> Any:
        """GET ``url`` and decode its JSON body; used for pool stats and the pool directory."""
        breaker = self.breakers.get(url)
        try:
            return await breaker.call(self._fetch, url)
        except CircuitBreakerError:
            UPSTREAM_REQUESTS.labels(method='fetch_json', outcome='rejected').inc()
            raise CircuitOpenError(url) from None

    async def _fetch(self, url: str) -> Any:
        start_time = time.time()
        try:
            async with self.session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status != 200:
                    raise UpstreamError(url, f"remote host returned status {response.status}")
                data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            UPSTREAM_REQUESTS.labels(method='fetch_json', outcome='timeout').inc()
            raise UpstreamError(url, "request timed out")
        except (aiohttp.ClientError, ValueError) as e:
            UPSTREAM_REQUESTS.labels(method='fetch_json', outcome='error').inc()
            logger.warning("upstream_fetch_failed", url=url, error=str(e))
            raise UpstreamError(url, str(e) or type(e).__name__)
        finally:
            UPSTREAM_LATENCY.labels(method='fetch_json').observe(time.time() - start_time)

        UPSTREAM_REQUESTS.labels(method='fetch_json', outcome='ok').inc()
        return data
