"""JSON-RPC method dispatch."""
from typing import Any, Awaitable, Callable, Dict

import structlog

from .exceptions import InvalidRequestError
from .fallback import Explorer, parse_height
from .models import Node

logger = structlog.get_logger()

Handler = Callable[[Node, Any], Awaitable[Any]]


def _named(params: Any, name: str) -> Any:
    if not isinstance(params, dict) or params.get(name) is None:
        raise InvalidRequestError(f"missing parameter '{name}'")
    return params[name]


def _positional(params: Any, index: int, name: str) -> Any:
    if not isinstance(params, list) or len(params) <= index:
        raise InvalidRequestError(f"missing parameter {index} ({name})")
    return params[index]


def _height(value: Any) -> int:
    height = parse_height(value)
    if height is None:
        raise InvalidRequestError(f"invalid height: {value!r}")
    return height


class JsonRpcDispatcher:
    """
    Routes a JSON-RPC request body to the matching explorer operation.

    Known methods have their parameters checked and translated before any
    network call is made; unknown methods are forwarded to the daemon with
    their parameters untouched.
    """

    def __init__(self, explorer: Explorer):
        self.explorer = explorer
        self._handlers: Dict[str, Handler] = {
            'f_blocks_list_json': self._get_blocks,
            'f_block_json': self._get_block,
            'f_transaction_json': self._get_transaction,
            'getblockcount': self._get_block_count,
            'on_getblockhash': self._get_block_hash,
            'getlastblockheader': self._get_last_block_header,
            'getblockheaderbyhash': self._get_block_header_by_hash,
            'getblockheaderbyheight': self._get_block_header_by_height,
            'f_on_transactions_pool_json': self._get_transaction_pool,
            'getblocktemplate': self._get_block_template,
            'submitblock': self._submit_block,
            'getcurrencyid': self._get_currency_id,
            'f_gettransactionsbypaymentid': self._get_transactions_by_payment_id,
        }

    async def dispatch(self, body: Any, node: Node) -> Any:
        """
        Execute one JSON-RPC request against ``node``.

        Raises:
            InvalidRequestError: The body is not an object, has no method, or
                lacks a parameter the method needs
        """
        if not isinstance(body, dict):
            raise InvalidRequestError("request body must be a JSON object")
        method = body.get('method')
        if not method or not isinstance(method, str):
            raise InvalidRequestError("No method defined")
        params = body.get('params')

        handler = self._handlers.get(method)
        if handler is None:
            logger.debug("json_rpc_passthrough", method=method, node=node.identity)
            return await self.explorer.passthrough(node, method, params)

        logger.debug("json_rpc_dispatch", method=method, node=node.identity)
        return await handler(node, params)

    async def _get_blocks(self, node: Node, params: Any) -> Any:
        return await self.explorer.get_blocks(node, _height(_named(params, 'height')))

    async def _get_block(self, node: Node, params: Any) -> Any:
        return await self.explorer.get_block(node, _named(params, 'hash'))

    async def _get_transaction(self, node: Node, params: Any) -> Any:
        return await self.explorer.get_transaction(node, _named(params, 'hash'))

    async def _get_block_count(self, node: Node, params: Any) -> Any:
        return await self.explorer.get_block_count(node)

    async def _get_block_hash(self, node: Node, params: Any) -> Any:
        return await self.explorer.get_block_hash(node, _height(_positional(params, 0, 'height')))

    async def _get_last_block_header(self, node: Node, params: Any) -> Any:
        return await self.explorer.get_last_block_header(node)

    async def _get_block_header_by_hash(self, node: Node, params: Any) -> Any:
        return await self.explorer.get_block_header_by_hash(node, _named(params, 'hash'))

    async def _get_block_header_by_height(self, node: Node, params: Any) -> Any:
        return await self.explorer.get_block_header_by_height(node, _height(_named(params, 'height')))

    async def _get_transaction_pool(self, node: Node, params: Any) -> Any:
        return await self.explorer.get_transaction_pool(node)

    async def _get_block_template(self, node: Node, params: Any) -> Any:
        return await self.explorer.get_block_template(
            node,
            _named(params, 'reserve_size'),
            _named(params, 'wallet_address')
        )

    async def _submit_block(self, node: Node, params: Any) -> Any:
        return await self.explorer.submit_block(node, _positional(params, 0, 'block blob'))

    async def _get_currency_id(self, node: Node, params: Any) -> Any:
        return await self.explorer.get_currency_id(node)

    async def _get_transactions_by_payment_id(self, node: Node, params: Any) -> Any:
        return await self.explorer.get_transaction_hashes_by_payment_id(_named(params, 'paymentId'))
