"""HTTP surface of the gateway."""
import time
from typing import Any, Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from config.logging import log_error
from monitoring.metrics import REQUEST_COUNT, REQUEST_LATENCY

from .constants import JSONRPC_VERSION
from .exceptions import GatewayError, InvalidRequestError
from .fallback import parse_height
from .models import Node
from .service import Gateway

logger = structlog.get_logger()

# Route names and the daemon query each one answers
NODE_ACTIONS = {
    "info": "get_info",
    "getinfo": "get_info",
    "fee": "fee_info",
    "feeinfo": "fee_info",
    "height": "get_height",
    "getheight": "get_height",
    "peers": "get_peers",
    "getpeers": "get_peers",
    "transactions": "get_transactions",
    "gettransactions": "get_transactions",
}


def _port(value: str) -> int:
    if not (value.isascii() and value.isdigit()) or not 0 < int(value) < 65536:
        raise InvalidRequestError(f"invalid port: {value!r}")
    return int(value)


def _record_request(request: Request, status: int, start_time: float) -> None:
    # Label by route template so client-chosen paths cannot add series
    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")
    REQUEST_COUNT.labels(endpoint=endpoint, method=request.method, status=status).inc()
    REQUEST_LATENCY.labels(endpoint=endpoint, method=request.method).observe(
        time.time() - start_time
    )


def _wrap(result: Any) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "result": result}


def create_app(gateway: Optional[Gateway] = None) -> FastAPI:
    """Build the FastAPI application serving ``gateway``."""
    gateway = gateway or Gateway()
    settings = gateway.settings
    context = gateway.context

    app = FastAPI(
        title="Daemon Gateway",
        description="Caching gateway for cryptocurrency daemon nodes",
        version="0.1.0"
    )
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept"],
    )

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception:
            # The 500 itself is rendered outside this middleware
            _record_request(request, 500, start_time)
            raise

        _record_request(request, response.status_code, start_time)
        response.headers["Cache-Control"] = f"max-age={settings.cache_control_max_age}, public"
        return response

    @app.exception_handler(InvalidRequestError)
    async def invalid_request_handler(request: Request, exc: InvalidRequestError):
        logger.info("invalid_request", path=request.url.path, error=str(exc))
        return Response(status_code=400)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        log_error(logger, exc, {"path": request.url.path})
        return Response(status_code=500)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        log_error(logger, exc, {"path": request.url.path})
        return Response(status_code=500, headers={
            "Cache-Control": f"max-age={settings.cache_control_max_age}, public"
        })

    @app.on_event("startup")
    async def startup_event():
        await gateway.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        await gateway.stop()

    @app.get("/")
    async def root():
        return Response(status_code=404)

    @app.get("/metrics")
    async def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Network-wide aggregates

    @app.get("/globalHeight")
    async def global_height():
        return await gateway.aggregator.global_height()

    @app.get("/globalDifficulty")
    async def global_difficulty():
        return await gateway.aggregator.global_difficulty()

    @app.get("/globalPoolHeight")
    async def global_pool_height():
        return await gateway.aggregator.global_pool_height()

    @app.get("/globalPoolDifficulty")
    async def global_pool_difficulty():
        return await gateway.aggregator.global_pool_difficulty()

    @app.get("/pools")
    async def pools():
        return [pool.as_dict() for pool in context.pools]

    @app.get("/trustedNodes")
    async def trusted_nodes():
        return [seed.as_dict() for seed in context.seeds]

    # Explorer REST API, always answered for the default node.
    # Registered before the /{node}/... routes so that e.g. /blocks/count
    # is not taken for a node called "blocks".

    explorer = gateway.explorer

    @app.get("/blocks/count")
    async def block_count():
        return _wrap(await explorer.get_block_count(context.default_node))

    @app.get("/blocks/{height}")
    async def blocks(height: str):
        return _wrap(await explorer.get_blocks(context.default_node, _height_param(height)))

    @app.get("/block/header/top")
    async def last_block_header():
        return _wrap(await explorer.get_last_block_header(context.default_node))

    @app.get("/block/header/{idx}")
    async def block_header(idx: str):
        return _wrap(await explorer.lookup_header(context.default_node, idx))

    @app.get("/block/{idx}")
    async def block(idx: str):
        return _wrap(await explorer.lookup_block(context.default_node, idx))

    @app.get("/transaction/pool")
    async def transaction_pool():
        return _wrap(await explorer.get_transaction_pool(context.default_node))

    @app.get("/transaction/{tx_hash}")
    async def transaction(tx_hash: str):
        return _wrap(await explorer.get_transaction(context.default_node, tx_hash))

    @app.get("/transactions/{payment_id}")
    async def transactions_by_payment_id(payment_id: str):
        return _wrap(await explorer.get_transaction_hashes_by_payment_id(payment_id))

    @app.get("/currency")
    async def currency():
        return _wrap(await explorer.get_currency_id(context.default_node))

    # JSON-RPC

    async def json_rpc(request: Request, node: Node):
        try:
            body = await request.json()
        except ValueError:
            raise InvalidRequestError("request body is not valid JSON")
        return _wrap(await gateway.dispatcher.dispatch(body, node))

    @app.post("/json_rpc")
    async def json_rpc_default(request: Request):
        return await json_rpc(request, context.resolve_node())

    @app.post("/{node}/json_rpc")
    async def json_rpc_node(request: Request, node: str):
        return await json_rpc(request, context.resolve_node(node))

    @app.post("/{node}/{port}/json_rpc")
    async def json_rpc_node_port(request: Request, node: str, port: str):
        return await json_rpc(request, context.resolve_node(node, _port(port)))

    @app.get("/json_rpc")
    @app.get("/{node}/json_rpc")
    @app.get("/{node}/{port}/json_rpc")
    async def json_rpc_get():
        # JSON-RPC is POST only
        return Response(status_code=400)

    # Single-node daemon endpoints

    for action, query in NODE_ACTIONS.items():
        _add_node_routes(app, gateway, action, query)

    return app


def _height_param(value: str) -> int:
    height = parse_height(value)
    if height is None:
        raise InvalidRequestError(f"invalid height: {value!r}")
    return height


def _add_node_routes(app: FastAPI, gateway: Gateway, action: str, query: str) -> None:
    handler = getattr(gateway.nodes, query)

    async def default_node():
        return await handler()

    async def named_node(node: str):
        return await handler(node)

    async def named_node_port(node: str, port: str):
        return await handler(node, _port(port))

    app.add_api_route(f"/{action}", default_node, methods=["GET"], name=action)
    app.add_api_route(f"/{{node}}/{action}", named_node, methods=["GET"], name=f"node_{action}")
    app.add_api_route(f"/{{node}}/{{port}}/{action}", named_node_port, methods=["GET"],
                      name=f"node_port_{action}")
