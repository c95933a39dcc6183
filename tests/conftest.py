"""Shared fixtures and fakes for the gateway tests."""
import asyncio
import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cache import Cache
from gateway.config import GatewaySettings
from gateway.exceptions import MirrorNotFoundError, UpstreamError
from gateway.mirror import MirrorStore
from gateway.models import Node
from gateway.service import Gateway


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDaemon:
    """
    Stands in for :class:`gateway.client.DaemonClient`.

    ``responses`` maps a client method name to its return value; an
    exception instance is raised instead of returned. Every call is recorded
    in ``calls`` as ``(method, args)``. ``delay`` seconds pass before each answer.
    """

    def __init__(self, node: Node, responses=None):
        self.node = node
        self.responses = dict(responses or {})
        self.calls = []
        self.delay = 0.0

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)

        async def call(*args):
            self.calls.append((name, args))
            if self.delay:
                await asyncio.sleep(self.delay)
            if name not in self.responses:
                raise UpstreamError(self.node.identity, f"{name} not available", method=name)
            response = self.responses[name]
            if isinstance(response, Exception):
                raise response
            return response

        return call


class FakeUpstream:
    """Stands in for :class:`gateway.client.Upstream`."""

    def __init__(self):
        self.daemons = {}
        self.urls = {}
        self.fetched = []
        self.closed = False

    def add_daemon(self, host: str, port: int, **responses) -> FakeDaemon:
        node = Node(host=host, port=port)
        daemon = FakeDaemon(node, responses)
        self.daemons[node.identity] = daemon
        return daemon

    def daemon(self, node: Node) -> FakeDaemon:
        if node.identity not in self.daemons:
            self.daemons[node.identity] = FakeDaemon(node)
        return self.daemons[node.identity]

    async def fetch_json(self, url: str):
        self.fetched.append(url)
        response = self.urls.get(url, UpstreamError(url, "connection refused"))
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        self.closed = True


class FakeMirror(MirrorStore):
    """A mirror answering from a dict of method name to result."""

    def __init__(self, ready: bool = True, **responses):
        super().__init__()
        self.responses = responses
        self.calls = []
        self.delay = 0.0
        if ready:
            self._ready = True

    async def _answer(self, name, *args):
        self.calls.append((name, args))
        if name not in self.responses:
            raise MirrorNotFoundError(f"{name} not in mirror")
        response = self.responses[name]
        if isinstance(response, Exception):
            raise response
        return response

    async def get_blocks(self, height):
        return await self._answer("get_blocks", height)

    async def get_block(self, block_hash):
        return await self._answer("get_block", block_hash)

    async def get_block_hash(self, height):
        return await self._answer("get_block_hash", height)

    async def get_block_count(self):
        return await self._answer("get_block_count")

    async def get_last_block_header(self):
        return await self._answer("get_last_block_header")

    async def get_block_header_by_hash(self, block_hash):
        return await self._answer("get_block_header_by_hash", block_hash)

    async def get_block_header_by_height(self, height):
        return await self._answer("get_block_header_by_height", height)

    async def get_transaction(self, tx_hash):
        return await self._answer("get_transaction", tx_hash)

    async def get_transaction_pool(self):
        return await self._answer("get_transaction_pool")

    async def get_transaction_hashes_by_payment_id(self, payment_id):
        return await self._answer("get_transaction_hashes_by_payment_id", payment_id)

    async def get_currency_id(self):
        return await self._answer("get_currency_id")


SEEDS = [
    {"host": "seed1.example", "port": 11898},
    {"host": "seed2.example", "port": 11898},
    {"host": "seed3.example", "port": 11898},
    {"host": "seed4.example", "port": 11898},
    {"host": "seed5.example", "port": 11898},
]

POOLS = [
    {"name": "alpha", "url": "http://alpha.example/api/stats"},
    {"name": "beta", "url": "http://beta.example/api/stats"},
    {"name": "gamma", "url": "http://gamma.example/api/stats"},
]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return GatewaySettings(
        default_host="daemon.example",
        default_port=11898,
        seeds=SEEDS,
        pools=POOLS,
        refresh_enabled=False,
    )


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def mirror():
    return FakeMirror(ready=False)


@pytest.fixture
def cache(clock, settings):
    return Cache(max_size=settings.cache_max_size, default_ttl=settings.cache_timeout, clock=clock)


@pytest.fixture
def gateway(settings, upstream, mirror, cache):
    return Gateway(settings, mirror=mirror, upstream=upstream, cache=cache)


def pool_stats(height, difficulty):
    return {"config": {}, "network": {"height": height, "difficulty": difficulty}}


