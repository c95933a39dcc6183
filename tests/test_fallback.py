import asyncio

import pytest

from gateway.config import GatewaySettings
from gateway.exceptions import MirrorError, SourceUnavailableError
from gateway.fallback import parse_height
from gateway.models import Node
from gateway.service import Gateway
from conftest import SEEDS, FakeMirror

NODE = Node(host="daemon.example", port=11898)


@pytest.fixture
def consensus_at(upstream):
    """Make every seed report the given height."""
    def apply(height):
        for seed in SEEDS:
            upstream.add_daemon(seed["host"], seed["port"], get_height={"height": height})
    return apply


def build(settings, upstream, cache, mirror):
    return Gateway(settings, mirror=mirror, upstream=upstream, cache=cache)


@pytest.mark.parametrize("identifier, expected", [
    ("12345", 12345),
    ("0", 0),
    ("00012345", None),
    ("-5", None),
    ("12345abc", None),
    ("7fe3b1", None),
    ("", None),
    (42, 42),
])
def test_parse_height(identifier, expected):
    assert parse_height(identifier) == expected


def test_ready_mirror_answers_without_daemon(settings, upstream, cache):
    mirror = FakeMirror(get_block={"hash": "abc", "height": 5})
    gateway = build(settings, upstream, cache, mirror)

    block = asyncio.run(gateway.explorer.get_block(NODE, "abc"))

    assert block == {"hash": "abc", "height": 5}
    assert "daemon.example:11898" not in upstream.daemons


def test_mirror_not_ready_falls_back_to_daemon(gateway, upstream, mirror):
    mirror.responses["get_block"] = {"hash": "from-mirror"}
    upstream.add_daemon("daemon.example", 11898, get_block={"hash": "abc"})

    assert asyncio.run(gateway.explorer.get_block(NODE, "abc")) == {"hash": "abc"}
    assert mirror.calls == []


def test_mirror_miss_falls_back_to_daemon(settings, upstream, cache):
    gateway = build(settings, upstream, cache, FakeMirror())
    daemon = upstream.add_daemon("daemon.example", 11898, get_transaction={"tx": {"hash": "t1"}})

    result = asyncio.run(gateway.explorer.get_transaction(NODE, "t1"))

    assert result == {"tx": {"hash": "t1"}}
    assert daemon.calls == [("get_transaction", ("t1",))]


def test_broken_mirror_falls_back_to_daemon(settings, upstream, cache):
    mirror = FakeMirror(get_last_block_header=RuntimeError("database is locked"))
    gateway = build(settings, upstream, cache, mirror)
    upstream.add_daemon("daemon.example", 11898, get_last_block_header={"height": 9})

    assert asyncio.run(gateway.explorer.get_last_block_header(NODE)) == {"height": 9}


def test_slow_mirror_falls_back_to_daemon(upstream, cache):
    settings = GatewaySettings(default_host="daemon.example", seeds=SEEDS,
                               refresh_enabled=False, mirror_query_timeout=0.01)

    class SlowMirror(FakeMirror):
        async def get_blocks(self, height):
            await asyncio.sleep(1)

    gateway = build(settings, upstream, cache, SlowMirror())
    upstream.add_daemon("daemon.example", 11898, get_blocks=[{"height": 10}])

    assert asyncio.run(gateway.explorer.get_blocks(NODE, 10)) == [{"height": 10}]


def test_both_sources_failing_is_source_unavailable(gateway, upstream):
    upstream.add_daemon("daemon.example", 11898)

    with pytest.raises(SourceUnavailableError) as excinfo:
        asyncio.run(gateway.explorer.get_block_header_by_hash(NODE, "abc"))
    assert excinfo.value.operation == "get_block_header_by_hash"


def test_block_count_stale_mirror_uses_daemon(settings, upstream, cache, consensus_at):
    consensus_at(110)
    mirror = FakeMirror(get_block_count={"count": 100, "status": "OK"})
    gateway = build(settings, upstream, cache, mirror)
    upstream.add_daemon("daemon.example", 11898, get_block_count=111)

    assert asyncio.run(gateway.explorer.get_block_count(NODE)) == {"count": 111, "status": "OK"}


def test_block_count_close_mirror_is_trusted(settings, upstream, cache, consensus_at):
    consensus_at(110)
    mirror = FakeMirror(get_block_count={"count": 105, "status": "OK"})
    gateway = build(settings, upstream, cache, mirror)
    daemon = upstream.add_daemon("daemon.example", 11898, get_block_count=111)

    assert asyncio.run(gateway.explorer.get_block_count(NODE)) == {"count": 105, "status": "OK"}
    assert daemon.calls == []


def test_block_count_deviance_boundary(settings, upstream, cache, consensus_at):
    consensus_at(105)
    mirror = FakeMirror(get_block_count={"count": 100, "status": "OK"})
    gateway = build(settings, upstream, cache, mirror)

    assert asyncio.run(gateway.explorer.get_block_count(NODE))["count"] == 100


def test_block_count_without_consensus_uses_daemon(settings, upstream, cache):
    mirror = FakeMirror(get_block_count={"count": 100, "status": "OK"})
    gateway = build(settings, upstream, cache, mirror)
    upstream.add_daemon("daemon.example", 11898, get_block_count=100)

    result = asyncio.run(gateway.explorer.get_block_count(NODE))

    assert result == {"count": 100, "status": "OK"}
    assert upstream.daemons["daemon.example:11898"].calls == [("get_block_count", ())]


def test_lookup_block_by_height_resolves_hash_first(gateway, upstream):
    daemon = upstream.add_daemon("daemon.example", 11898,
                                 get_block_hash="abc",
                                 get_block={"hash": "abc", "height": 12345})

    block = asyncio.run(gateway.explorer.lookup_block(NODE, "12345"))

    assert block == {"hash": "abc", "height": 12345}
    assert daemon.calls == [("get_block_hash", (12345,)), ("get_block", ("abc",))]


def test_lookup_block_by_hash(gateway, upstream):
    daemon = upstream.add_daemon("daemon.example", 11898, get_block={"hash": "00012345"})

    asyncio.run(gateway.explorer.lookup_block(NODE, "00012345"))

    assert daemon.calls == [("get_block", ("00012345",))]


def test_lookup_header_by_height_and_hash(gateway, upstream):
    daemon = upstream.add_daemon("daemon.example", 11898,
                                 get_block_header_by_height={"height": 7},
                                 get_block_header_by_hash={"hash": "ff"})

    assert asyncio.run(gateway.explorer.lookup_header(NODE, "7")) == {"height": 7}
    assert asyncio.run(gateway.explorer.lookup_header(NODE, "ff")) == {"hash": "ff"}
    assert [name for name, _ in daemon.calls] == ["get_block_header_by_height", "get_block_header_by_hash"]


def test_transaction_pool_is_wrapped_and_cached(gateway, upstream, clock, settings):
    daemon = upstream.add_daemon("daemon.example", 11898, get_transaction_pool=[{"hash": "t"}])

    first = asyncio.run(gateway.explorer.get_transaction_pool(NODE))
    second = asyncio.run(gateway.explorer.get_transaction_pool(NODE))

    assert first == {"status": "OK", "transactions": [{"hash": "t"}]}
    assert second == first
    assert len(daemon.calls) == 1

    clock.advance(settings.cache_timeout)
    asyncio.run(gateway.explorer.get_transaction_pool(NODE))
    assert len(daemon.calls) == 2


def test_currency_id_is_wrapped_and_cached(gateway, upstream):
    daemon = upstream.add_daemon("daemon.example", 11898, get_currency_id="deadbeef")

    assert asyncio.run(gateway.explorer.get_currency_id(NODE)) == {"currency_id_blob": "deadbeef"}
    assert asyncio.run(gateway.explorer.get_currency_id(NODE)) == {"currency_id_blob": "deadbeef"}
    assert len(daemon.calls) == 1


def test_failed_transaction_pool_is_not_cached(gateway, upstream, cache):
    upstream.add_daemon("daemon.example", 11898)

    with pytest.raises(SourceUnavailableError):
        asyncio.run(gateway.explorer.get_transaction_pool(NODE))
    assert len(cache) == 0


def test_payment_id_lookup_is_mirror_only(settings, upstream, cache, gateway):
    with pytest.raises(SourceUnavailableError) as excinfo:
        asyncio.run(gateway.explorer.get_transaction_hashes_by_payment_id("pid"))
    assert isinstance(excinfo.value.__cause__, MirrorError)

    mirror = FakeMirror(get_transaction_hashes_by_payment_id=["t1", "t2"])
    ready = build(settings, upstream, cache, mirror)
    assert asyncio.run(ready.explorer.get_transaction_hashes_by_payment_id("pid")) == ["t1", "t2"]


def test_passthrough_goes_to_daemon(gateway, upstream):
    daemon = upstream.add_daemon("daemon.example", 11898,
                                 get_block_template={"blocktemplate_blob": "00"},
                                 submit_block={"status": "OK"},
                                 json_rpc={"anything": True})

    assert asyncio.run(gateway.explorer.get_block_template(NODE, 8, "TRTL")) == {"blocktemplate_blob": "00"}
    assert asyncio.run(gateway.explorer.submit_block(NODE, "0101")) == {"status": "OK"}
    assert asyncio.run(gateway.explorer.passthrough(NODE, "getpeers", {})) == {"anything": True}
    assert daemon.calls == [
        ("get_block_template", (8, "TRTL")),
        ("submit_block", ("0101",)),
        ("json_rpc", ("getpeers", {})),
    ]
