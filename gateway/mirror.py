"""
Mirror store interface.

The mirror is a locally maintained replica of the chain (blocks, headers,
transactions) kept up to date by a separate updater. The gateway only reads
from it, and only once it has reported itself ready; every failure is a
:class:`MirrorError` that sends the caller to a live node instead.

This base class is also the default store: it never becomes ready, so every
explorer query goes straight to the daemon.
"""
from typing import Any, Callable, Dict, List

import structlog

from monitoring.metrics import MIRROR_READY

from .exceptions import MirrorNotReadyError
from .models import MirrorEvent

logger = structlog.get_logger()

Listener = Callable[[MirrorEvent], None]


class MirrorStore:
    """Read interface and readiness channel of the local chain replica."""

    def __init__(self):
        self._ready = False
        self._listeners: List[Listener] = []

    @property
    def ready(self) -> bool:
        return self._ready

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for lifecycle events; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: MirrorEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def mark_ready(self) -> None:
        self._ready = True
        MIRROR_READY.set(1)
        self._emit(MirrorEvent("ready"))

    def mark_error(self, message: str) -> None:
        self._emit(MirrorEvent("error", message))

    def info(self, message: str) -> None:
        self._emit(MirrorEvent("info", message))

    def _unavailable(self, operation: str):
        raise MirrorNotReadyError(f"mirror cannot serve {operation}")

    async def get_blocks(self, height: int) -> List[Dict[str, Any]]:
        self._unavailable("get_blocks")

    async def get_block(self, block_hash: str) -> Dict[str, Any]:
        self._unavailable("get_block")

    async def get_block_hash(self, height: int) -> str:
        self._unavailable("get_block_hash")

    async def get_block_count(self) -> Dict[str, Any]:
        """Mirror height as ``{count, status}``."""
        self._unavailable("get_block_count")

    async def get_last_block_header(self) -> Dict[str, Any]:
        self._unavailable("get_last_block_header")

    async def get_block_header_by_hash(self, block_hash: str) -> Dict[str, Any]:
        self._unavailable("get_block_header_by_hash")

    async def get_block_header_by_height(self, height: int) -> Dict[str, Any]:
        self._unavailable("get_block_header_by_height")

    async def get_transaction(self, tx_hash: str) -> Dict[str, Any]:
        self._unavailable("get_transaction")

    async def get_transaction_pool(self) -> Dict[str, Any]:
        """Pending transactions as ``{status, transactions}``."""
        self._unavailable("get_transaction_pool")

    async def get_transaction_hashes_by_payment_id(self, payment_id: str) -> List[str]:
        self._unavailable("get_transaction_hashes_by_payment_id")

    async def get_currency_id(self) -> Dict[str, Any]:
        """Currency id as ``{currency_id_blob}``."""
        self._unavailable("get_currency_id")
