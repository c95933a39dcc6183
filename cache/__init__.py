"""
Gateway Caching Module

In-memory TTL storage shared by every gateway component: per-node daemon
responses, network-wide aggregates and explorer results.
"""

from .core import ABSENT, Cache, cache_key

__all__ = [
    'ABSENT',
    'Cache',
    'cache_key'
]
