"""Cache module: namespaced read-through caching with TTL presets."""

from .keys import make_cache_key
from .manager import CacheEntry, CacheManager, CacheStats, create_cache_manager
from .ttl import TTL, to_seconds

__all__ = [
    "CacheEntry",
    "CacheManager",
    "CacheStats",
    "create_cache_manager",
    "make_cache_key",
    "TTL",
    "to_seconds",
]
