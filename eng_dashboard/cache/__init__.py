"""
Caching - in-memory TTL cache shared by the fetcher, the warmer and the read endpoints

Usage:
    from eng_dashboard.cache import TTLCache, keys

    cache = TTLCache()
    cache.set(keys.ranged(keys.STATS, date_range), stats, ttl_seconds=300)
"""

from . import keys
from .ttl_cache import CacheEntry, TTLCache

__all__ = ["TTLCache", "CacheEntry", "keys"]
