"""
Warming - Background population of the shared cache
"""

from eng_dashboard.warming.cache_warmer import DEFAULT_TTLS, CacheWarmer

__all__ = ["CacheWarmer", "DEFAULT_TTLS"]
