"""
Serving Module
"""
from .cache import init_redis, close_redis, get_redis, cache_get, cache_set, CacheManager

__all__ = [
    "init_redis",
    "close_redis",
    "get_redis",
    "cache_get",
    "cache_set",
    "CacheManager",
]
