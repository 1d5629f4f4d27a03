"""Cache store implementations."""

from support_table_cache.services.stores.base import CacheStore
from support_table_cache.services.stores.memory import MemoryCache
from support_table_cache.services.stores.redis_cache import RedisCache

__all__ = ["CacheStore", "MemoryCache", "RedisCache"]
