"""Redis cache store.

Shares support table records between processes. Keys are namespaced strings,
values are pickled records and TTLs use Redis' own millisecond expiry.
Connection and command errors propagate to the caller unchanged.
"""

import pickle
from typing import Any, Callable, Hashable, Optional

import redis

from support_table_cache.core.logging import get_logger, log_cache_operation
from support_table_cache.services.key_codec import CacheKey

logger = get_logger(__name__)


class RedisCache:
    """Cache store backed by a synchronous Redis client."""

    def __init__(self, client: "redis.Redis", namespace: str = "support_table_cache",
                 scan_batch_size: int = 500):
        self.redis = client
        self.namespace = namespace
        self.scan_batch_size = scan_batch_size

    @classmethod
    def from_url(cls, url: str, namespace: str = "support_table_cache") -> "RedisCache":
        client = redis.Redis.from_url(
            url,
            socket_timeout=5,
            socket_connect_timeout=5,
            retry_on_timeout=True
        )
        return cls(client, namespace=namespace)

    def redis_key(self, key: Hashable) -> str:
        """Namespaced Redis key for a cache key."""
        if isinstance(key, CacheKey):
            return f"{self.namespace}:{key.to_string()}"
        return f"{self.namespace}:{key}"

    def fetch(self, key: Hashable, loader: Optional[Callable[[], Any]] = None,
              expires_in: Optional[float] = None) -> Optional[Any]:
        redis_key = self.redis_key(key)
        payload = self.redis.get(redis_key)
        if payload is not None:
            log_cache_operation(logger, "fetch", redis_key, hit=True)
            return pickle.loads(payload)

        log_cache_operation(logger, "fetch", redis_key, hit=False)
        if loader is None:
            return None

        value = loader()
        if value is None:
            return None
        self.write(key, value, expires_in=expires_in)
        return pickle.loads(pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL))

    def read(self, key: Hashable) -> Optional[Any]:
        return self.fetch(key)

    def write(self, key: Hashable, value: Any, expires_in: Optional[float] = None) -> None:
        if value is None:
            return
        redis_key = self.redis_key(key)
        payload = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
        if expires_in is not None:
            self.redis.set(redis_key, payload, px=max(1, int(expires_in * 1000)))
        else:
            self.redis.set(redis_key, payload)
        log_cache_operation(logger, "write", redis_key, ttl=expires_in)

    def delete(self, key: Hashable) -> None:
        redis_key = self.redis_key(key)
        deleted = self.redis.delete(redis_key)
        log_cache_operation(logger, "delete", redis_key, deleted=bool(deleted))

    def clear(self) -> None:
        """Delete every key in this cache's namespace."""
        deleted = 0
        batch = []
        for redis_key in self.redis.scan_iter(match=f"{self.namespace}:*", count=self.scan_batch_size):
            batch.append(redis_key)
            if len(batch) >= self.scan_batch_size:
                deleted += self.redis.delete(*batch)
                batch = []
        if batch:
            deleted += self.redis.delete(*batch)
        log_cache_operation(logger, "clear", f"{self.namespace}:*", deleted=deleted)
