"""In-process cache store.

Intended for small, rarely changed support tables whose records easily fit
in memory. Values are pickled on write and unpickled on every read, so a
caller mutating a returned record never changes the cached copy.

This cache will not cache None. A miss is retried on every fetch instead of
filling the cache with misses, since there is no purging mechanism.
"""

import pickle
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

from support_table_cache.core.logging import get_logger, log_cache_operation

logger = get_logger(__name__)

# (pickled value, monotonic deadline or None)
_Entry = Tuple[bytes, Optional[float]]


class MemoryCache:
    """Thread-safe in-memory cache with optional per-entry TTL."""

    def __init__(self):
        self._entries: Dict[Hashable, _Entry] = {}
        self._lock = threading.Lock()

    def fetch(self, key: Hashable, loader: Optional[Callable[[], Any]] = None,
              expires_in: Optional[float] = None) -> Optional[Any]:
        """Get value for key, calling loader on a miss.

        Args:
            key: Cache key
            loader: Called on a miss; a non-None result is stored
            expires_in: Seconds the loaded value stays valid (None = no expiry)

        Returns:
            An independent copy of the cached or loaded value, or None
        """
        entry = self._live_entry(key)
        if entry is not None:
            log_cache_operation(logger, "fetch", key, hit=True)
            return pickle.loads(entry[0])

        log_cache_operation(logger, "fetch", key, hit=False)
        if loader is None:
            return None

        value = loader()
        if value is None:
            return None

        payload = self._store(key, value, expires_in)
        return pickle.loads(payload)

    def read(self, key: Hashable) -> Optional[Any]:
        return self.fetch(key)

    def write(self, key: Hashable, value: Any, expires_in: Optional[float] = None) -> None:
        if value is None:
            return
        self._store(key, value, expires_in)

    def delete(self, key: Hashable) -> None:
        with self._lock:
            deleted = self._entries.pop(key, None) is not None
        log_cache_operation(logger, "delete", key, deleted=deleted)

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        log_cache_operation(logger, "clear", "*", deleted=count)

    def __len__(self) -> int:
        return len(self._entries)

    def _live_entry(self, key: Hashable) -> Optional[_Entry]:
        # Entries are immutable tuples swapped in under the lock, so a
        # lock-free read never sees a partial write.
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at < time.monotonic():
            with self._lock:
                if self._entries.get(key) is entry:
                    del self._entries[key]
            return None
        return entry

    def _store(self, key: Hashable, value: Any, expires_in: Optional[float]) -> bytes:
        expires_at = None
        if expires_in is not None:
            expires_at = time.monotonic() + expires_in

        payload = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)

        with self._lock:
            self._entries[key] = (payload, expires_at)
        log_cache_operation(logger, "write", key, ttl=expires_in)
        return payload
