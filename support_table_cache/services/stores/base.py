"""Cache store protocol.

Any object with these methods can serve as the global, type-specific or
ambient cache. Stores must never cache ``None``.
"""

from typing import Any, Callable, Hashable, Optional, Protocol, runtime_checkable


@runtime_checkable
class CacheStore(Protocol):
    """Protocol for cache stores (enables duck typing)."""

    def fetch(self, key: Hashable, loader: Optional[Callable[[], Any]] = None,
              expires_in: Optional[float] = None) -> Optional[Any]:
        """Return the cached value, or load, store and return it on a miss."""
        ...

    def read(self, key: Hashable) -> Optional[Any]:
        """Return the cached value or None."""
        ...

    def write(self, key: Hashable, value: Any, expires_in: Optional[float] = None) -> None:
        """Store a value; None is ignored."""
        ...

    def delete(self, key: Hashable) -> None:
        """Remove the entry for key if there is one."""
        ...

    def clear(self) -> None:
        """Remove all entries."""
        ...
