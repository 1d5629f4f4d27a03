"""Process-wide cache configuration.

The registry holds the global cache, the global and per-type disable
switches, the test isolation cache and the descriptors of every cacheable
type. Configure it once at startup (see :func:`configure_registry`) and read
it from any thread. Scoped overrides (``disable()``, ``disable_type()``,
``testing()``) are strand-local and never visible to other threads or tasks.

Usage:
    from support_table_cache.core.registry import get_registry

    registry = get_registry()
    registry.cache = MemoryCache()

    with registry.disable():
        ...  # every lookup in this block goes to the record store
"""

import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional

from support_table_cache.core.config import Settings
from support_table_cache.core.context import ScopedContext
from support_table_cache.core.logging import configure_logging, get_logger
from support_table_cache.exceptions import CacheConfigurationError
from support_table_cache.models.descriptor import CacheableTypeDescriptor
from support_table_cache.services.stores.base import CacheStore
from support_table_cache.services.stores.memory import MemoryCache

logger = get_logger(__name__)

DISABLED_KEY = "support_table_cache:disabled"
TESTING_KEY = "support_table_cache:testing"

_UNSET = object()


def type_disabled_key(type_name: str) -> str:
    return f"{DISABLED_KEY}:{type_name}"


class CacheRegistry:
    """Global cache settings and cacheable type registrations."""

    def __init__(self, context: Optional[ScopedContext] = None):
        self.context = context or ScopedContext()
        self._lock = threading.Lock()
        self._cache: Any = _UNSET
        self._disabled = False
        self._disabled_types: Dict[str, bool] = {}
        self._descriptors: Dict[type, CacheableTypeDescriptor] = {}
        self.ambient_cache_provider: Optional[Callable[[], Optional[CacheStore]]] = None
        self.default_ttl: Optional[float] = None

    # =========================================================================
    # GLOBAL CACHE
    # =========================================================================

    @property
    def cache(self) -> Optional[CacheStore]:
        """The global cache.

        Falls back to the ambient cache provider when no cache was ever set.
        An explicit None turns caching off for types without their own cache.
        """
        cache = self._cache
        if cache is _UNSET:
            if self.ambient_cache_provider is not None:
                return self.ambient_cache_provider()
            return None
        return cache

    @cache.setter
    def cache(self, cache: Optional[CacheStore]) -> None:
        with self._lock:
            self._cache = cache
        logger.info("Global support table cache set", cache=type(cache).__name__)

    def reset_cache(self) -> None:
        """Forget the global cache so the ambient cache applies again."""
        with self._lock:
            self._cache = _UNSET

    @property
    def cache_configured(self) -> bool:
        return self._cache is not _UNSET

    # =========================================================================
    # DISABLING
    # =========================================================================

    @property
    def disabled(self) -> bool:
        """Global disable flag, ignoring scoped overrides."""
        return self._disabled

    @disabled.setter
    def disabled(self, disabled: bool) -> None:
        self._disabled = bool(disabled)

    @contextmanager
    def disable(self, disabled: bool = True) -> Iterator[None]:
        """Disable caching for all types within the with block."""
        with self.context.scoped(DISABLED_KEY, bool(disabled)):
            yield

    @contextmanager
    def enable(self) -> Iterator[None]:
        """Enable caching for all types within the with block."""
        with self.disable(False):
            yield

    def set_type_disabled(self, type_name: str, disabled: Optional[bool]) -> None:
        """Permanently disable or enable one type; None removes the setting."""
        with self._lock:
            if disabled is None:
                self._disabled_types.pop(type_name, None)
            else:
                self._disabled_types[type_name] = bool(disabled)

    @contextmanager
    def disable_type(self, type_name: str, disabled: bool = True) -> Iterator[None]:
        """Disable caching for one type within the with block.

        The per-type setting always takes precedence over the global one.
        """
        with self.context.scoped(type_disabled_key(type_name), bool(disabled)):
            yield

    @contextmanager
    def enable_type(self, type_name: str) -> Iterator[None]:
        with self.disable_type(type_name, False):
            yield

    def is_disabled(self, type_name: Optional[str] = None) -> bool:
        """Check if caching is disabled, for one type or globally."""
        if type_name is not None:
            type_value = self.context.get(type_disabled_key(type_name))
            if type_value is None:
                type_value = self._disabled_types.get(type_name)
            if type_value is not None:
                return type_value

        block_value = self.context.get(DISABLED_KEY)
        if block_value is None:
            return self._disabled
        return block_value

    # =========================================================================
    # TEST ISOLATION
    # =========================================================================

    @contextmanager
    def testing(self) -> Iterator[CacheStore]:
        """Use a private in-memory cache for every type within the with block.

        Nested calls reuse the outermost test cache.
        """
        test_cache = self.context.get(TESTING_KEY)
        if test_cache is not None:
            yield test_cache
            return

        with self.context.scoped(TESTING_KEY, MemoryCache()) as test_cache:
            yield test_cache

    @property
    def testing_cache(self) -> Optional[CacheStore]:
        return self.context.get(TESTING_KEY)

    # =========================================================================
    # TYPE REGISTRATION
    # =========================================================================

    def register(self, cls: type, descriptor: CacheableTypeDescriptor) -> CacheableTypeDescriptor:
        """Attach a descriptor to exactly this type (subclasses are not covered)."""
        with self._lock:
            self._descriptors[cls] = descriptor
        logger.debug("Registered support table", type_name=descriptor.type_name)
        return descriptor

    def unregister(self, cls: type) -> None:
        with self._lock:
            self._descriptors.pop(cls, None)

    def descriptor_for(self, cls: type) -> Optional[CacheableTypeDescriptor]:
        return self._descriptors.get(cls)

    def require_descriptor(self, cls: type) -> CacheableTypeDescriptor:
        descriptor = self._descriptors.get(cls)
        if descriptor is None:
            raise CacheConfigurationError(f"{cls.__name__} is not a registered support table")
        return descriptor

    def is_registered(self, cls: type) -> bool:
        return cls in self._descriptors

    # =========================================================================
    # CACHE SELECTION
    # =========================================================================

    def resolve_cache(self, descriptor: CacheableTypeDescriptor) -> Optional[CacheStore]:
        """Select the cache lookups and invalidations for a type should use.

        Order: nothing if the type is disabled, then the active test cache,
        then the type's own cache, then the global cache.
        """
        if self.is_disabled(descriptor.type_name):
            return None

        test_cache = self.testing_cache
        if test_cache is not None:
            return test_cache

        if descriptor.cache is not None:
            return descriptor.cache
        return self.cache

    def ttl_for(self, descriptor: CacheableTypeDescriptor) -> Optional[float]:
        if descriptor.ttl is not None:
            return descriptor.ttl
        return self.default_ttl


def build_cache_store(settings: Settings) -> Optional[CacheStore]:
    """Create the global cache store configured by settings."""
    if settings.cache_backend == "memory":
        return MemoryCache()
    if settings.cache_backend == "redis":
        if not settings.redis_url:
            raise CacheConfigurationError("cache_backend 'redis' requires redis_url")
        from support_table_cache.services.stores.redis_cache import RedisCache
        return RedisCache.from_url(settings.redis_url, namespace=settings.redis_namespace)
    return None


def configure_registry(registry: CacheRegistry, settings: Settings) -> CacheRegistry:
    """Apply settings to a registry. Call once during startup."""
    registry.disabled = settings.cache_disabled
    registry.default_ttl = settings.cache_ttl
    if settings.cache_backend == "ambient":
        registry.reset_cache()
    else:
        registry.cache = build_cache_store(settings)
    logger.info("Support table cache configured",
                backend=settings.cache_backend,
                disabled=settings.cache_disabled,
                default_ttl=settings.cache_ttl)
    return registry


_registry: Optional[CacheRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> CacheRegistry:
    """Get global registry instance, creating it on first use."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = CacheRegistry()
    return _registry


def set_registry(registry: Optional[CacheRegistry]) -> None:
    """Set global registry instance."""
    global _registry
    with _registry_lock:
        _registry = registry


def initialize(settings: Optional[Settings] = None) -> CacheRegistry:
    """Configure logging and the process-wide registry from settings."""
    settings = settings or Settings()
    configure_logging(settings)
    return configure_registry(get_registry(), settings)
