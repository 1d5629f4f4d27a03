"""Read-through cache for small, rarely changed support tables.

Lookups by a declared unique key are answered from a cache and invalidated
whenever a record of the table is created, updated or deleted.
"""

from support_table_cache.exceptions import (
    SupportTableCacheError,
    CacheConfigurationError,
    RecordNotFound,
)
from support_table_cache.core.config import Settings
from support_table_cache.core.logging import configure_logging
from support_table_cache.core.context import ScopedContext
from support_table_cache.core.registry import (
    CacheRegistry,
    build_cache_store,
    configure_registry,
    get_registry,
    initialize,
    set_registry,
)
from support_table_cache.core.database import Database, install_invalidation_hooks
from support_table_cache.models.descriptor import CacheableTypeDescriptor, UniqueKey
from support_table_cache.services.key_codec import CacheKey, derive_cache_key
from support_table_cache.services.stores import CacheStore, MemoryCache, RedisCache
from support_table_cache.services.lookup import LookupInterceptor
from support_table_cache.services.invalidation import CacheInvalidator, RecordChange
from support_table_cache.services.support_tables import (
    SupportTableQuery,
    cache_by,
    cached_belongs_to,
    disable_cache,
    enable_cache,
    fetch_by,
    find_by,
    load_cache,
    query,
    register_support_table,
    reset_cache_by,
    support_table,
    uncache,
)

__version__ = "1.0.0"

__all__ = [
    # Errors
    "SupportTableCacheError",
    "CacheConfigurationError",
    "RecordNotFound",
    # Core
    "Settings",
    "configure_logging",
    "ScopedContext",
    "CacheRegistry",
    "build_cache_store",
    "configure_registry",
    "get_registry",
    "initialize",
    "set_registry",
    "Database",
    "install_invalidation_hooks",
    # Models
    "CacheableTypeDescriptor",
    "UniqueKey",
    # Services
    "CacheKey",
    "derive_cache_key",
    "CacheStore",
    "MemoryCache",
    "RedisCache",
    "LookupInterceptor",
    "CacheInvalidator",
    "RecordChange",
    # Support tables
    "SupportTableQuery",
    "cache_by",
    "cached_belongs_to",
    "disable_cache",
    "enable_cache",
    "fetch_by",
    "find_by",
    "load_cache",
    "query",
    "register_support_table",
    "reset_cache_by",
    "support_table",
    "uncache",
]
