"""Support table cache exception hierarchy."""

from typing import Any, Mapping, Optional


class SupportTableCacheError(Exception):
    """Base exception for all support table cache errors."""


class CacheConfigurationError(SupportTableCacheError, ValueError):
    """Invalid cache declaration or a lookup that cannot use the cache."""


class RecordNotFound(SupportTableCacheError, LookupError):
    """A strict lookup found no record."""

    def __init__(self, type_name: str, attributes: Optional[Mapping[str, Any]] = None):
        self.type_name = type_name
        self.attributes = dict(attributes or {})
        super().__init__(f"Couldn't find {type_name}")
