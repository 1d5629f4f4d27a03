"""Cacheable type declarations."""

from support_table_cache.models.descriptor import CacheableTypeDescriptor, UniqueKey

__all__ = ["CacheableTypeDescriptor", "UniqueKey"]
