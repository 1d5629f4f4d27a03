"""Cache invalidation for changed records.

After a create, update or delete commits, every unique key of the record is
cleared with the attribute values both before and after the change. An update
that touches no key attribute clears each key once.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from support_table_cache.core.logging import get_logger
from support_table_cache.core.registry import CacheRegistry, get_registry
from support_table_cache.models.descriptor import CacheableTypeDescriptor
from support_table_cache.services.key_codec import CacheKey, derive_cache_key

logger = get_logger(__name__)


@dataclass
class RecordChange:
    """A committed change to one record.

    ``attributes`` holds the current values, ``previous`` the old values of
    the attributes the change touched.
    """
    attributes: Mapping[str, Any]
    previous: Mapping[str, Any] = field(default_factory=dict)
    created: bool = False
    deleted: bool = False

    def attributes_before(self, names) -> Optional[Dict[str, Any]]:
        """Values identifying the record before the change (None for a create)."""
        if self.created:
            return None
        return {name: self.previous[name] if name in self.previous else self.attributes.get(name)
                for name in names}

    def attributes_after(self, names) -> Optional[Dict[str, Any]]:
        """Values identifying the record after the change (None for a delete)."""
        if self.deleted:
            return None
        return {name: self.attributes.get(name) for name in names}


class CacheInvalidator:
    """Deletes cache entries affected by record changes."""

    def __init__(self, registry: Optional[CacheRegistry] = None):
        self._registry = registry

    @property
    def registry(self) -> CacheRegistry:
        return self._registry or get_registry()

    def affected_keys(self, descriptor: CacheableTypeDescriptor, change: RecordChange) -> List[CacheKey]:
        """Cache keys for the record before and after the change, de-duplicated."""
        keys: List[CacheKey] = []
        for unique_key in descriptor.unique_keys:
            names = unique_key.attribute_names
            for attributes in (change.attributes_before(names), change.attributes_after(names)):
                if attributes is None:
                    continue
                cache_key = derive_cache_key(descriptor.type_name, attributes,
                                             names, unique_key.case_sensitive)
                if cache_key is not None and cache_key not in keys:
                    keys.append(cache_key)
        return keys

    def delete_keys(self, descriptor: CacheableTypeDescriptor, keys: List[CacheKey]) -> int:
        """Delete keys from the type's effective cache.

        Returns:
            Number of delete calls made
        """
        if not keys:
            return 0
        cache = self.registry.resolve_cache(descriptor)
        if cache is None:
            return 0
        for cache_key in keys:
            cache.delete(cache_key)
        logger.debug("Invalidated support table cache entries",
                     type_name=descriptor.type_name, keys=len(keys))
        return len(keys)

    def invalidate(self, descriptor: CacheableTypeDescriptor, change: RecordChange) -> int:
        """Delete every cache entry a committed change may have made stale."""
        return self.delete_keys(descriptor, self.affected_keys(descriptor, change))

    def uncache(self, descriptor: CacheableTypeDescriptor, attributes: Mapping[str, Any]) -> int:
        """Remove the cache entries for a record with these current attributes."""
        return self.invalidate(descriptor, RecordChange(attributes=attributes))
