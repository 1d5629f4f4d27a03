"""Read-through point lookups.

The interceptor wraps a backing lookup function. It decides whether a
``find_by`` style query can be answered from the cache and, on a miss, lets
the backing lookup run and stores its result. The backing lookup always
receives the full merged attribute map, including query scope attributes and
static filter values.
"""

from typing import Any, Callable, Dict, Iterable, Iterator, Mapping, Optional, TypeVar

from support_table_cache.core.logging import get_logger
from support_table_cache.core.registry import CacheRegistry, get_registry
from support_table_cache.exceptions import CacheConfigurationError, RecordNotFound
from support_table_cache.models.descriptor import CacheableTypeDescriptor
from support_table_cache.services.key_codec import CacheKey, derive_cache_key

logger = get_logger(__name__)

T = TypeVar("T")

BackingLookup = Callable[[Dict[str, Any]], Optional[T]]


def merge_attributes(attributes: Optional[Mapping[str, Any]],
                     scope_attributes: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Union of scope and call attributes; call attributes win on conflict."""
    merged = {str(name): value for name, value in (scope_attributes or {}).items()}
    merged.update({str(name): value for name, value in (attributes or {}).items()})
    return merged


def _to_sentence(names: Iterable[str]) -> str:
    names = list(names)
    if len(names) <= 1:
        return "".join(names)
    return f"{', '.join(names[:-1])} and {names[-1]}"


class LookupInterceptor:
    """Cache-aware point lookups for cacheable types."""

    def __init__(self, registry: Optional[CacheRegistry] = None):
        self._registry = registry

    @property
    def registry(self) -> CacheRegistry:
        return self._registry or get_registry()

    def cache_key_for(self, descriptor: CacheableTypeDescriptor,
                      attributes: Mapping[str, Any]) -> Optional[CacheKey]:
        """Derive the cache key for merged query attributes.

        Unique keys are tried in declaration order and the first match wins.
        A unique key whose static filter is absent from, or contradicted by,
        the attributes makes the whole query uncacheable. Filter attributes
        are implied by the filter, so they are left out of every later key.
        """
        if not attributes:
            return None

        key_attributes = dict(attributes)
        for unique_key in descriptor.unique_keys:
            if unique_key.where:
                if not unique_key.matches_filter(attributes):
                    return None
                for name in unique_key.where:
                    key_attributes.pop(name, None)

            cache_key = derive_cache_key(descriptor.type_name, key_attributes,
                                         unique_key.attribute_names, unique_key.case_sensitive)
            if cache_key is not None:
                return cache_key
        return None

    def find_by(self, descriptor: CacheableTypeDescriptor, attributes: Optional[Mapping[str, Any]],
                backing_lookup: BackingLookup, scope_attributes: Optional[Mapping[str, Any]] = None):
        """Find one record, from the cache when the query is cacheable.

        Args:
            descriptor: Cache declarations of the queried type
            attributes: Attributes passed to the lookup
            backing_lookup: Performs the real query with the merged attributes
            scope_attributes: Attributes of the query scope the lookup is chained on

        Returns:
            The record or None
        """
        merged = merge_attributes(attributes, scope_attributes)

        cache = self.registry.resolve_cache(descriptor)
        if cache is None:
            return backing_lookup(merged)

        cache_key = self.cache_key_for(descriptor, merged)
        if cache_key is None:
            logger.debug("Lookup not cacheable", type_name=descriptor.type_name,
                         attributes=sorted(merged))
            return backing_lookup(merged)

        return cache.fetch(cache_key, lambda: backing_lookup(merged),
                           expires_in=self.registry.ttl_for(descriptor))

    def find_by_or_raise(self, descriptor: CacheableTypeDescriptor,
                         attributes: Optional[Mapping[str, Any]], backing_lookup: BackingLookup,
                         scope_attributes: Optional[Mapping[str, Any]] = None):
        """Same as find_by, but raises RecordNotFound if there is no record."""
        record = self.find_by(descriptor, attributes, backing_lookup, scope_attributes)
        if record is None:
            raise RecordNotFound(descriptor.type_name, merge_attributes(attributes, scope_attributes))
        return record

    def fetch_by(self, descriptor: CacheableTypeDescriptor, attributes: Optional[Mapping[str, Any]],
                 backing_lookup: BackingLookup, scope_attributes: Optional[Mapping[str, Any]] = None):
        """Same as find_by, but first confirms the query can use the cache.

        Raises:
            CacheConfigurationError: If no unique key covers the queried attributes
        """
        names = sorted(merge_attributes(attributes, scope_attributes))
        if not any(unique_key.accepts_names(names) for unique_key in descriptor.unique_keys):
            raise CacheConfigurationError(
                f"{descriptor.type_name} does not cache queries by {_to_sentence(names)}")
        return self.find_by(descriptor, attributes, backing_lookup, scope_attributes)

    def fetch_by_or_raise(self, descriptor: CacheableTypeDescriptor,
                          attributes: Optional[Mapping[str, Any]], backing_lookup: BackingLookup,
                          scope_attributes: Optional[Mapping[str, Any]] = None):
        """Same as fetch_by, but raises RecordNotFound if there is no record."""
        record = self.fetch_by(descriptor, attributes, backing_lookup, scope_attributes)
        if record is None:
            raise RecordNotFound(descriptor.type_name, merge_attributes(attributes, scope_attributes))
        return record

    def warm(self, descriptor: CacheableTypeDescriptor, records: Iterable[Any],
             attribute_getter: Callable[[Any, str], Any] = getattr) -> int:
        """Load records into the cache under each of their unique keys.

        Only meant for small tables: every record is visited once.

        Returns:
            Number of records visited
        """
        cache = self.registry.resolve_cache(descriptor)
        if cache is None:
            return 0

        names = set(descriptor.attribute_names())
        for unique_key in descriptor.unique_keys:
            names.update(unique_key.where or ())

        ttl = self.registry.ttl_for(descriptor)
        count = 0
        for record in records:
            count += 1
            attributes = {name: attribute_getter(record, name) for name in names}
            for cache_key in self._record_cache_keys(descriptor, attributes):
                cache.fetch(cache_key, lambda record=record: record, expires_in=ttl)

        logger.info("Support table cache warmed", type_name=descriptor.type_name, records=count)
        return count

    @staticmethod
    def _record_cache_keys(descriptor: CacheableTypeDescriptor,
                           attributes: Mapping[str, Any]) -> Iterator[CacheKey]:
        """Keys a lookup could find this record under, in declaration order.

        Mirrors cache_key_for: once a static filter fails for the record, no
        lookup can reach any later key, so warming stops there.
        """
        excluded = set()
        for unique_key in descriptor.unique_keys:
            if unique_key.where:
                if not unique_key.matches_filter(attributes):
                    return
                excluded.update(unique_key.where)

            if excluded.intersection(unique_key.attribute_names):
                continue
            key_attributes = {name: attributes.get(name) for name in unique_key.attribute_names}
            cache_key = derive_cache_key(descriptor.type_name, key_attributes,
                                         unique_key.attribute_names, unique_key.case_sensitive)
            if cache_key is not None:
                yield cache_key
