"""Canonical cache keys for unique-key lookups.

A cache key is only produced when the queried attribute names are exactly
one declared unique key. Attribute order never matters and, for case
insensitive keys, string values are lower-cased.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

# Collection values mean an IN query, which is never a point lookup.
_COLLECTION_TYPES = (list, tuple, set, frozenset, dict)


@dataclass(frozen=True)
class CacheKey:
    """Cache key for one record: the type name and its sorted key attributes."""
    type_name: str
    attributes: Tuple[Tuple[str, Any], ...]

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.attributes)

    def to_string(self) -> str:
        """Stable string form for string-keyed cache stores."""
        encoded = json.dumps(self.as_dict(), sort_keys=True, default=str, separators=(",", ":"))
        return f"{self.type_name}:{encoded}"

    def __str__(self) -> str:
        return self.to_string()


def normalize_attribute_names(attribute_names: Iterable[Any]) -> Tuple[str, ...]:
    """Sorted, de-duplicated attribute names as strings."""
    return tuple(sorted({str(name) for name in attribute_names}))


def derive_cache_key(type_name: str, attributes: Mapping[Any, Any],
                     key_attribute_names: Iterable[str],
                     case_sensitive: bool) -> Optional[CacheKey]:
    """Generate a consistent cache key for a set of attributes.

    Args:
        type_name: Name of the cached type
        attributes: Attributes used to find a record (str or str-like keys)
        key_attribute_names: Attribute names making up one unique key
        case_sensitive: False lower-cases string values in the key

    Returns:
        CacheKey, or None if the attributes are not cacheable by this key
    """
    if not attributes:
        return None
    key_names = normalize_attribute_names(key_attribute_names)
    if not key_names:
        return None

    values = {str(name): value for name, value in attributes.items()}
    if tuple(sorted(values)) != key_names:
        return None

    sorted_attributes = []
    for name in key_names:
        value = values[name]
        if isinstance(value, _COLLECTION_TYPES):
            return None
        if not case_sensitive and isinstance(value, str):
            value = str.lower(value)
        sorted_attributes.append((name, value))

    return CacheKey(type_name, tuple(sorted_attributes))
