"""Cacheable type declarations.

Each cacheable type owns one descriptor listing its unique keys. Declarations
are accumulated at registration time and never inherited: a subtype gets its
own descriptor and calls :meth:`CacheableTypeDescriptor.reset` to replace
what it was given.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from support_table_cache.exceptions import CacheConfigurationError
from support_table_cache.services.key_codec import normalize_attribute_names
from support_table_cache.services.stores.base import CacheStore


@dataclass(frozen=True)
class UniqueKey:
    """One declared unique key.

    ``where`` is a static filter (for example a "not soft-deleted" default
    scope) that a query must carry exactly for this key to apply.
    """
    attribute_names: Tuple[str, ...]
    case_sensitive: bool = True
    where: Optional[Mapping[str, Any]] = None

    def accepts_names(self, names: Sequence[str]) -> bool:
        """Check if a query on exactly these attribute names can use this key."""
        names = tuple(sorted(names))
        if names == self.attribute_names:
            return True
        if self.where:
            return names == normalize_attribute_names(self.attribute_names + tuple(self.where))
        return False

    def matches_filter(self, attributes: Mapping[str, Any]) -> bool:
        """Check if every static filter attribute is present with the same value."""
        if not self.where:
            return True
        return all(name in attributes and attributes[name] == value
                   for name, value in self.where.items())


@dataclass
class CacheableTypeDescriptor:
    """Cache declarations for one type."""
    type_name: str
    unique_keys: List[UniqueKey] = field(default_factory=list)
    ttl: Optional[float] = None
    cache: Optional[CacheStore] = None
    default_scope: Dict[str, Any] = field(default_factory=dict)

    def cache_by(self, attributes: Union[str, Iterable[str]], case_sensitive: bool = True,
                 where: Optional[Mapping[str, Any]] = None) -> UniqueKey:
        """Declare a unique key that lookups can be cached by.

        Args:
            attributes: Attribute name, or names making up a composite key
            case_sensitive: False treats string values as case insensitive
            where: Static filter the query must match for the key to apply

        Returns:
            The declared UniqueKey
        """
        if isinstance(attributes, str):
            attributes = [attributes]
        names = normalize_attribute_names(attributes)
        if not names:
            raise CacheConfigurationError(f"{self.type_name} unique key needs at least one attribute")
        if where is not None and not isinstance(where, Mapping):
            raise CacheConfigurationError(
                f"{self.type_name} unique key filter must be a mapping, got {type(where).__name__}")

        unique_key = UniqueKey(
            attribute_names=names,
            case_sensitive=bool(case_sensitive),
            where={str(k): v for k, v in where.items()} if where else None,
        )
        self.unique_keys.append(unique_key)
        return unique_key

    def reset(self, unique_keys: Optional[Iterable[UniqueKey]] = None) -> None:
        """Replace all unique key declarations."""
        self.unique_keys = list(unique_keys or [])

    def attribute_names(self) -> List[str]:
        """Every attribute name used by any unique key, sorted."""
        names = set()
        for unique_key in self.unique_keys:
            names.update(unique_key.attribute_names)
        return sorted(names)

    @property
    def cacheable(self) -> bool:
        return bool(self.unique_keys)
