"""Support table declarations and cached queries for SQLModel tables.

Usage:
    from support_table_cache import cache_by, query, support_table

    @support_table(ttl=300)
    class Status(SQLModel, table=True):
        id: Optional[int] = Field(default=None, primary_key=True)
        name: str = Field(unique=True)

    cache_by(Status, "id")
    cache_by(Status, "name", case_sensitive=False)

    with database.get_session() as session:
        active = query(session, Status).find_by(name="active")
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Type, TypeVar, Union

from sqlalchemy.orm import object_session
from sqlalchemy.orm.exc import DetachedInstanceError
from sqlmodel import Session, SQLModel, select

from support_table_cache.core.logging import get_logger
from support_table_cache.core.registry import CacheRegistry, get_registry
from support_table_cache.exceptions import CacheConfigurationError
from support_table_cache.models.descriptor import CacheableTypeDescriptor, UniqueKey
from support_table_cache.services.invalidation import CacheInvalidator
from support_table_cache.services.key_codec import derive_cache_key
from support_table_cache.services.lookup import LookupInterceptor
from support_table_cache.services.stores.base import CacheStore

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=SQLModel)


# ============================================================================
# Declarations
# ============================================================================

def register_support_table(model: Type[ModelT], *, ttl: Optional[float] = None,
                           cache: Optional[CacheStore] = None, type_name: Optional[str] = None,
                           default_scope: Optional[Mapping[str, Any]] = None,
                           registry: Optional[CacheRegistry] = None) -> CacheableTypeDescriptor:
    """Make a SQLModel table cacheable.

    Args:
        model: Table model class
        ttl: Seconds cached records stay valid (None = until invalidated)
        cache: Cache to use for this model instead of the global cache
        type_name: Name used in cache keys, defaults to the class name
        default_scope: Equality filter applied to every query of the model
        registry: Registry to register with, defaults to the global one

    Returns:
        The model's descriptor, with no unique keys declared yet
    """
    registry = registry or get_registry()
    descriptor = registry.descriptor_for(model)
    if descriptor is None:
        descriptor = CacheableTypeDescriptor(type_name=type_name or model.__name__)
    elif type_name:
        descriptor.type_name = type_name
    descriptor.ttl = ttl
    descriptor.cache = cache
    descriptor.default_scope = {str(k): v for k, v in (default_scope or {}).items()}
    return registry.register(model, descriptor)


def support_table(**options):
    """Class decorator form of register_support_table."""
    def decorator(model):
        register_support_table(model, **options)
        return model
    return decorator


def cache_by(model: Type[SQLModel], attributes: Union[str, Iterable[str]], case_sensitive: bool = True,
             where: Optional[Mapping[str, Any]] = None,
             registry: Optional[CacheRegistry] = None) -> UniqueKey:
    """Declare a unique key of a registered model. Can be called repeatedly."""
    descriptor = (registry or get_registry()).require_descriptor(model)
    return descriptor.cache_by(attributes, case_sensitive=case_sensitive, where=where)


def reset_cache_by(model: Type[SQLModel], registry: Optional[CacheRegistry] = None) -> None:
    """Drop every unique key declared for a model."""
    (registry or get_registry()).require_descriptor(model).reset()


# ============================================================================
# Queries
# ============================================================================

class SupportTableQuery:
    """Equality-scoped query on a support table with cached point lookups."""

    def __init__(self, session: Session, model: Type[ModelT],
                 scope: Optional[Mapping[str, Any]] = None,
                 registry: Optional[CacheRegistry] = None,
                 use_default_scope: bool = True):
        self.session = session
        self.model = model
        self.registry = registry or get_registry()
        self.descriptor = self.registry.require_descriptor(model)
        self.use_default_scope = use_default_scope
        self._scope: Dict[str, Any] = {str(k): v for k, v in (scope or {}).items()}
        self._lookup = LookupInterceptor(self.registry)

    @property
    def scope_attributes(self) -> Dict[str, Any]:
        """Attributes of the scope chain, default scope first."""
        attributes = dict(self.descriptor.default_scope) if self.use_default_scope else {}
        attributes.update(self._scope)
        return attributes

    def where(self, **attributes) -> "SupportTableQuery":
        """Narrow the scope; later values replace earlier ones."""
        scope = dict(self._scope)
        scope.update(attributes)
        return SupportTableQuery(self.session, self.model, scope, self.registry, self.use_default_scope)

    def unscoped(self) -> "SupportTableQuery":
        """Same query without the model's default scope."""
        return SupportTableQuery(self.session, self.model, self._scope, self.registry, False)

    def _backing_lookup(self, attributes: Dict[str, Any]):
        return self.session.exec(select(self.model).filter_by(**attributes)).first()

    def find_by(self, **attributes) -> Optional[ModelT]:
        return self._lookup.find_by(self.descriptor, attributes, self._backing_lookup,
                                    self.scope_attributes)

    def find_by_or_raise(self, **attributes) -> ModelT:
        return self._lookup.find_by_or_raise(self.descriptor, attributes, self._backing_lookup,
                                             self.scope_attributes)

    def fetch_by(self, **attributes) -> Optional[ModelT]:
        """Same as find_by, but raises CacheConfigurationError if the query can't use the cache."""
        return self._lookup.fetch_by(self.descriptor, attributes, self._backing_lookup,
                                     self.scope_attributes)

    def fetch_by_or_raise(self, **attributes) -> ModelT:
        return self._lookup.fetch_by_or_raise(self.descriptor, attributes, self._backing_lookup,
                                              self.scope_attributes)

    def all(self):
        return self.session.exec(select(self.model).filter_by(**self.scope_attributes)).all()


def query(session: Session, model: Type[ModelT], registry: Optional[CacheRegistry] = None) -> SupportTableQuery:
    return SupportTableQuery(session, model, registry=registry)


def find_by(session: Session, model: Type[ModelT], **attributes) -> Optional[ModelT]:
    return query(session, model).find_by(**attributes)


def fetch_by(session: Session, model: Type[ModelT], **attributes) -> Optional[ModelT]:
    return query(session, model).fetch_by(**attributes)


# ============================================================================
# Cache maintenance
# ============================================================================

def load_cache(session: Session, model: Type[SQLModel], registry: Optional[CacheRegistry] = None) -> int:
    """Load every record of a model into the cache.

    Only call this on small tables: it reads the whole table.
    """
    registry = registry or get_registry()
    descriptor = registry.require_descriptor(model)
    records = session.exec(select(model)).all()
    return LookupInterceptor(registry).warm(descriptor, records)


def uncache(record: SQLModel, registry: Optional[CacheRegistry] = None) -> int:
    """Remove the cache entries for a record."""
    registry = registry or get_registry()
    descriptor = registry.require_descriptor(type(record))
    attributes = {name: getattr(record, name) for name in descriptor.attribute_names()}
    return CacheInvalidator(registry).uncache(descriptor, attributes)


@contextmanager
def disable_cache(model: Type[SQLModel], disabled: bool = True,
                  registry: Optional[CacheRegistry] = None) -> Iterator[None]:
    """Disable caching for one model within the with block."""
    registry = registry or get_registry()
    with registry.disable_type(registry.require_descriptor(model).type_name, disabled):
        yield


@contextmanager
def enable_cache(model: Type[SQLModel], registry: Optional[CacheRegistry] = None) -> Iterator[None]:
    with disable_cache(model, False, registry=registry):
        yield


# ============================================================================
# Cached references
# ============================================================================

def _unfiltered_key(descriptor: CacheableTypeDescriptor, attribute_name: str) -> Optional[UniqueKey]:
    """The key a plain lookup by one attribute resolves to, if no static filter guards it."""
    for unique_key in descriptor.unique_keys:
        if unique_key.where:
            return None
        if unique_key.attribute_names == (attribute_name,):
            return unique_key
    return None


def cached_belongs_to(target: Type[ModelT], foreign_key: str, primary_key: str = "id",
                      registry: Optional[CacheRegistry] = None) -> property:
    """Read-only property resolving a reference to a support table through the cache.

    Usage:
        class Task(SQLModel, table=True):
            status_id: Optional[int] = Field(default=None, foreign_key="status.id")
            status = cached_belongs_to(Status, "status_id")

    The target must declare a unique key on ``primary_key``; the reference
    shares its cache entries and invalidation.

    A record that is not attached to a session can only be served from the
    cache; a miss raises DetachedInstanceError.
    """
    def load(record) -> Optional[ModelT]:
        key_value = getattr(record, foreign_key)
        if key_value is None:
            return None

        active_registry = registry or get_registry()
        descriptor = active_registry.descriptor_for(target)
        if descriptor is None:
            raise CacheConfigurationError(f"{target.__name__} is not a registered support table")

        def backing_lookup():
            session = object_session(record)
            if session is None:
                raise DetachedInstanceError(
                    f"{type(record).__name__} is not bound to a session; cannot load {target.__name__}")
            return session.exec(select(target).filter_by(**{primary_key: key_value})).first()

        if not any(key.attribute_names == (primary_key,) for key in descriptor.unique_keys):
            raise CacheConfigurationError(
                f"{descriptor.type_name} does not cache queries by {primary_key}")
        unique_key = _unfiltered_key(descriptor, primary_key)

        cache = active_registry.resolve_cache(descriptor)
        if cache is None or unique_key is None:
            return backing_lookup()
        cache_key = derive_cache_key(descriptor.type_name, {primary_key: key_value},
                                     unique_key.attribute_names, unique_key.case_sensitive)
        if cache_key is None:
            return backing_lookup()
        return cache.fetch(cache_key, backing_lookup, expires_in=active_registry.ttl_for(descriptor))

    load.__name__ = f"cached_{target.__name__.lower()}"
    load.__doc__ = f"{target.__name__} referenced by {foreign_key}, read through the cache."
    return property(load)
