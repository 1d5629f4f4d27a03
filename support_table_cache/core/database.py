"""SQLModel record store and commit-time cache invalidation."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import event, inspect
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from support_table_cache.core.config import Settings
from support_table_cache.core.logging import get_logger
from support_table_cache.core.registry import CacheRegistry, get_registry
from support_table_cache.models.descriptor import CacheableTypeDescriptor
from support_table_cache.services.invalidation import CacheInvalidator, RecordChange
from support_table_cache.services.key_codec import CacheKey

logger = get_logger(__name__)

PENDING_KEYS = "support_table_cache.pending_keys"
REGISTRY_KEY = "support_table_cache.registry"


class Database:
    """Database service with SQLModel."""

    def __init__(self, settings: Settings, registry: Optional[CacheRegistry] = None):
        self.settings = settings
        self.registry = registry
        self.engine = None
        self.session_factory = None

    def startup(self):
        """Initialize database connection and create tables."""
        try:
            logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
            logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

            engine_options: Dict[str, Any] = {"echo": self.settings.database_echo}
            if self.settings.database_url.startswith("sqlite"):
                engine_options["connect_args"] = {"check_same_thread": False}
                if self.settings.is_in_memory_database:
                    # One shared connection, otherwise each connection sees an empty database
                    engine_options["poolclass"] = StaticPool

            self.engine = create_engine(self.settings.database_url, **engine_options)

            self.session_factory = sessionmaker(
                bind=self.engine,
                class_=Session,
                info={REGISTRY_KEY: self.registry} if self.registry else {}
            )
            install_invalidation_hooks(self.session_factory)

            SQLModel.metadata.create_all(self.engine)

            logger.info("Database initialized successfully")

        except Exception as e:
            logger.error("Database startup failed", error=str(e))
            raise

    def shutdown(self):
        """Close database connections."""
        if self.engine:
            self.engine.dispose()
            logger.info("Database connections closed")

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """Get database session."""
        if not self.session_factory:
            raise RuntimeError("Database not initialized")

        with self.session_factory() as session:
            try:
                yield session
            except Exception:
                session.rollback()
                raise


# ============================================================================
# Invalidation hooks
# ============================================================================

def _session_registry(session) -> CacheRegistry:
    return session.info.get(REGISTRY_KEY) or get_registry()


def record_change(instance: Any, descriptor: CacheableTypeDescriptor,
                  created: bool = False, deleted: bool = False) -> RecordChange:
    """Describe a pending change of a mapped instance from its attribute history."""
    state = inspect(instance)
    attributes: Dict[str, Any] = {}
    previous: Dict[str, Any] = {}
    for name in descriptor.attribute_names():
        attribute = state.attrs[name]
        attributes[name] = attribute.value
        history = attribute.history
        if history.deleted:
            previous[name] = history.deleted[0]
    return RecordChange(attributes=attributes, previous=previous, created=created, deleted=deleted)


def _load_key_attributes(session, flush_context, instances) -> None:
    """Load key attributes of changed and deleted records while their rows still exist."""
    registry = _session_registry(session)
    for instance in list(session.dirty) + list(session.deleted):
        descriptor = registry.descriptor_for(type(instance))
        if descriptor is None:
            continue
        for name in descriptor.attribute_names():
            getattr(instance, name)


def _collect_changes(session, flush_context) -> None:
    """Queue cache keys made stale by this flush until the transaction commits."""
    registry = _session_registry(session)
    invalidator = CacheInvalidator(registry)
    pending: List[Tuple[CacheableTypeDescriptor, List[CacheKey]]] = session.info.setdefault(PENDING_KEYS, [])

    changes = (
        [(instance, True, False) for instance in session.new]
        + [(instance, False, False) for instance in session.dirty if session.is_modified(instance)]
        + [(instance, False, True) for instance in session.deleted]
    )
    for instance, created, deleted in changes:
        descriptor = registry.descriptor_for(type(instance))
        if descriptor is None or not descriptor.cacheable:
            continue
        change = record_change(instance, descriptor, created=created, deleted=deleted)
        pending.append((descriptor, invalidator.affected_keys(descriptor, change)))


def _delete_pending(session) -> None:
    pending = session.info.get(PENDING_KEYS)
    if not pending:
        return
    invalidator = CacheInvalidator(_session_registry(session))
    for descriptor, keys in pending:
        invalidator.delete_keys(descriptor, keys)


def _invalidate_committed(session) -> None:
    _delete_pending(session)
    session.info.pop(PENDING_KEYS, None)


def _invalidate_rolled_back(session) -> None:
    """Delete queued keys after a rollback, including a SAVEPOINT rollback.

    Lookups made after autoflush may have cached rows that were never
    committed. The queue survives a SAVEPOINT rollback because changes flushed
    earlier in the enclosing transaction can still commit.
    """
    _delete_pending(session)


def _end_transaction(session, transaction) -> None:
    if transaction.parent is None:
        session.info.pop(PENDING_KEYS, None)


_HOOKS = (
    ("before_flush", _load_key_attributes),
    ("after_flush", _collect_changes),
    ("after_commit", _invalidate_committed),
    ("after_rollback", _invalidate_rolled_back),
    ("after_transaction_end", _end_transaction),
)


def install_invalidation_hooks(target: Any = Session) -> None:
    """Clear cache entries of support table records after each commit.

    Args:
        target: Session class, sessionmaker or session to listen on
    """
    for identifier, hook in _HOOKS:
        if not event.contains(target, identifier, hook):
            event.listen(target, identifier, hook)
