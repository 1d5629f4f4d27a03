"""Shared fixtures: a fresh registry and an in-memory SQLite record store per test."""

import pytest

from support_table_cache import CacheRegistry, Database, MemoryCache, Settings, set_registry

from support_models import Status, register_models


@pytest.fixture
def settings():
    return Settings(_env_file=None, database_url="sqlite://", cache_backend="memory")


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def registry(cache):
    registry = CacheRegistry()
    registry.cache = cache
    register_models(registry)
    set_registry(registry)
    yield registry
    set_registry(None)


@pytest.fixture
def database(settings, registry):
    database = Database(settings, registry=registry)
    database.startup()
    yield database
    database.shutdown()


@pytest.fixture
def session(database):
    with database.get_session() as session:
        yield session


@pytest.fixture
def records(session):
    """Two committed Status rows: One/First/one and Two/Second/two."""
    record_1 = Status(name="One", group="First", code="one", value=1)
    record_2 = Status(name="Two", group="Second", code="two", value=2)
    session.add(record_1)
    session.add(record_2)
    session.commit()
    session.refresh(record_1)
    session.refresh(record_2)
    return record_1, record_2
