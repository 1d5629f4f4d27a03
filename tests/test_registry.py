"""Tests for cache selection, disabling and test isolation."""

import threading
from unittest.mock import MagicMock, patch

import pytest

from support_table_cache import (
    CacheConfigurationError,
    CacheRegistry,
    CacheableTypeDescriptor,
    MemoryCache,
    RedisCache,
    Settings,
    build_cache_store,
    configure_registry,
    get_registry,
    set_registry,
)


@pytest.fixture
def registry():
    registry = CacheRegistry()
    registry.cache = MemoryCache()
    return registry


@pytest.fixture
def descriptor():
    descriptor = CacheableTypeDescriptor(type_name="Status")
    descriptor.cache_by("name")
    return descriptor


@pytest.fixture
def other_descriptor():
    descriptor = CacheableTypeDescriptor(type_name="Category")
    descriptor.cache_by("name")
    return descriptor


class TestGlobalCache:

    def test_never_set_cache_falls_back_to_ambient_cache(self):
        registry = CacheRegistry()
        assert registry.cache is None

        ambient = MemoryCache()
        registry.ambient_cache_provider = lambda: ambient
        assert registry.cache is ambient
        assert registry.cache_configured is False

    def test_explicit_none_turns_caching_off(self, descriptor):
        registry = CacheRegistry()
        registry.ambient_cache_provider = MemoryCache
        registry.cache = None
        assert registry.cache is None
        assert registry.resolve_cache(descriptor) is None

    def test_reset_cache_restores_the_ambient_fallback(self):
        registry = CacheRegistry()
        ambient = MemoryCache()
        registry.ambient_cache_provider = lambda: ambient
        registry.cache = None
        registry.reset_cache()
        assert registry.cache is ambient

    def test_type_cache_takes_precedence(self, registry, descriptor):
        own_cache = MemoryCache()
        descriptor.cache = own_cache
        assert registry.resolve_cache(descriptor) is own_cache

    def test_global_cache_is_used_without_type_cache(self, registry, descriptor):
        assert registry.resolve_cache(descriptor) is registry.cache

    def test_process_wide_registry(self):
        previous = get_registry()
        try:
            registry = CacheRegistry()
            set_registry(registry)
            assert get_registry() is registry
            set_registry(None)
            assert get_registry() is not registry
        finally:
            set_registry(previous)


class TestDisabling:

    def test_disable_in_a_block(self, registry, descriptor):
        with registry.disable():
            assert registry.is_disabled() is True
            assert registry.resolve_cache(descriptor) is None
            with registry.enable():
                assert registry.is_disabled() is False
                assert registry.resolve_cache(descriptor) is registry.cache
            assert registry.is_disabled() is True
        assert registry.is_disabled() is False

    def test_global_disable_flag(self, registry, descriptor):
        registry.disabled = True
        assert registry.resolve_cache(descriptor) is None
        with registry.enable():
            assert registry.resolve_cache(descriptor) is registry.cache

    def test_type_enable_wins_over_global_disable(self, registry, descriptor, other_descriptor):
        with registry.disable():
            with registry.enable_type("Status"):
                assert registry.resolve_cache(descriptor) is registry.cache
                assert registry.resolve_cache(other_descriptor) is None

    def test_type_disable_wins_over_global_enable(self, registry, descriptor, other_descriptor):
        with registry.disable_type("Status"):
            assert registry.resolve_cache(descriptor) is None
            assert registry.resolve_cache(other_descriptor) is registry.cache

    def test_permanent_type_setting(self, registry, descriptor):
        registry.set_type_disabled("Status", True)
        assert registry.is_disabled("Status") is True
        with registry.enable_type("Status"):
            assert registry.is_disabled("Status") is False
        registry.set_type_disabled("Status", None)
        assert registry.is_disabled("Status") is False

    def test_disable_is_local_to_the_thread(self, registry, descriptor):
        seen = []
        with registry.disable():
            thread = threading.Thread(target=lambda: seen.append(registry.resolve_cache(descriptor)))
            thread.start()
            thread.join()
        assert seen == [registry.cache]


class TestTesting:

    def test_testing_cache_supersedes_other_caches(self, registry, descriptor):
        descriptor.cache = MemoryCache()
        with registry.testing() as test_cache:
            assert registry.resolve_cache(descriptor) is test_cache
            assert test_cache is not registry.cache
        assert registry.testing_cache is None
        assert registry.resolve_cache(descriptor) is descriptor.cache

    def test_nested_testing_reuses_the_outer_cache(self, registry):
        with registry.testing() as outer:
            outer.write("key", "value")
            with registry.testing() as inner:
                assert inner is outer
                assert inner.read("key") == "value"
            assert registry.testing_cache is outer

    def test_disable_applies_inside_testing(self, registry, descriptor):
        with registry.testing():
            with registry.disable():
                assert registry.resolve_cache(descriptor) is None


class TestTtl:

    def test_type_ttl_then_default(self, registry, descriptor):
        assert registry.ttl_for(descriptor) is None
        registry.default_ttl = 30
        assert registry.ttl_for(descriptor) == 30
        descriptor.ttl = 5
        assert registry.ttl_for(descriptor) == 5


class TestRegistration:

    def test_descriptors_are_not_inherited(self, registry, descriptor):
        class Parent:
            pass

        class Child(Parent):
            pass

        registry.register(Parent, descriptor)
        assert registry.descriptor_for(Parent) is descriptor
        assert registry.descriptor_for(Child) is None
        with pytest.raises(CacheConfigurationError):
            registry.require_descriptor(Child)


class TestConfiguration:

    def test_configure_memory_backend(self):
        settings = Settings(_env_file=None, cache_backend="memory", cache_disabled=True, cache_ttl=120)
        registry = configure_registry(CacheRegistry(), settings)
        assert isinstance(registry.cache, MemoryCache)
        assert registry.disabled is True
        assert registry.default_ttl == 120

    def test_configure_none_backend(self):
        registry = CacheRegistry()
        registry.ambient_cache_provider = MemoryCache
        configure_registry(registry, Settings(_env_file=None, cache_backend="none"))
        assert registry.cache_configured is True
        assert registry.cache is None

    def test_configure_ambient_backend(self):
        registry = CacheRegistry()
        registry.cache = None
        ambient = MemoryCache()
        registry.ambient_cache_provider = lambda: ambient
        configure_registry(registry, Settings(_env_file=None, cache_backend="ambient"))
        assert registry.cache is ambient

    def test_redis_backend_requires_url(self):
        with pytest.raises(CacheConfigurationError):
            build_cache_store(Settings(_env_file=None, cache_backend="redis"))

    def test_redis_backend(self):
        settings = Settings(_env_file=None, cache_backend="redis",
                            redis_url="redis://localhost:6379/1", redis_namespace="lookups")
        with patch("support_table_cache.services.stores.redis_cache.redis.Redis.from_url") as from_url:
            from_url.return_value = MagicMock()
            store = build_cache_store(settings)
        assert isinstance(store, RedisCache)
        assert store.namespace == "lookups"
        assert from_url.call_args.args[0] == "redis://localhost:6379/1"

    def test_settings_from_environment(self, monkeypatch):
        monkeypatch.setenv("SUPPORT_TABLE_CACHE_CACHE_BACKEND", "none")
        monkeypatch.setenv("SUPPORT_TABLE_CACHE_CACHE_TTL", "15")
        settings = Settings(_env_file=None)
        assert settings.cache_backend == "none"
        assert settings.cache_ttl == 15

    def test_invalid_redis_url(self):
        with pytest.raises(ValueError):
            Settings(_env_file=None, redis_url="http://localhost")
