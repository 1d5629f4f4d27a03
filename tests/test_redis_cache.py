"""Tests for the Redis cache store with a mocked client."""

import pickle
from unittest.mock import MagicMock

import pytest

from support_table_cache import CacheKey, RedisCache


@pytest.fixture
def client():
    client = MagicMock()
    client.get.return_value = None
    client.delete.return_value = 1
    return client


@pytest.fixture
def cache(client):
    return RedisCache(client, namespace="lookups", scan_batch_size=2)


KEY = CacheKey("Status", (("name", "one"),))
REDIS_KEY = 'lookups:Status:{"name":"one"}'


class TestRedisCache:

    def test_cache_keys_are_namespaced(self, cache):
        assert cache.redis_key(KEY) == REDIS_KEY
        assert cache.redis_key("plain") == "lookups:plain"

    def test_hit_returns_unpickled_value(self, cache, client):
        client.get.return_value = pickle.dumps({"id": 1})
        loader = MagicMock()
        assert cache.fetch(KEY, loader) == {"id": 1}
        client.get.assert_called_once_with(REDIS_KEY)
        loader.assert_not_called()

    def test_miss_loads_and_writes_with_ttl(self, cache, client):
        assert cache.fetch(KEY, lambda: {"id": 1}, expires_in=1.5) == {"id": 1}
        redis_key, payload = client.set.call_args.args
        assert redis_key == REDIS_KEY
        assert pickle.loads(payload) == {"id": 1}
        assert client.set.call_args.kwargs == {"px": 1500}

    def test_write_without_ttl(self, cache, client):
        cache.write(KEY, "value")
        assert client.set.call_args.kwargs == {}

    def test_none_is_never_written(self, cache, client):
        assert cache.fetch(KEY, lambda: None) is None
        cache.write(KEY, None)
        client.set.assert_not_called()

    def test_read_never_loads(self, cache, client):
        assert cache.read(KEY) is None
        client.set.assert_not_called()

    def test_delete(self, cache, client):
        cache.delete(KEY)
        client.delete.assert_called_once_with(REDIS_KEY)

    def test_clear_only_deletes_the_namespace(self, cache, client):
        client.scan_iter.return_value = iter(["lookups:a", "lookups:b", "lookups:c"])
        cache.clear()
        client.scan_iter.assert_called_once_with(match="lookups:*", count=2)
        assert [call.args for call in client.delete.call_args_list] == [
            ("lookups:a", "lookups:b"),
            ("lookups:c",),
        ]

    def test_client_errors_propagate(self, cache, client):
        client.get.side_effect = ConnectionError("redis down")
        with pytest.raises(ConnectionError):
            cache.fetch(KEY, lambda: "value")
