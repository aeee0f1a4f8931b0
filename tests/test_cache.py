from datetime import datetime
from unittest import mock

import fakeredis
import pytest
import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from mini_social.cache import FALLBACK, CacheStore, Connected


def connected_store(client, clock=None):
    store = CacheStore(clock=clock) if clock else CacheStore()
    store.initialize("redis://cache.test:6379/0", timeout=0.5, client_factory=lambda url, **kwargs: client)
    return store


@pytest.fixture
def fake_redis():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def failing_client():
    """A Redis client whose every command after PING fails."""
    client = mock.create_autospec(redis.Redis, instance=True)
    client.ping.return_value = True
    return client


# -----------------------
# In-memory backend
# -----------------------
class TestMemoryBackend:
    def test_starts_in_fallback(self, cache):
        assert cache.state is FALLBACK
        assert cache.backend == "memory"

    @pytest.mark.parametrize(
        "value",
        [{"id": 1, "name": "Ada"}, [1, 2, 3], "text", 42, 3.5, True, {"nested": {"list": [None, "x"]}}],
    )
    def test_set_then_get_returns_value(self, cache, value):
        cache.set("user:1", value, 60)
        assert cache.get("user:1") == value

    def test_get_returns_copy_not_shared_reference(self, cache):
        value = {"likes": [1]}
        cache.set("post:1", value, 60)
        value["likes"].append(2)
        assert cache.get("post:1") == {"likes": [1]}

    def test_missing_key(self, cache):
        assert cache.get("nope") is None

    def test_expired_entry_is_absent_and_purged(self, cache, clock):
        cache.set("user:1", {"id": 1}, 1)
        clock.advance(1.5)
        assert cache.get("user:1") is None
        assert "user:1" not in cache._entries

    def test_entry_alive_until_ttl(self, cache, clock):
        cache.set("user:1", {"id": 1}, 10)
        clock.advance(9)
        assert cache.get("user:1") == {"id": 1}

    def test_default_ttl_is_one_hour(self, cache, clock):
        cache.set("k", "v")
        clock.advance(3599)
        assert cache.get("k") == "v"
        clock.advance(2)
        assert cache.get("k") is None

    def test_non_positive_ttl_removes_key(self, cache):
        cache.set("k", "v", 60)
        cache.set("k", "other", 0)
        assert cache.get("k") is None

    def test_delete_missing_key_is_noop(self, cache):
        cache.set("a", 1, 60)
        cache.delete("missing")
        assert cache.get("missing") is None
        assert cache.get("a") == 1

    def test_delete_present_key(self, cache):
        cache.set("a", 1, 60)
        cache.delete("a")
        cache.delete("a")
        assert cache.get("a") is None

    def test_clear_with_pattern(self, cache):
        cache.set("posts:all:latest", [], 60)
        cache.set("posts:all:0:50", [], 60)
        cache.set("posts:user:1", [], 60)
        cache.set("user:1", {}, 60)

        cache.clear("posts:all:*")

        assert cache.get("posts:all:latest") is None
        assert cache.get("posts:all:0:50") is None
        assert cache.get("posts:user:1") == []
        assert cache.get("user:1") == {}

    def test_clear_everything(self, cache):
        cache.set("a", 1, 60)
        cache.set("b", 2, 60)
        cache.clear()
        assert cache.get("a") is None
        assert cache.get("b") is None

    def test_unserialisable_value_is_dropped(self, cache):
        loop = []
        loop.append(loop)
        cache.set("bad", loop, 60)
        assert cache.get("bad") is None

    @pytest.mark.parametrize("value", [{1, 2}, {"at": datetime(2024, 1, 1, 12)}, object()])
    def test_non_json_value_is_dropped_not_stringified(self, cache, value):
        cache.set("bad", value, 60)
        assert cache.get("bad") is None

    def test_close_drops_entries(self, cache):
        cache.set("a", 1, 60)
        cache.close()
        assert cache.get("a") is None


# -----------------------
# initialize()
# -----------------------
class TestInitialize:
    def test_no_url_stays_in_memory(self):
        factory = mock.Mock()
        store = CacheStore()
        store.initialize(None, client_factory=factory)
        assert store.state is FALLBACK
        factory.assert_not_called()

    def test_unreachable_redis_falls_back(self):
        factory = mock.Mock(side_effect=RedisConnectionError("connection refused"))
        store = CacheStore()
        store.initialize("redis://nowhere:6379/0", client_factory=factory)
        assert store.state is FALLBACK

    @pytest.mark.parametrize("url", ["localhost:6379", "cache.internal:6379", "http://cache.internal"])
    def test_malformed_url_falls_back(self, url):
        store = CacheStore()
        store.initialize(url, timeout=0.1)
        assert store.state is FALLBACK
        store.set("k", "v", 60)
        assert store.get("k") == "v"

    def test_failed_ping_falls_back(self, failing_client):
        failing_client.ping.side_effect = RedisTimeoutError("timed out")
        store = connected_store(failing_client)
        assert store.state is FALLBACK
        store.set("k", "v", 60)
        assert store.get("k") == "v"

    def test_timeouts_passed_to_client(self, fake_redis):
        factory = mock.Mock(return_value=fake_redis)
        store = CacheStore()
        store.initialize("redis://cache.test:6379/0", timeout=0.25, client_factory=factory)
        factory.assert_called_once_with(
            "redis://cache.test:6379/0",
            socket_timeout=0.25,
            socket_connect_timeout=0.25,
            decode_responses=True,
        )
        assert store.state == Connected(fake_redis)


# -----------------------
# Redis backend
# -----------------------
class TestRedisBackend:
    def test_round_trip(self, fake_redis):
        store = connected_store(fake_redis)
        assert store.backend == "redis"
        store.set("user:1", {"id": 1, "name": "Ada"}, 60)
        assert store.get("user:1") == {"id": 1, "name": "Ada"}
        assert 0 < fake_redis.ttl("user:1") <= 60

    def test_delete(self, fake_redis):
        store = connected_store(fake_redis)
        store.set("user:1", {"id": 1}, 60)
        store.delete("user:1")
        store.delete("user:1")
        assert store.get("user:1") is None

    def test_clear_pattern(self, fake_redis):
        store = connected_store(fake_redis)
        store.set("posts:all:latest", [1], 60)
        store.set("posts:user:7", [2], 60)
        store.clear("posts:all:*")
        assert store.get("posts:all:latest") is None
        assert store.get("posts:user:7") == [2]

    def test_clear_pattern_without_matches(self, fake_redis):
        store = connected_store(fake_redis)
        store.set("user:1", 1, 60)
        store.clear("posts:*")
        assert store.get("user:1") == 1

    def test_clear_all_flushes_db(self, fake_redis):
        store = connected_store(fake_redis)
        store.set("a", 1, 60)
        store.set("b", 2, 60)
        store.clear()
        assert fake_redis.dbsize() == 0

    def test_corrupt_entry_is_a_miss(self, fake_redis):
        store = connected_store(fake_redis)
        fake_redis.set("user:1", "{not json")
        assert store.get("user:1") is None


# -----------------------
# Fail-open behaviour
# -----------------------
class TestFailOpen:
    def test_every_operation_survives_a_broken_backend(self, failing_client):
        for method in (failing_client.get, failing_client.setex, failing_client.delete,
                       failing_client.scan_iter, failing_client.flushdb):
            method.side_effect = ResponseError("ERR broken")
        store = connected_store(failing_client)

        store.set("k", {"v": 1}, 60)
        assert store.get("k") is None
        store.delete("k")
        store.clear("k*")
        store.clear()
        assert store.get("k") is None
        # command errors are not transport failures; the client is kept
        assert isinstance(store.state, Connected)

    @pytest.mark.parametrize("error", [RedisConnectionError("connection reset"), RedisTimeoutError("timed out")])
    def test_transport_error_switches_to_memory_for_good(self, failing_client, error):
        failing_client.get.side_effect = error
        store = connected_store(failing_client)

        assert store.get("user:1") is None
        assert store.state is FALLBACK
        failing_client.close.assert_called_once()

        store.set("user:1", {"id": 1}, 60)
        assert store.get("user:1") == {"id": 1}
        failing_client.setex.assert_not_called()
        assert failing_client.get.call_count == 1

    def test_failed_write_is_lost_not_raised(self, failing_client):
        failing_client.setex.side_effect = RedisConnectionError("connection reset")
        store = connected_store(failing_client)

        store.set("user:1", {"id": 1}, 60)
        assert store.get("user:1") is None
        assert store.state is FALLBACK

    def test_failed_clear_falls_back(self, failing_client):
        failing_client.scan_iter.side_effect = RedisTimeoutError("timed out")
        store = connected_store(failing_client)
        store.clear("posts:*")
        assert store.state is FALLBACK
