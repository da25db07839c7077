import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from personalization.core.cache import TTLCache
from personalization.core.errors import InvalidUserId, StorageUnavailable
from personalization.core.keys import KeySpace, validate_user_id
from personalization.store.in_memory import InMemoryStore
from personalization.store.redis_store import RedisStore
from personalization.store.retrying import RetryingStore
from tests.fixtures import FlakyStore


class Tick:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


def test_ttl_cache_expires_entries():
    tick = Tick()
    cache = TTLCache(ttl_s=10, clock=tick)
    cache.set("u1", "profile")
    assert cache.get("u1") == "profile"
    tick.t = 10.0
    assert cache.get("u1") is None
    assert len(cache) == 0


def test_ttl_cache_bounded_lru():
    cache = TTLCache(ttl_s=60, max_entries=2, clock=Tick())
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)
    assert "a" in cache
    assert "b" not in cache
    assert "c" in cache


def test_ttl_cache_cleanup_and_invalidate():
    tick = Tick()
    cache = TTLCache(ttl_s=5, clock=tick)
    cache.set("a", 1)
    cache.set("b", 2, ttl_s=50)
    cache.invalidate("missing")
    tick.t = 6.0
    assert cache.cleanup() == 1
    assert cache.get("b") == 2


def test_validate_user_id():
    assert validate_user_id(" user_1@example.com ") == "user_1@example.com"
    for bad in ["", "   ", "a:b", "-leading", "x" * 200, None, 42]:
        with pytest.raises(InvalidUserId):
            validate_user_id(bad)


def test_keyspace_round_trips_user():
    keys = KeySpace("pz")
    key = keys.user("shown", "u-1", "style")
    assert key == "pz:shown:u-1:style"
    assert keys.user_from_key(key) == "u-1"
    assert keys.pattern("block", "*") == "pz:block:*:*"


async def test_in_memory_hash_ops():
    store = InMemoryStore()
    assert await store.hincrbyfloat("h", "f", 2.5) == 2.5
    assert await store.hincrbyfloat("h", "f", -1) == 1.5
    assert await store.hsetnx("h", "g", 1) is True
    assert await store.hsetnx("h", "g", 2) is False
    assert await store.hgetall("h") == {"f": "1.5", "g": "1"}
    assert await store.hdel("h", "g", "missing") == 1
    assert await store.hget("h", "g") is None


async def test_in_memory_capped_list_and_scan():
    store = InMemoryStore()
    for i in range(5):
        await store.lpush_capped("l", str(i), 3)
    assert await store.lrange("l") == ["4", "3", "2"]
    await store.hset("pz:shown:u1:style", {"a": 1})
    await store.hset("pz:block:u2:temp", {"a": 1})
    assert await store.scan_keys("pz:shown:*") == ["pz:shown:u1:style"]


async def test_in_memory_set_nx_expires():
    now = [1000.0]
    store = InMemoryStore(clock=lambda: now[0])
    assert await store.set_nx("k", "1", 60) is True
    assert await store.set_nx("k", "1", 60) is False
    now[0] += 61
    assert await store.set_nx("k", "1", 60) is True


class DownScript:
    async def __call__(self, keys=None, args=None, client=None):
        raise RedisConnectionError("connection refused")


class DownRedis:
    def register_script(self, script):
        return DownScript()

    async def hgetall(self, key):
        raise RedisConnectionError("connection refused")

    async def hincrbyfloat(self, key, field, amount):
        raise OSError("network unreachable")


async def test_redis_errors_map_to_storage_unavailable():
    store = RedisStore(DownRedis())
    with pytest.raises(StorageUnavailable):
        await store.hgetall("k")
    with pytest.raises(StorageUnavailable):
        await store.hincrbyfloat("k", "f", 1)
    with pytest.raises(StorageUnavailable):
        await store.hincrbyfloat_bounded("k", "f", -1, lo=0)


async def test_redis_empty_writes_skip_round_trip():
    store = RedisStore(DownRedis())
    await store.hset("k", {})
    assert await store.hdel("k") == 0


class RecordingScript:
    def __init__(self, result):
        self.result = result
        self.calls = []

    async def __call__(self, keys=None, args=None, client=None):
        self.calls.append((keys, args))
        return self.result


class ScriptRedis:
    def __init__(self, result):
        self.script = RecordingScript(result)

    def register_script(self, script):
        return self.script


async def test_redis_bounded_increment_is_one_script_call():
    client = ScriptRedis("0.5")
    store = RedisStore(client)
    assert await store.hincrbyfloat_bounded("k", "#000080", -0.5, lo=0) == 0.5
    assert client.script.calls == [(["k"], ["#000080", "-0.5", "0.0", "0.0", ""])]


async def test_redis_bounded_increment_passes_default_and_cap():
    client = ScriptRedis("25")
    store = RedisStore(client)
    assert await store.hincrbyfloat_bounded("k", "percentage", 3, lo=5, hi=25, default=10) == 25.0
    assert client.script.calls[0][1] == ["percentage", "3.0", "10.0", "5.0", "25.0"]


async def test_in_memory_bounded_increment():
    store = InMemoryStore()
    assert await store.hincrbyfloat_bounded("h", "w", -0.5, lo=0) == 0.0
    assert await store.hincrbyfloat_bounded("h", "w", 2) == 2.0
    assert await store.hincrbyfloat_bounded("h", "p", 3, lo=5, hi=25, default=24) == 25.0
    assert await store.hincrbyfloat_bounded("h", "p", -2, lo=5, hi=25, default=24) == 23.0
    assert await store.hgetall("h") == {"w": "2.0", "p": "23.0"}


async def test_retrying_store_retries_only_the_failed_call():
    store = RetryingStore(FlakyStore(lambda: 0.0, failures=1), attempts=3, min_s=0, max_s=0)
    assert await store.hincrbyfloat_bounded("h", "w", 5, lo=0) == 5.0
    assert await store.hincrbyfloat_bounded("h", "w", 2, lo=0) == 7.0
    assert store.inner.calls == 3


async def test_retrying_store_gives_up_after_attempts():
    store = RetryingStore(FlakyStore(lambda: 0.0, failures=10), attempts=3, min_s=0, max_s=0)
    with pytest.raises(StorageUnavailable):
        await store.hgetall("h")
    assert store.inner.calls == 3
