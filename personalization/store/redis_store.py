import logging
from contextlib import asynccontextmanager
from typing import Mapping, Optional

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from personalization.core.errors import StorageUnavailable

logger = logging.getLogger("personalization.store")

# KEYS[1] hash; ARGV: field, amount, default, lo, hi ("" = unbounded)
BOUNDED_INCR_LUA = """
local cur = redis.call('HGET', KEYS[1], ARGV[1])
local v = tonumber(cur or ARGV[3]) + tonumber(ARGV[2])
if ARGV[4] ~= '' and v < tonumber(ARGV[4]) then v = tonumber(ARGV[4]) end
if ARGV[5] ~= '' and v > tonumber(ARGV[5]) then v = tonumber(ARGV[5]) end
local s = string.format('%.17g', v)
redis.call('HSET', KEYS[1], ARGV[1], s)
return s
"""


def _bound(value: float | None) -> str:
    return "" if value is None else repr(float(value))


class RedisStore:
    def __init__(self, client: Redis) -> None:
        self._r = client
        self._bounded_incr = client.register_script(BOUNDED_INCR_LUA)

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: Optional[float] = 1.0) -> "RedisStore":
        return cls(Redis.from_url(url, decode_responses=True, socket_timeout=socket_timeout))

    @asynccontextmanager
    async def _guard(self, op: str, key: str):
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            logger.warning("store:redis %s failed key=%s reason=%s", op, key, e)
            raise StorageUnavailable(f"redis_{op}_failed") from e

    async def hgetall(self, key: str) -> dict[str, str]:
        async with self._guard("hgetall", key):
            return await self._r.hgetall(key)

    async def hget(self, key: str, field: str) -> str | None:
        async with self._guard("hget", key):
            return await self._r.hget(key, field)

    async def hset(self, key: str, mapping: Mapping[str, str | float | int]) -> None:
        if not mapping:
            return
        async with self._guard("hset", key):
            await self._r.hset(key, mapping={k: str(v) for k, v in mapping.items()})

    async def hsetnx(self, key: str, field: str, value: str | float | int) -> bool:
        async with self._guard("hsetnx", key):
            return bool(await self._r.hsetnx(key, field, str(value)))

    async def hincrbyfloat(self, key: str, field: str, amount: float) -> float:
        async with self._guard("hincrbyfloat", key):
            return float(await self._r.hincrbyfloat(key, field, amount))

    async def hincrbyfloat_bounded(
        self,
        key: str,
        field: str,
        amount: float,
        *,
        lo: float | None = None,
        hi: float | None = None,
        default: float = 0.0,
    ) -> float:
        args = [field, repr(float(amount)), repr(float(default)), _bound(lo), _bound(hi)]
        async with self._guard("hincrbyfloat_bounded", key):
            # the script returns a string; Lua numbers would be truncated to integers
            return float(await self._bounded_incr(keys=[key], args=args))

    async def hdel(self, key: str, *fields: str) -> int:
        if not fields:
            return 0
        async with self._guard("hdel", key):
            return int(await self._r.hdel(key, *fields))

    async def lpush_capped(self, key: str, value: str, cap: int) -> None:
        async with self._guard("lpush", key):
            async with self._r.pipeline(transaction=True) as pipe:
                pipe.lpush(key, value)
                pipe.ltrim(key, 0, cap - 1)
                await pipe.execute()

    async def lrange(self, key: str) -> list[str]:
        async with self._guard("lrange", key):
            return await self._r.lrange(key, 0, -1)

    async def set_nx(self, key: str, value: str, ttl_s: int) -> bool:
        async with self._guard("set", key):
            return bool(await self._r.set(key, value, ex=ttl_s, nx=True))

    async def delete(self, key: str) -> None:
        async with self._guard("delete", key):
            await self._r.delete(key)

    async def scan_keys(self, pattern: str) -> list[str]:
        async with self._guard("scan", pattern):
            return [k async for k in self._r.scan_iter(match=pattern, count=500)]

    async def ping(self) -> bool:
        async with self._guard("ping", "-"):
            return bool(await self._r.ping())

    async def close(self) -> None:
        await self._r.aclose()
