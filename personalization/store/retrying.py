"""Per-operation retry around any ``KeyValueStore``.

Each call is retried on its own, so an increment that already landed is never
replayed because a later call in the same interaction failed.
"""
import logging
from typing import Any, Awaitable, Callable, Mapping

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from personalization.core.errors import StorageUnavailable
from personalization.store.base import KeyValueStore

logger = logging.getLogger("personalization.store")


class RetryingStore:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        attempts: int = 3,
        min_s: float = 0.05,
        max_s: float = 1.0,
    ) -> None:
        self.inner = store
        self.attempts = attempts
        self.min_s = min_s
        self.max_s = max_s

    def _retrying(self, op: str) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.min_s, min=self.min_s, max=self.max_s),
            retry=retry_if_exception_type(StorageUnavailable),
            before_sleep=lambda rs: logger.warning(
                "store: unavailable, retrying op=%s attempt=%s", op, rs.attempt_number
            ),
            reraise=True,
        )

    async def _call(self, op: str, *args: Any, **kwargs: Any) -> Any:
        fn: Callable[..., Awaitable[Any]] = getattr(self.inner, op)
        async for attempt in self._retrying(op):
            with attempt:
                return await fn(*args, **kwargs)

    async def hgetall(self, key: str) -> dict[str, str]:
        return await self._call("hgetall", key)

    async def hget(self, key: str, field: str) -> str | None:
        return await self._call("hget", key, field)

    async def hset(self, key: str, mapping: Mapping[str, str | float | int]) -> None:
        await self._call("hset", key, mapping)

    async def hsetnx(self, key: str, field: str, value: str | float | int) -> bool:
        return await self._call("hsetnx", key, field, value)

    async def hincrbyfloat(self, key: str, field: str, amount: float) -> float:
        return await self._call("hincrbyfloat", key, field, amount)

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
        return await self._call("hincrbyfloat_bounded", key, field, amount, lo=lo, hi=hi, default=default)

    async def hdel(self, key: str, *fields: str) -> int:
        return await self._call("hdel", key, *fields)

    async def lpush_capped(self, key: str, value: str, cap: int) -> None:
        await self._call("lpush_capped", key, value, cap)

    async def lrange(self, key: str) -> list[str]:
        return await self._call("lrange", key)

    async def set_nx(self, key: str, value: str, ttl_s: int) -> bool:
        return await self._call("set_nx", key, value, ttl_s)

    async def delete(self, key: str) -> None:
        await self._call("delete", key)

    async def scan_keys(self, pattern: str) -> list[str]:
        return await self._call("scan_keys", pattern)

    async def ping(self) -> bool:
        return await self.inner.ping()
