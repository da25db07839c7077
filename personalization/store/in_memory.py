import fnmatch
import time
from typing import Any, Callable, Mapping


class InMemoryStore:
    """Process-local store for tests and single-process development.

    Every operation completes without yielding to the event loop, so per-field
    increments are atomic with respect to other coroutines.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: dict[str, Any] = {}
        self._expires: dict[str, float] = {}

    def _live(self, key: str) -> Any:
        exp = self._expires.get(key)
        if exp is not None and self._clock() >= exp:
            self._data.pop(key, None)
            self._expires.pop(key, None)
        return self._data.get(key)

    def _hash(self, key: str) -> dict[str, str]:
        h = self._live(key)
        if h is None:
            h = self._data[key] = {}
        return h

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(self._live(key) or {})

    async def hget(self, key: str, field: str) -> str | None:
        return (self._live(key) or {}).get(field)

    async def hset(self, key: str, mapping: Mapping[str, str | float | int]) -> None:
        h = self._hash(key)
        for field, value in mapping.items():
            h[field] = str(value)

    async def hsetnx(self, key: str, field: str, value: str | float | int) -> bool:
        h = self._hash(key)
        if field in h:
            return False
        h[field] = str(value)
        return True

    async def hincrbyfloat(self, key: str, field: str, amount: float) -> float:
        h = self._hash(key)
        new = float(h.get(field, 0.0)) + float(amount)
        h[field] = str(new)
        return new

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
        h = self._hash(key)
        new = float(h.get(field, default)) + float(amount)
        if lo is not None:
            new = max(lo, new)
        if hi is not None:
            new = min(hi, new)
        h[field] = str(new)
        return new

    async def hdel(self, key: str, *fields: str) -> int:
        h = self._live(key) or {}
        removed = 0
        for field in fields:
            if h.pop(field, None) is not None:
                removed += 1
        return removed

    async def lpush_capped(self, key: str, value: str, cap: int) -> None:
        lst = self._live(key)
        if lst is None:
            lst = self._data[key] = []
        lst.insert(0, value)
        del lst[cap:]

    async def lrange(self, key: str) -> list[str]:
        return list(self._live(key) or [])

    async def set_nx(self, key: str, value: str, ttl_s: int) -> bool:
        if self._live(key) is not None:
            return False
        self._data[key] = value
        self._expires[key] = self._clock() + ttl_s
        return True

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)
        self._expires.pop(key, None)

    async def scan_keys(self, pattern: str) -> list[str]:
        return [k for k in list(self._data) if fnmatch.fnmatchcase(k, pattern) and self._live(k) is not None]

    async def ping(self) -> bool:
        return True
