"""
Shared builders for personalization tests: a controllable clock, stores that
fail or yield on demand, and the candidate sets used by the end-to-end scenarios.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from personalization.core.errors import StorageUnavailable
from personalization.store.in_memory import InMemoryStore

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def epoch(self) -> float:
        return self.now.timestamp()


class FlakyStore(InMemoryStore):
    """In-memory store whose reads and writes raise ``StorageUnavailable`` while ``failures`` > 0."""

    def __init__(self, clock, failures: int = 0) -> None:
        super().__init__(clock=clock)
        self.failures = failures
        self.calls = 0

    def _maybe_fail(self, op: str) -> None:
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise StorageUnavailable(f"flaky_{op}")

    async def hgetall(self, key):
        self._maybe_fail("hgetall")
        return await super().hgetall(key)

    async def hget(self, key, field):
        self._maybe_fail("hget")
        return await super().hget(key, field)

    async def hset(self, key, mapping):
        self._maybe_fail("hset")
        await super().hset(key, mapping)

    async def hincrbyfloat(self, key, field, amount):
        self._maybe_fail("hincrbyfloat")
        return await super().hincrbyfloat(key, field, amount)

    async def hincrbyfloat_bounded(self, key, field, amount, **bounds):
        self._maybe_fail("hincrbyfloat_bounded")
        return await super().hincrbyfloat_bounded(key, field, amount, **bounds)

    async def set_nx(self, key, value, ttl_s):
        self._maybe_fail("set_nx")
        return await super().set_nx(key, value, ttl_s)


class YieldingStore(InMemoryStore):
    """Hands control back to the event loop before every read and write, like a network store."""

    async def hgetall(self, key):
        await asyncio.sleep(0)
        return await super().hgetall(key)

    async def hset(self, key, mapping):
        await asyncio.sleep(0)
        await super().hset(key, mapping)

    async def hincrbyfloat(self, key, field, amount):
        await asyncio.sleep(0)
        return await super().hincrbyfloat(key, field, amount)

    async def hincrbyfloat_bounded(self, key, field, amount, **bounds):
        await asyncio.sleep(0)
        return await super().hincrbyfloat_bounded(key, field, amount, **bounds)


def cold_start_candidates() -> List[Dict[str, Any]]:
    return [
        {"id": "o1", "colors": ["#000080"]},
        {"id": "o2", "colors": ["#CC5500"]},
        {"id": "o3", "colors": ["#FFFFFF"]},
    ]


def taste_scenario_candidates() -> List[Dict[str, Any]]:
    return [
        {"id": "burnt", "colors": ["#CC5500"], "styles": ["minimalist"]},
        {"id": "maxi", "colors": ["#000080"], "styles": ["maximalist"]},
        {"id": "white", "colors": ["#FFFFFF"], "styles": ["casual"]},
    ]
