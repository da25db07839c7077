from typing import Mapping, Protocol


class KeyValueStore(Protocol):
    """Keyed store with hash documents, atomic per-field increments and lazy TTL.

    Values come back as strings, the way a Redis client with
    ``decode_responses=True`` returns them.
    """

    async def hgetall(self, key: str) -> dict[str, str]:
        ...

    async def hget(self, key: str, field: str) -> str | None:
        ...

    async def hset(self, key: str, mapping: Mapping[str, str | float | int]) -> None:
        ...

    async def hsetnx(self, key: str, field: str, value: str | float | int) -> bool:
        ...

    async def hincrbyfloat(self, key: str, field: str, amount: float) -> float:
        ...

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
        """Add ``amount`` and clamp to ``[lo, hi]`` in one atomic step.

        A missing field starts from ``default``.
        """
        ...

    async def hdel(self, key: str, *fields: str) -> int:
        ...

    async def lpush_capped(self, key: str, value: str, cap: int) -> None:
        ...

    async def lrange(self, key: str) -> list[str]:
        ...

    async def set_nx(self, key: str, value: str, ttl_s: int) -> bool:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def scan_keys(self, pattern: str) -> list[str]:
        ...

    async def ping(self) -> bool:
        ...
