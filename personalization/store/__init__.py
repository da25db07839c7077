from personalization.core.config import Settings, settings as default_settings
from personalization.store.base import KeyValueStore
from personalization.store.in_memory import InMemoryStore
from personalization.store.redis_store import RedisStore
from personalization.store.retrying import RetryingStore

__all__ = ["KeyValueStore", "InMemoryStore", "RedisStore", "RetryingStore", "get_store"]


def get_store(config: Settings | None = None) -> KeyValueStore:
    config = config or default_settings
    if config.STORE_BACKEND == "redis":
        return RedisStore.from_url(config.REDIS_URL)
    return InMemoryStore()
