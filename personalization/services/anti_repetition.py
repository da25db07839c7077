import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict

from personalization.core.keys import KeySpace, validate_user_id
from personalization.core.tags import split_combo_key
from personalization.recs.config import PolicyConfig
from personalization.recs.types import RepeatCategory
from personalization.schemas.outfits import OutfitTags
from personalization.services.taste_profile import utcnow
from personalization.store.base import KeyValueStore

logger = logging.getLogger("personalization.anti_repetition")

_EPS = 1e-9


def combo_overlap(a: str, b: str) -> float:
    """Shared colors over the larger combo; order independent."""
    sa, sb = split_combo_key(a), split_combo_key(b)
    if not sa or not sb:
        return 0.0
    return len(sa & sb) / max(len(sa), len(sb))


class AntiRepetitionCache:
    """Time-windowed record of what each user was recently shown.

    Entries live in one hash per user and category (key -> shown-at epoch
    seconds); age is checked on read, so nothing needs sweeping for
    correctness. ``prune`` only bounds storage.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        keys: KeySpace | None = None,
        config: PolicyConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.keys = keys or KeySpace()
        self.config = config or PolicyConfig()
        self._clock = clock

    def _key(self, user_id: str, category: RepeatCategory) -> str:
        return self.keys.user("shown", user_id, category.value)

    def ttl(self, category: RepeatCategory) -> timedelta:
        return timedelta(days=self.config.repeat_ttl_days[RepeatCategory(category)])

    def _fresh(self, entries: Dict[str, str], category: RepeatCategory, now: datetime) -> Dict[str, datetime]:
        ttl = self.ttl(category)
        out: Dict[str, datetime] = {}
        for key, raw in entries.items():
            try:
                shown_at = datetime.fromtimestamp(float(raw), tz=timezone.utc)
            except (TypeError, ValueError):
                continue
            if now - shown_at < ttl:
                out[key] = shown_at
        return out

    def _matches(self, category: RepeatCategory, candidate: str, seen: str) -> bool:
        if category is RepeatCategory.COLOR_COMBO:
            return combo_overlap(candidate, seen) >= self.config.repeat_combo_overlap - _EPS
        return candidate == seen

    async def recent(self, user_id: str, category: RepeatCategory) -> Dict[str, datetime]:
        uid = validate_user_id(user_id)
        category = RepeatCategory(category)
        return self._fresh(await self.store.hgetall(self._key(uid, category)), category, self._clock())

    async def was_recently_shown(self, user_id: str, category: RepeatCategory, key: str) -> bool:
        category = RepeatCategory(category)
        if not key:
            return False
        recent = await self.recent(user_id, category)
        return any(self._matches(category, key, seen) for seen in recent)

    def is_repeat(self, recent: Dict[RepeatCategory, Dict[str, datetime]], category: RepeatCategory, key: str) -> bool:
        """Same check as ``was_recently_shown`` over entries already loaded."""
        return any(self._matches(category, key, seen) for seen in recent.get(category, {}))

    async def load_all(self, user_id: str) -> Dict[RepeatCategory, Dict[str, datetime]]:
        return {c: await self.recent(user_id, c) for c in RepeatCategory}

    async def record(self, user_id: str, category: RepeatCategory, key: str) -> None:
        uid = validate_user_id(user_id)
        category = RepeatCategory(category)
        if not key:
            return
        await self.store.hset(self._key(uid, category), {key: self._clock().timestamp()})

    async def record_outfit(self, user_id: str, outfit: OutfitTags) -> None:
        for category, key in outfit.repeat_keys().items():
            await self.record(user_id, category, key)

    async def prune(self, user_id: str) -> int:
        uid = validate_user_id(user_id)
        now = self._clock()
        removed = 0
        for category in RepeatCategory:
            key = self._key(uid, category)
            entries = await self.store.hgetall(key)
            stale = [k for k in entries if k not in self._fresh(entries, category, now)]
            if stale:
                removed += await self.store.hdel(key, *stale)
        if removed:
            logger.debug("anti-repetition: pruned user=%s entries=%s", uid, removed)
        return removed
