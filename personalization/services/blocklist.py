import asyncio
import json
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Mapping, Sequence

from personalization.core.keys import KeySpace, validate_user_id
from personalization.core.tags import normalize_color, normalize_item_key, normalize_tag
from personalization.recs.config import PolicyConfig
from personalization.recs.types import BlockCategory, BlockCheck, BlockEntry, Blocklist, Severity
from personalization.schemas.outfits import OutfitTags
from personalization.services.taste_profile import utcnow
from personalization.store.base import KeyValueStore

logger = logging.getLogger("personalization.blocklist")

_NORMALIZERS = {
    BlockCategory.COLORS: normalize_color,
    BlockCategory.STYLES: normalize_tag,
    BlockCategory.ITEMS: normalize_item_key,
}
_DISLIKE_EVENTS_CAP = 50


def normalize_block_key(category: BlockCategory, key: str) -> str:
    return _NORMALIZERS[BlockCategory(category)](key)


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def check(blocklist: Blocklist, tags: Mapping[BlockCategory, Iterable[str]], *, now: datetime, config: PolicyConfig) -> BlockCheck:
    """Evaluate tags against a loaded blocklist.

    Hard matches exclude; soft and unexpired temporary matches stack penalties.
    A tag that is hard-blocked contributes no other penalty.
    """
    matched: List[BlockEntry] = []
    blocked = False
    penalty = 0.0
    temporary: Dict[tuple[BlockCategory, str], BlockEntry] = {
        (e.category, e.key): e for e in blocklist.temporary if e.expires_at is None or now <= e.expires_at
    }
    for category, values in tags.items():
        category = BlockCategory(category)
        hard = blocklist.hard.get(category, {})
        soft = blocklist.soft.get(category, {})
        for value in set(values):
            if value in hard:
                blocked = True
                matched.append(hard[value])
                continue
            if value in soft:
                penalty += config.soft_penalty
                matched.append(soft[value])
            temp = temporary.get((category, value))
            if temp is not None:
                penalty += config.temporary_penalty
                matched.append(temp)
    return BlockCheck(blocked=blocked, penalty=penalty, matched_entries=matched)


class BlocklistManager:
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

    def _key(self, user_id: str, *parts: str) -> str:
        return self.keys.user("block", user_id, *parts)

    def _entry(self, payload: str, category: BlockCategory, key: str, severity: Severity) -> BlockEntry:
        try:
            data = json.loads(payload)
        except (TypeError, ValueError):
            data = {}
        return BlockEntry(
            category=category,
            key=key,
            severity=severity,
            reason=data.get("reason", ""),
            expires_at=_parse_dt(data.get("expires_at")),
        )

    async def load(self, user_id: str) -> Blocklist:
        uid = validate_user_id(user_id)
        categories = list(BlockCategory)
        results = await asyncio.gather(
            *[self.store.hgetall(self._key(uid, "hard", c.value)) for c in categories],
            *[self.store.hgetall(self._key(uid, "soft", c.value)) for c in categories],
            self.store.hgetall(self._key(uid, "temp")),
        )
        n = len(categories)
        blocklist = Blocklist(user_id=uid)
        for i, c in enumerate(categories):
            blocklist.hard[c] = {k: self._entry(v, c, k, Severity.HARD) for k, v in results[i].items()}
            blocklist.soft[c] = {k: self._entry(v, c, k, Severity.SOFT) for k, v in results[n + i].items()}
        now = self._clock()
        for field, payload in results[-1].items():
            cat, _, key = field.partition("|")
            try:
                category = BlockCategory(cat)
            except ValueError:
                continue
            entry = self._entry(payload, category, key, Severity.TEMPORARY)
            # lazy expiry: stale entries are simply absent
            if entry.expires_at is not None and now > entry.expires_at:
                continue
            blocklist.temporary.append(entry)
        return blocklist

    async def is_blocked(self, user_id: str, tags: Mapping[BlockCategory, Iterable[str]]) -> BlockCheck:
        blocklist = await self.load(user_id)
        return check(blocklist, tags, now=self._clock(), config=self.config)

    async def add_to_hard(self, user_id: str, category: BlockCategory, key: str, reason: str = "user_blocked") -> str:
        uid = validate_user_id(user_id)
        category = BlockCategory(category)
        k = normalize_block_key(category, key)
        payload = json.dumps({"reason": reason, "added_at": self._clock().isoformat()})
        await self.store.hset(self._key(uid, "hard", category.value), {k: payload})
        logger.info("blocklist: hard add user=%s category=%s key=%s reason=%s", uid, category.value, k, reason)
        return k

    async def add_to_soft(self, user_id: str, category: BlockCategory, key: str, reason: str = "ignored") -> str:
        uid = validate_user_id(user_id)
        category = BlockCategory(category)
        k = normalize_block_key(category, key)
        payload = json.dumps({"reason": reason, "added_at": self._clock().isoformat()})
        await self.store.hsetnx(self._key(uid, "soft", category.value), k, payload)
        return k

    async def add_temporary(
        self,
        user_id: str,
        category: BlockCategory,
        key: str,
        duration_days: float | None = None,
        reason: str = "recently_shown",
    ) -> str:
        uid = validate_user_id(user_id)
        category = BlockCategory(category)
        k = normalize_block_key(category, key)
        days = self.config.temporary_block_days if duration_days is None else duration_days
        expires_at = self._clock() + timedelta(days=days)
        payload = json.dumps({"reason": reason, "expires_at": expires_at.isoformat()})
        await self.store.hset(self._key(uid, "temp"), {f"{category.value}|{k}": payload})
        return k

    async def remove_from_hard(self, user_id: str, category: BlockCategory, key: str) -> bool:
        uid = validate_user_id(user_id)
        category = BlockCategory(category)
        k = normalize_block_key(category, key)
        removed = await self.store.hdel(self._key(uid, "hard", category.value), k)
        await self.store.delete(self._key(uid, "dislikes", category.value, k))
        return removed > 0

    async def remove_from_soft(self, user_id: str, category: BlockCategory, key: str) -> bool:
        uid = validate_user_id(user_id)
        category = BlockCategory(category)
        k = normalize_block_key(category, key)
        return await self.store.hdel(self._key(uid, "soft", category.value), k) > 0

    def _within_window(self, events: Sequence[str], now: datetime) -> int:
        window = timedelta(days=self.config.promotion_window_days)
        count = 0
        for raw in events:
            ts = _parse_dt(raw)
            if ts is not None and now - ts <= window:
                count += 1
        return count

    async def record_dislike(self, user_id: str, category: BlockCategory, key: str) -> bool:
        """Soft-block a disliked tag; promote it to hard on the Nth dislike in the window.

        Returns True when this dislike triggered the promotion.
        """
        uid = validate_user_id(user_id)
        category = BlockCategory(category)
        k = normalize_block_key(category, key)
        if await self.store.hget(self._key(uid, "hard", category.value), k) is not None:
            return False

        now = self._clock()
        await self.add_to_soft(uid, category, k, reason="disliked")
        events_key = self._key(uid, "dislikes", category.value, k)
        await self.store.lpush_capped(events_key, now.isoformat(), _DISLIKE_EVENTS_CAP)
        count = self._within_window(await self.store.lrange(events_key), now)
        if count < self.config.promotion_dislikes:
            return False

        await self.add_to_hard(
            uid, category, k, reason=f"disliked {count}x within {self.config.promotion_window_days}d"
        )
        await self.store.hdel(self._key(uid, "soft", category.value), k)
        logger.info("blocklist: promoted soft->hard user=%s category=%s key=%s dislikes=%s", uid, category.value, k, count)
        return True

    async def analyze_ignored_session(self, user_id: str, ignored: Sequence[OutfitTags]) -> List[tuple[BlockCategory, str]]:
        """Soft-block colors and styles shared by most outfits of an ignored session."""
        if len(ignored) < 2:
            return []
        threshold = len(ignored) * self.config.ignored_session_share
        added: List[tuple[BlockCategory, str]] = []
        for category, values_of in (
            (BlockCategory.COLORS, lambda o: o.colors),
            (BlockCategory.STYLES, lambda o: o.styles),
        ):
            counts = Counter(v for outfit in ignored for v in set(values_of(outfit)))
            for value, count in sorted(counts.items()):
                if count >= threshold:
                    await self.add_to_soft(user_id, category, value, reason="ignored_session")
                    added.append((category, value))
        if added:
            logger.info("blocklist: ignored-session soft adds user=%s tags=%s", user_id, added)
        return added

    async def cleanup_expired(self, user_id: str) -> int:
        """Physically drop expired temporary entries and stale dislike history."""
        uid = validate_user_id(user_id)
        now = self._clock()
        temp_key = self._key(uid, "temp")
        expired = []
        for field, payload in (await self.store.hgetall(temp_key)).items():
            exp = _parse_dt((json.loads(payload) if payload else {}).get("expires_at"))
            if exp is not None and now > exp:
                expired.append(field)
        removed = await self.store.hdel(temp_key, *expired) if expired else 0

        for events_key in await self.store.scan_keys(self._key(uid, "dislikes", "*")):
            if self._within_window(await self.store.lrange(events_key), now) == 0:
                await self.store.delete(events_key)
                removed += 1
        return removed
