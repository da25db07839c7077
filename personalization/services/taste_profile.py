"""Per-user taste profile: weighted tag counters learned from interactions.

Layout in the store (one hash per concern, all fields updated with atomic
increments so concurrent sessions for the same user never lose updates):

    <prefix>:taste:<user>:color      tag -> weight
    <prefix>:taste:<user>:style      tag -> weight
    <prefix>:taste:<user>:occasion   tag -> weight
    <prefix>:taste:<user>:season     tag -> weight
    <prefix>:taste:<user>:totals     likes / wears / ... / accuracy
    <prefix>:taste:<user>:meta       last_updated
    <prefix>:taste:<user>:proven     list of color-combo keys, newest first
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from personalization.core.cache import TTLCache
from personalization.core.errors import StorageUnavailable
from personalization.core.keys import KeySpace, validate_user_id
from personalization.recs.config import PolicyConfig, delta_for
from personalization.recs.types import Action, Dimension, TasteProfile
from personalization.schemas.outfits import OutfitTags
from personalization.store.base import KeyValueStore

logger = logging.getLogger("personalization.taste")

TOTAL_FIELDS = {
    Action.LIKE: "likes",
    Action.WEAR: "wears",
    Action.SELECT: "selections",
    Action.IGNORE: "ignores",
    Action.SHOPPING_CLICK: "shopping_clicks",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def confidence_for(interactions: int) -> float:
    """Engagement-depth confidence; more likes and wears, more confidence."""
    if interactions <= 0:
        return 0.0
    if interactions < 10:
        return 20.0
    if interactions < 25:
        return 50.0
    if interactions < 50:
        return 75.0
    return 95.0


def tags_for(tags: OutfitTags, dimension: Dimension) -> List[str]:
    if dimension is Dimension.COLOR:
        return list(tags.colors)
    if dimension is Dimension.STYLE:
        return list(tags.styles)
    if dimension is Dimension.OCCASION:
        return [tags.occasion] if tags.occasion else []
    return [tags.season] if tags.season else []


def top_tags(profile: TasteProfile, dimension: Dimension, n: int = 5) -> List[tuple[str, float]]:
    weights = profile.weights(dimension)
    ranked = sorted(((k, v) for k, v in weights.items() if v > 0), key=lambda kv: (-kv[1], kv[0]))
    return ranked[:n]


def _floats(h: Dict[str, str]) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for k, v in h.items():
        try:
            val = float(v)
        except (TypeError, ValueError):
            logger.warning("taste: unreadable weight field=%s value=%r", k, v)
            continue
        if val > 0:
            out[k] = val
    return out


class TasteProfileStore:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        keys: KeySpace | None = None,
        config: PolicyConfig | None = None,
        cache: Optional[TTLCache[TasteProfile]] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.keys = keys or KeySpace()
        self.config = config or PolicyConfig()
        self.cache = cache
        self._clock = clock

    def _key(self, user_id: str, part: str) -> str:
        return self.keys.user("taste", user_id, part)

    async def get(self, user_id: str) -> TasteProfile:
        uid = validate_user_id(user_id)
        if self.cache is not None:
            cached = self.cache.get(uid)
            if cached is not None:
                return cached

        color, style, occasion, season, totals, meta, proven = await asyncio.gather(
            self.store.hgetall(self._key(uid, Dimension.COLOR.value)),
            self.store.hgetall(self._key(uid, Dimension.STYLE.value)),
            self.store.hgetall(self._key(uid, Dimension.OCCASION.value)),
            self.store.hgetall(self._key(uid, Dimension.SEASON.value)),
            self.store.hgetall(self._key(uid, "totals")),
            self.store.hgetall(self._key(uid, "meta")),
            self.store.lrange(self._key(uid, "proven")),
        )
        t = _floats(totals)
        likes = int(t.get("likes", 0))
        wears = int(t.get("wears", 0))
        last = meta.get("last_updated")
        profile = TasteProfile(
            user_id=uid,
            color_weights=_floats(color),
            style_weights=_floats(style),
            occasion_weights=_floats(occasion),
            seasonal_weights=_floats(season),
            total_likes=likes,
            total_wears=wears,
            total_shopping_clicks=int(t.get("shopping_clicks", 0)),
            total_selections=int(t.get("selections", 0)),
            total_ignores=int(t.get("ignores", 0)),
            accuracy_score=max(t.get("accuracy", 0.0), confidence_for(likes + wears)),
            proven_combinations=proven[: self.config.proven_combinations_cap],
            last_updated=datetime.fromisoformat(last) if last else None,
        )
        if self.cache is not None:
            self.cache.set(uid, profile)
        return profile

    async def get_or_default(self, user_id: str) -> TasteProfile:
        """Read path for scoring: a cold-start profile when the store is down."""
        try:
            return await self.get(user_id)
        except StorageUnavailable as e:
            logger.warning("taste: store unavailable, cold-start profile user=%s reason=%s", user_id, e)
            return TasteProfile(user_id=validate_user_id(user_id))

    async def apply_delta(self, user_id: str, tags: OutfitTags, action: Action) -> None:
        uid = validate_user_id(user_id)
        action = Action(action)
        delta = delta_for(action, self.config.action_deltas)

        if delta:
            for dimension in Dimension:
                key = self._key(uid, dimension.value)
                for tag in tags_for(tags, dimension):
                    await self.store.hincrbyfloat_bounded(key, tag, delta, lo=0.0)

        total_field = TOTAL_FIELDS.get(action)
        if total_field:
            await self.store.hincrbyfloat(self._key(uid, "totals"), total_field, 1)

        if action is Action.WEAR and tags.colors:
            await self.store.lpush_capped(
                self._key(uid, "proven"), tags.combo_key, self.config.proven_combinations_cap
            )

        await self.store.hset(self._key(uid, "meta"), {"last_updated": self._clock().isoformat()})
        if action in (Action.LIKE, Action.WEAR):
            await self.recalc_accuracy_score(uid)
        if self.cache is not None:
            self.cache.invalidate(uid)
        logger.debug("taste: applied action=%s delta=%s user=%s", action.value, delta, uid)

    async def recalc_accuracy_score(self, user_id: str) -> float:
        uid = validate_user_id(user_id)
        key = self._key(uid, "totals")
        totals = _floats(await self.store.hgetall(key))
        previous = totals.get("accuracy", 0.0)
        computed = confidence_for(int(totals.get("likes", 0)) + int(totals.get("wears", 0)))
        if computed > previous:
            await self.store.hset(key, {"accuracy": computed})
            return computed
        return previous

    async def style_insights(self, user_id: str, n: int = 5) -> Dict[str, Any]:
        profile = await self.get(user_id)
        shown_feedback = profile.total_likes + profile.total_wears + profile.total_ignores
        engaged = profile.total_likes + profile.total_wears
        return {
            "top_colors": top_tags(profile, Dimension.COLOR, n),
            "top_styles": top_tags(profile, Dimension.STYLE, n),
            "top_occasions": top_tags(profile, Dimension.OCCASION, n),
            "proven_combinations": list(profile.proven_combinations),
            "engagement_rate": round(100.0 * engaged / shown_feedback, 1) if shown_feedback else 0.0,
            "accuracy_score": profile.accuracy_score,
        }

    async def reset(self, user_id: str) -> None:
        uid = validate_user_id(user_id)
        for part in [d.value for d in Dimension] + ["totals", "meta", "proven"]:
            await self.store.delete(self._key(uid, part))
        if self.cache is not None:
            self.cache.invalidate(uid)
