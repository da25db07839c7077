"""Adaptive exploration rate for the third slot, plus echo-chamber detection.

Only feedback on the exploration slot moves the persisted rate. Pattern lock is
computed from the taste profile on every request and overrides the rate for
that request only.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from personalization.core.errors import StorageUnavailable
from personalization.core.keys import KeySpace, validate_user_id
from personalization.recs.config import PolicyConfig
from personalization.recs.types import Action, ExplorationState, PatternLockStatus, TasteProfile
from personalization.services.taste_profile import utcnow
from personalization.store.base import KeyValueStore

logger = logging.getLogger("personalization.exploration")

EXPLORATION_SLOT = 3
_EPS = 1e-9


def top2_share(weights: Dict[str, float]) -> Tuple[float, Optional[str]]:
    """Share of total weight held by the two heaviest tags, and the heaviest tag."""
    positive = sorted(((v, k) for k, v in weights.items() if v > 0), key=lambda vk: (-vk[0], vk[1]))
    total = sum(v for v, _ in positive)
    if total <= 0:
        return 0.0, None
    return sum(v for v, _ in positive[:2]) / total, positive[0][1]


def detect_pattern_lock(profile: TasteProfile, config: PolicyConfig) -> PatternLockStatus:
    color_share, top_color = top2_share(profile.color_weights)
    style_share, top_style = top2_share(profile.style_weights)
    reasons: List[str] = []
    if top_color is not None and color_share >= config.pattern_lock_color_share - _EPS:
        reasons.append(f"top-2 colors hold {color_share:.1%} of color weight")
    if top_style is not None and style_share >= config.pattern_lock_style_share - _EPS:
        reasons.append(f"top-2 styles hold {style_share:.1%} of style weight")
    return PatternLockStatus(
        is_locked=bool(reasons),
        color_share=color_share,
        style_share=style_share,
        reason="; ".join(reasons) or None,
        dominant_color=top_color,
        dominant_style=top_style,
    )


class ExplorationController:
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

    def _key(self, user_id: str) -> str:
        return self.keys.user("explore", user_id)

    def _clamp(self, value: float) -> float:
        return max(self.config.exploration_min, min(self.config.exploration_max, value))

    async def state(self, user_id: str) -> ExplorationState:
        uid = validate_user_id(user_id)
        h = await self.store.hgetall(self._key(uid))
        pct = float(h.get("percentage", self.config.exploration_default))
        last = h.get("last_updated")
        return ExplorationState(
            user_id=uid,
            exploration_percentage=self._clamp(pct),
            position3_likes=int(float(h.get("likes", 0))),
            position3_dislikes=int(float(h.get("dislikes", 0))),
            position3_skips=int(float(h.get("skips", 0))),
            position3_shown=int(float(h.get("shown", 0))),
            last_updated=datetime.fromisoformat(last) if last else None,
        )

    async def current(self, user_id: str) -> float:
        return (await self.state(user_id)).exploration_percentage

    async def _shift(self, uid: str, delta: float) -> float:
        return await self.store.hincrbyfloat_bounded(
            self._key(uid),
            "percentage",
            delta,
            lo=self.config.exploration_min,
            hi=self.config.exploration_max,
            default=self.config.exploration_default,
        )

    async def apply_feedback(self, user_id: str, action: Action) -> float:
        """Adjust the rate from feedback on the exploration slot."""
        uid = validate_user_id(user_id)
        action = Action(action)
        if action is Action.LIKE:
            delta, counter = self.config.exploration_like_delta, "likes"
        elif action is Action.DISLIKE:
            delta, counter = self.config.exploration_dislike_delta, "dislikes"
        elif action is Action.IGNORE:
            delta, counter = self.config.exploration_skip_delta, "skips"
        else:
            return await self.current(uid)
        await self.store.hincrbyfloat(self._key(uid), counter, 1)
        pct = await self._shift(uid, delta)
        await self.store.hset(self._key(uid), {"last_updated": self._clock().isoformat()})
        logger.debug("exploration: feedback user=%s action=%s pct=%.1f", uid, action.value, pct)
        return pct

    async def record_shown(self, user_id: str) -> None:
        uid = validate_user_id(user_id)
        await self.store.hincrbyfloat(self._key(uid), "shown", 1)

    def detect_pattern_lock(self, profile: TasteProfile) -> PatternLockStatus:
        return detect_pattern_lock(profile, self.config)

    async def effective_percentage(self, user_id: str, profile: TasteProfile) -> tuple[float, PatternLockStatus]:
        """Percentage for this request; the lock override is never persisted."""
        lock = self.detect_pattern_lock(profile)
        if lock.is_locked:
            logger.info("exploration: pattern lock user=%s reason=%s", user_id, lock.reason)
            return self.config.pattern_lock_exploration, lock
        try:
            return await self.current(user_id), lock
        except StorageUnavailable as e:
            logger.warning("exploration: state unavailable, default rate user=%s reason=%s", user_id, e)
            return self.config.exploration_default, lock
