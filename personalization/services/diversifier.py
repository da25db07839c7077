"""70/20/10 slot assignment over scored, filtered candidates.

Slot 1 is the safe bet, slot 2 an adjacent step, slot 3 the learning boundary
that is sometimes filled with a deliberately weaker candidate so the profile
keeps learning. Hard blocks are never relaxed; repetition is relaxed before a
request is allowed to come back short.
"""
import asyncio
import logging
import random
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Sequence, Tuple, TypeVar, Union

from personalization.core.errors import StorageUnavailable
from personalization.core.keys import validate_user_id
from personalization.recs.config import PolicyConfig
from personalization.recs.types import TIER_LABELS, Blocklist, RepeatCategory, Tier
from personalization.schemas.outfits import CandidateOutfit
from personalization.schemas.recs import RecommendationOut, RecommendationsOut
from personalization.services import blocklist as blocklist_rules
from personalization.services.anti_repetition import AntiRepetitionCache
from personalization.services.blocklist import BlocklistManager
from personalization.services.exploration import ExplorationController
from personalization.services.scoring import MatchScorer, ScoredOutfit
from personalization.services.taste_profile import TasteProfileStore, utcnow

logger = logging.getLogger("personalization.diversifier")

SLOTS = 3
SLOT_TIERS = (Tier.SAFE_BET, Tier.ADJACENT, Tier.LEARNING)
GENERIC_EXPLANATION = "Picked from today's fresh suggestions while your style profile catches up."

T = TypeVar("T")
CandidateIn = Union[CandidateOutfit, Mapping[str, Any]]


class RecommendationDiversifier:
    def __init__(
        self,
        taste: TasteProfileStore,
        blocklists: BlocklistManager,
        repetition: AntiRepetitionCache,
        exploration: ExplorationController,
        scorer: MatchScorer | None = None,
        *,
        config: PolicyConfig | None = None,
        rng: random.Random | None = None,
        timeout_s: float = 1.5,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.taste = taste
        self.blocklists = blocklists
        self.repetition = repetition
        self.exploration = exploration
        self.config = config or PolicyConfig()
        self.scorer = scorer or MatchScorer(self.config)
        self.rng = rng or random.Random()
        self.timeout_s = timeout_s
        self._clock = clock

    async def _safe(self, what: str, user_id: str, aw: Awaitable[T], default: T) -> T:
        try:
            return await aw
        except StorageUnavailable as e:
            logger.warning("diversifier: %s unavailable user=%s reason=%s", what, user_id, e)
            return default

    async def _load(self, uid: str):
        profile, blocklist, recent = await asyncio.gather(
            self.taste.get_or_default(uid),
            self._safe("blocklist", uid, self.blocklists.load(uid), Blocklist(user_id=uid)),
            self._safe("anti-repetition", uid, self.repetition.load_all(uid), {}),
        )
        pct, lock = await self.exploration.effective_percentage(uid, profile)
        return profile, blocklist, recent, pct, lock

    async def select_recommendations(self, user_id: str, candidates: Sequence[CandidateIn]) -> List[RecommendationOut]:
        return (await self.select(user_id, candidates)).items

    async def select(self, user_id: str, candidates: Sequence[CandidateIn]) -> RecommendationsOut:
        uid = validate_user_id(user_id)
        outfits = [c if isinstance(c, CandidateOutfit) else CandidateOutfit.model_validate(c) for c in candidates]
        if not outfits:
            logger.warning("diversifier: no candidates user=%s", uid)
            return RecommendationsOut(user_id=uid, items=[], exploration_percentage=self.config.exploration_default)

        try:
            profile, blocklist, recent, pct, lock = await asyncio.wait_for(self._load(uid), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning("diversifier: personalization timed out user=%s timeout_s=%s", uid, self.timeout_s)
            return self._generic(uid, outfits)
        except StorageUnavailable as e:
            logger.warning("diversifier: personalization unavailable user=%s reason=%s", uid, e)
            return self._generic(uid, outfits)

        now = self._clock()
        blocks = [blocklist_rules.check(blocklist, o.block_tags(), now=now, config=self.config) for o in outfits]
        scored = self.scorer.score_all(outfits, profile, blocks)
        pool = self._filter(uid, scored, recent)
        picks = self._assign(pool, pct)
        items = [self._render(slot, s, tier) for slot, (s, tier) in enumerate(picks, start=1)]
        await self._remember(uid, [s for s, _ in picks])
        return RecommendationsOut(
            user_id=uid,
            items=items,
            exploration_percentage=pct,
            pattern_locked=lock.is_locked,
        )

    def _filter(
        self,
        uid: str,
        scored: List[ScoredOutfit],
        recent: Dict[RepeatCategory, Dict[str, Any]],
    ) -> List[ScoredOutfit]:
        eligible = [s for s in scored if not s.blocked]
        if len(eligible) < len(scored):
            logger.info("diversifier: hard-blocked dropped user=%s count=%s", uid, len(scored) - len(eligible))
        want = min(SLOTS, len(eligible))
        if want < SLOTS:
            logger.warning("diversifier: insufficient_candidates user=%s eligible=%s", uid, len(eligible))

        for s in eligible:
            s.repeats = sum(
                1 for category, key in s.outfit.repeat_keys().items() if self.repetition.is_repeat(recent, category, key)
            )
        fresh = [s for s in eligible if s.repeats == 0]
        if len(fresh) < want:
            repeated = sorted((s for s in eligible if s.repeats), key=lambda s: (s.repeats, -s.score, s.index))
            readmit = repeated[: want - len(fresh)]
            logger.info("diversifier: relaxed repetition user=%s readmitted=%s", uid, len(readmit))
            fresh = fresh + readmit
        return sorted(fresh, key=lambda s: (-s.score, s.index))

    def _in_band(self, s: ScoredOutfit, lo: float, hi: float) -> bool:
        return lo <= s.score < hi

    def _assign(self, pool: List[ScoredOutfit], pct: float) -> List[Tuple[ScoredOutfit, Tier]]:
        if not pool:
            return []
        c = self.config
        uniform = pool[0].score - pool[-1].score <= c.uniform_score_range
        remaining = list(pool)
        picks = [remaining.pop(0)]

        if remaining:
            adjacent = None
            if not uniform:
                adjacent = next((s for s in remaining if self._in_band(s, c.band_adjacent_min, c.band_safe_min)), None)
            second = adjacent or remaining[0]
            remaining.remove(second)
            picks.append(second)

        explored = False
        if remaining:
            third = None
            if self.rng.random() * 100.0 < pct:
                third = next(
                    (s for s in remaining if self._in_band(s, c.band_learning_min, c.band_adjacent_min)), None
                )
                explored = third is not None
            picks.append(third or remaining[0])

        if not explored:
            picks.sort(key=lambda s: (-s.score, s.index))
        return [(s, SLOT_TIERS[i]) for i, s in enumerate(picks)]

    def _render(self, slot: int, s: ScoredOutfit, tier: Tier) -> RecommendationOut:
        s.tier = tier
        b = s.breakdown
        return RecommendationOut(
            slot=slot,
            outfit=s.outfit,
            match_score=s.score,
            tier=tier,
            tier_label=TIER_LABELS[tier],
            explanation=self.scorer.explain(s, tier),
            blocklist_penalty=s.block.penalty,
            breakdown={"color": b.color, "style": b.style, "occasion": b.occasion, "season": b.season, "raw": b.raw},
        )

    async def _remember(self, uid: str, shown: List[ScoredOutfit]) -> None:
        try:
            for s in shown:
                await self.repetition.record_outfit(uid, s.outfit)
            if len(shown) >= SLOTS:
                await self.exploration.record_shown(uid)
        except StorageUnavailable as e:
            logger.warning("diversifier: could not record shown outfits user=%s reason=%s", uid, e)

    def _generic(self, uid: str, outfits: List[CandidateOutfit]) -> RecommendationsOut:
        items = [
            RecommendationOut(
                slot=i + 1,
                outfit=o,
                match_score=self.config.neutral_score,
                tier=SLOT_TIERS[i],
                tier_label=TIER_LABELS[SLOT_TIERS[i]],
                explanation=GENERIC_EXPLANATION,
                personalized=False,
            )
            for i, o in enumerate(outfits[:SLOTS])
        ]
        return RecommendationsOut(
            user_id=uid,
            items=items,
            exploration_percentage=self.config.exploration_default,
        )
