from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from personalization.recs.config import PolicyConfig
from personalization.recs.types import BlockCheck, Dimension, ScoreBreakdown, TasteProfile, Tier
from personalization.schemas.outfits import CandidateOutfit
from personalization.services.taste_profile import tags_for

DIMENSION_PHRASES = {
    Dimension.COLOR: "its colors line up with the palette you keep coming back to",
    Dimension.STYLE: "its style matches the looks you like most",
    Dimension.OCCASION: "it suits the occasions you usually dress for",
    Dimension.SEASON: "it fits the seasons you tend to favor",
}


@dataclass
class ScoredOutfit:
    index: int
    outfit: CandidateOutfit
    breakdown: ScoreBreakdown
    block: BlockCheck = field(default_factory=lambda: BlockCheck(blocked=False, penalty=0.0))
    repeats: int = 0
    tier: Optional[Tier] = None

    @property
    def score(self) -> float:
        return self.breakdown.final

    @property
    def blocked(self) -> bool:
        return self.block.blocked


class MatchScorer:
    """0-100 fit of a candidate against a taste profile, net of blocklist penalties."""

    def __init__(self, config: PolicyConfig | None = None) -> None:
        self.config = config or PolicyConfig()

    @property
    def weights(self) -> Dict[Dimension, float]:
        c = self.config
        return {
            Dimension.COLOR: c.weight_color,
            Dimension.STYLE: c.weight_style,
            Dimension.OCCASION: c.weight_occasion,
            Dimension.SEASON: c.weight_season,
        }

    def normalized_overlap(self, tags: Iterable[str], weights: Dict[str, float]) -> float:
        tags = list(dict.fromkeys(tags))
        if not tags or not any(v > 0 for v in weights.values()):
            return self.config.neutral_score
        matched = sum(max(weights.get(t, 0.0), 0.0) for t in tags)
        unknown = sum(1 for t in tags if weights.get(t, 0.0) <= 0)
        return 100.0 * matched / (matched + self.config.smoothing * max(1, unknown))

    def breakdown(self, outfit: CandidateOutfit, profile: TasteProfile, penalty: float = 0.0) -> ScoreBreakdown:
        dims = {d: self.normalized_overlap(tags_for(outfit, d), profile.weights(d)) for d in Dimension}
        contributions = {d: dims[d] * w for d, w in self.weights.items()}
        raw = sum(contributions.values())
        final = max(0.0, min(100.0, raw - penalty))
        dominant = max(Dimension, key=lambda d: (contributions[d], -list(Dimension).index(d)))
        return ScoreBreakdown(
            color=round(dims[Dimension.COLOR], 2),
            style=round(dims[Dimension.STYLE], 2),
            occasion=round(dims[Dimension.OCCASION], 2),
            season=round(dims[Dimension.SEASON], 2),
            raw=round(raw, 2),
            penalty=penalty,
            final=round(final, 2),
            dominant=dominant,
        )

    def score(self, outfit: CandidateOutfit, profile: TasteProfile, block: BlockCheck | None = None) -> float:
        return self.breakdown(outfit, profile, block.penalty if block else 0.0).final

    def score_all(
        self,
        candidates: Sequence[CandidateOutfit],
        profile: TasteProfile,
        blocks: Sequence[BlockCheck] | None = None,
    ) -> List[ScoredOutfit]:
        scored: List[ScoredOutfit] = []
        for i, outfit in enumerate(candidates):
            block = blocks[i] if blocks else BlockCheck(blocked=False, penalty=0.0)
            scored.append(
                ScoredOutfit(index=i, outfit=outfit, breakdown=self.breakdown(outfit, profile, block.penalty), block=block)
            )
        return scored

    def explain(self, scored: ScoredOutfit, tier: Tier) -> str:
        reason = DIMENSION_PHRASES[scored.breakdown.dominant]
        if tier is Tier.SAFE_BET:
            return f"A safe bet for you because {reason}."
        if tier is Tier.ADJACENT:
            return f"A small step outside your usual picks, chosen mainly because {reason}."
        return f"A deliberate stretch to learn more about your taste, still picked partly because {reason}."
