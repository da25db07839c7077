from typing import Dict, List, Optional

from pydantic import BaseModel

from personalization.recs.types import Tier
from personalization.schemas.outfits import CandidateOutfit


class RecommendationOut(BaseModel):
    slot: int
    outfit: CandidateOutfit
    match_score: float
    tier: Tier
    tier_label: str
    explanation: str
    blocklist_penalty: float = 0.0
    breakdown: Optional[Dict[str, float]] = None
    personalized: bool = True


class RecommendationsOut(BaseModel):
    user_id: str
    items: List[RecommendationOut]
    exploration_percentage: float
    pattern_locked: bool = False
