from personalization.recs.types import Action, Tier
from personalization.schemas.outfits import CandidateOutfit, InteractionContext, OutfitTags
from personalization.schemas.recs import RecommendationOut, RecommendationsOut
from personalization.services.engine import PersonalizationEngine, build_engine

__all__ = [
    "Action",
    "Tier",
    "CandidateOutfit",
    "InteractionContext",
    "OutfitTags",
    "RecommendationOut",
    "RecommendationsOut",
    "PersonalizationEngine",
    "build_engine",
]
