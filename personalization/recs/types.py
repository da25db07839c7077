from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class Action(str, Enum):
    LIKE = "LIKE"
    WEAR = "WEAR"
    SELECT = "SELECT"
    IGNORE = "IGNORE"
    DISLIKE = "DISLIKE"
    SHOPPING_CLICK = "SHOPPING_CLICK"


class Dimension(str, Enum):
    COLOR = "color"
    STYLE = "style"
    OCCASION = "occasion"
    SEASON = "season"


class BlockCategory(str, Enum):
    COLORS = "colors"
    STYLES = "styles"
    ITEMS = "items"


class Severity(str, Enum):
    HARD = "hard"
    SOFT = "soft"
    TEMPORARY = "temporary"


class RepeatCategory(str, Enum):
    COLOR_COMBO = "color_combo"
    STYLE = "style"
    OCCASION = "occasion"


class Tier(str, Enum):
    SAFE_BET = "safe_bet"
    ADJACENT = "adjacent"
    LEARNING = "learning"


TIER_LABELS = {
    Tier.SAFE_BET: "🎯 Safe bet",
    Tier.ADJACENT: "✨ Adjacent exploration",
    Tier.LEARNING: "🔍 Learning boundary",
}


@dataclass
class TasteProfile:
    user_id: str
    color_weights: Dict[str, float] = field(default_factory=dict)
    style_weights: Dict[str, float] = field(default_factory=dict)
    occasion_weights: Dict[str, float] = field(default_factory=dict)
    seasonal_weights: Dict[str, float] = field(default_factory=dict)
    total_likes: int = 0
    total_wears: int = 0
    total_shopping_clicks: int = 0
    total_selections: int = 0
    total_ignores: int = 0
    accuracy_score: float = 0.0
    proven_combinations: List[str] = field(default_factory=list)
    last_updated: Optional[datetime] = None

    def weights(self, dimension: Dimension) -> Dict[str, float]:
        return {
            Dimension.COLOR: self.color_weights,
            Dimension.STYLE: self.style_weights,
            Dimension.OCCASION: self.occasion_weights,
            Dimension.SEASON: self.seasonal_weights,
        }[dimension]

    @property
    def is_cold_start(self) -> bool:
        return not any(
            v > 0
            for w in (self.color_weights, self.style_weights, self.occasion_weights, self.seasonal_weights)
            for v in w.values()
        )


@dataclass(frozen=True)
class BlockEntry:
    category: BlockCategory
    key: str
    severity: Severity
    reason: str = ""
    expires_at: Optional[datetime] = None


@dataclass
class Blocklist:
    user_id: str
    hard: Dict[BlockCategory, Dict[str, BlockEntry]] = field(default_factory=dict)
    soft: Dict[BlockCategory, Dict[str, BlockEntry]] = field(default_factory=dict)
    temporary: List[BlockEntry] = field(default_factory=list)

    def hard_keys(self, category: BlockCategory) -> set[str]:
        return set(self.hard.get(category, {}))

    def soft_keys(self, category: BlockCategory) -> set[str]:
        return set(self.soft.get(category, {}))


@dataclass(frozen=True)
class BlockCheck:
    blocked: bool
    penalty: float
    matched_entries: List[BlockEntry] = field(default_factory=list)


@dataclass
class ExplorationState:
    user_id: str
    exploration_percentage: float
    position3_likes: int = 0
    position3_dislikes: int = 0
    position3_skips: int = 0
    position3_shown: int = 0
    last_updated: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        if not self.position3_shown:
            return 0.0
        return round(100.0 * self.position3_likes / self.position3_shown, 1)


@dataclass(frozen=True)
class PatternLockStatus:
    is_locked: bool
    color_share: float = 0.0
    style_share: float = 0.0
    reason: Optional[str] = None
    dominant_color: Optional[str] = None
    dominant_style: Optional[str] = None


@dataclass(frozen=True)
class ScoreBreakdown:
    color: float
    style: float
    occasion: float
    season: float
    raw: float
    penalty: float
    final: float
    dominant: Dimension
