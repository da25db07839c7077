from dataclasses import dataclass, field
from typing import Dict

from personalization.core.config import Settings, settings as default_settings
from personalization.recs.types import Action, RepeatCategory

ACTION_DELTAS: Dict[Action, float] = {
    Action.LIKE: 2.0,
    Action.WEAR: 5.0,
    Action.SELECT: 1.0,
    Action.IGNORE: -0.5,
    Action.SHOPPING_CLICK: 1.0,
    Action.DISLIKE: 0.0,
}


def delta_for(action: Action, table: Dict[Action, float] = ACTION_DELTAS) -> float:
    return table.get(Action(action), 0.0)


@dataclass(frozen=True)
class PolicyConfig:
    weight_color: float = 0.35
    weight_style: float = 0.30
    weight_occasion: float = 0.20
    weight_season: float = 0.15
    smoothing: float = 5.0
    neutral_score: float = 50.0
    soft_penalty: float = 20.0
    temporary_penalty: float = 10.0
    band_safe_min: float = 90.0
    band_adjacent_min: float = 70.0
    band_learning_min: float = 50.0
    uniform_score_range: float = 5.0
    exploration_default: float = 10.0
    exploration_min: float = 5.0
    exploration_max: float = 25.0
    exploration_like_delta: float = -2.0
    exploration_dislike_delta: float = 3.0
    exploration_skip_delta: float = 1.0
    pattern_lock_color_share: float = 0.85
    pattern_lock_style_share: float = 0.80
    pattern_lock_exploration: float = 40.0
    promotion_dislikes: int = 3
    promotion_window_days: int = 30
    temporary_block_days: int = 7
    ignored_session_share: float = 0.7
    repeat_ttl_days: Dict[RepeatCategory, int] = field(
        default_factory=lambda: {
            RepeatCategory.COLOR_COMBO: 30,
            RepeatCategory.STYLE: 15,
            RepeatCategory.OCCASION: 7,
        }
    )
    repeat_combo_overlap: float = 0.7
    proven_combinations_cap: int = 10
    action_deltas: Dict[Action, float] = field(default_factory=lambda: dict(ACTION_DELTAS))

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> "PolicyConfig":
        s = s or default_settings
        return cls(
            weight_color=s.SCORE_WEIGHT_COLOR,
            weight_style=s.SCORE_WEIGHT_STYLE,
            weight_occasion=s.SCORE_WEIGHT_OCCASION,
            weight_season=s.SCORE_WEIGHT_SEASON,
            smoothing=s.SCORE_SMOOTHING,
            neutral_score=s.SCORE_NEUTRAL,
            soft_penalty=s.SOFT_BLOCK_PENALTY,
            temporary_penalty=s.TEMP_BLOCK_PENALTY,
            band_safe_min=s.BAND_SAFE_MIN,
            band_adjacent_min=s.BAND_ADJACENT_MIN,
            band_learning_min=s.BAND_LEARNING_MIN,
            uniform_score_range=s.UNIFORM_SCORE_RANGE,
            exploration_default=s.EXPLORATION_DEFAULT,
            exploration_min=s.EXPLORATION_MIN,
            exploration_max=s.EXPLORATION_MAX,
            exploration_like_delta=s.EXPLORATION_LIKE_DELTA,
            exploration_dislike_delta=s.EXPLORATION_DISLIKE_DELTA,
            exploration_skip_delta=s.EXPLORATION_SKIP_DELTA,
            pattern_lock_color_share=s.PATTERN_LOCK_COLOR_SHARE,
            pattern_lock_style_share=s.PATTERN_LOCK_STYLE_SHARE,
            pattern_lock_exploration=s.PATTERN_LOCK_EXPLORATION,
            promotion_dislikes=s.PROMOTION_DISLIKES,
            promotion_window_days=s.PROMOTION_WINDOW_DAYS,
            temporary_block_days=s.TEMP_BLOCK_DEFAULT_DAYS,
            ignored_session_share=s.IGNORED_SESSION_SHARE,
            repeat_ttl_days={
                RepeatCategory.COLOR_COMBO: s.REPEAT_TTL_COLOR_COMBO_DAYS,
                RepeatCategory.STYLE: s.REPEAT_TTL_STYLE_DAYS,
                RepeatCategory.OCCASION: s.REPEAT_TTL_OCCASION_DAYS,
            },
            repeat_combo_overlap=s.REPEAT_COMBO_OVERLAP,
            proven_combinations_cap=s.PROVEN_COMBINATIONS_CAP,
        )
