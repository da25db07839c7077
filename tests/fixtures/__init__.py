from .personalization_fixtures import (
    START,
    FakeClock,
    FlakyStore,
    YieldingStore,
    cold_start_candidates,
    taste_scenario_candidates,
)

__all__ = [
    "START",
    "FakeClock",
    "FlakyStore",
    "YieldingStore",
    "cold_start_candidates",
    "taste_scenario_candidates",
]
