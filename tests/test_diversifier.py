import asyncio
import logging

import pytest

from personalization.recs.types import BlockCategory, Dimension, RepeatCategory, ScoreBreakdown, Tier, TIER_LABELS
from personalization.schemas.outfits import CandidateOutfit
from personalization.services.diversifier import RecommendationDiversifier
from personalization.services.scoring import ScoredOutfit
from tests.fixtures import cold_start_candidates, taste_scenario_candidates


class FixedRng:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


def scored(i, score):
    b = ScoreBreakdown(
        color=score, style=score, occasion=score, season=score, raw=score, penalty=0.0, final=score,
        dominant=Dimension.COLOR,
    )
    return ScoredOutfit(index=i, outfit=CandidateOutfit(id=f"o{i}"), breakdown=b)


def diversifier(engine, rng_value):
    return RecommendationDiversifier(
        engine.taste, engine.blocklists, engine.repetition, engine.exploration, rng=FixedRng(rng_value)
    )


def fresh_candidates(n):
    colors = ["#000080", "#CC5500", "#008000", "#800000", "#FFC0CB", "#D2B48C"]
    styles = ["minimalist", "boho", "classic", "grunge", "preppy", "sporty"]
    occasions = ["casual", "party", "work", "date", "travel", "brunch"]
    return [
        {"id": f"c{i}", "colors": [colors[i]], "styles": [styles[i]], "occasion": occasions[i]}
        for i in range(n)
    ]


async def test_cold_start_returns_three_neutral_picks(engine):
    recs = await engine.select_recommendations("u1", cold_start_candidates())
    assert len(recs) == 3
    assert [r.match_score for r in recs] == [50.0, 50.0, 50.0]
    assert [r.tier_label for r in recs] == [TIER_LABELS[Tier.SAFE_BET], TIER_LABELS[Tier.ADJACENT], TIER_LABELS[Tier.LEARNING]]
    assert all(r.explanation for r in recs)
    assert all(r.personalized for r in recs)


async def test_hard_blocked_excluded_and_known_color_wins(engine, store, keys):
    await store.hset(keys.user("taste", "u1", "color"), {"#CC5500": 15, "#000080": 3})
    await engine.blocklists.add_to_hard("u1", BlockCategory.STYLES, "maximalist")
    recs = await engine.select_recommendations("u1", taste_scenario_candidates())
    assert [r.outfit.id for r in recs] == ["burnt", "white"]
    assert recs[0].match_score == 58.75
    assert recs[1].match_score == 32.5


@pytest.mark.parametrize("supplied,expected", [(0, 0), (1, 1), (2, 2), (3, 3), (6, 3)])
async def test_returns_min_of_three_and_supplied(engine, supplied, expected):
    recs = await engine.select_recommendations("u1", fresh_candidates(supplied))
    assert len(recs) == expected


async def test_insufficient_candidates_logged_not_raised(engine, caplog):
    with caplog.at_level(logging.WARNING, logger="personalization.diversifier"):
        recs = await engine.select_recommendations("u1", fresh_candidates(2))
    assert len(recs) == 2
    assert "insufficient_candidates" in caplog.text


async def test_soft_block_penalty_reported(engine):
    await engine.blocklists.add_to_soft("u1", BlockCategory.STYLES, "boho")
    recs = await engine.select_recommendations("u1", fresh_candidates(3))
    boho = next(r for r in recs if r.outfit.id == "c1")
    assert boho.blocklist_penalty == 20
    assert boho.match_score == 30.0
    assert recs[-1].outfit.id == "c1"


async def test_recently_shown_outfits_rotate_out(engine):
    first = await engine.select_recommendations("u1", fresh_candidates(6))
    second = await engine.select_recommendations("u1", fresh_candidates(6))
    assert len(second) == 3
    assert not {r.outfit.id for r in first} & {r.outfit.id for r in second}


async def test_repetition_relaxed_least_repetitive_first(engine):
    candidates = fresh_candidates(4)
    # c0 repeats every category, c1 two, c2 one, c3 none
    await engine.repetition.record("u1", RepeatCategory.COLOR_COMBO, "#000080")
    await engine.repetition.record("u1", RepeatCategory.STYLE, "minimalist")
    await engine.repetition.record("u1", RepeatCategory.OCCASION, "casual")
    await engine.repetition.record("u1", RepeatCategory.COLOR_COMBO, "#CC5500")
    await engine.repetition.record("u1", RepeatCategory.STYLE, "boho")
    await engine.repetition.record("u1", RepeatCategory.OCCASION, "work")
    recs = await engine.select_recommendations("u1", candidates)
    assert sorted(r.outfit.id for r in recs) == ["c1", "c2", "c3"]


async def test_relaxation_never_readmits_hard_blocks(engine):
    await engine.blocklists.add_to_hard("u1", BlockCategory.COLORS, "#000080")
    recs = await engine.select_recommendations("u1", fresh_candidates(3))
    recs = await engine.select_recommendations("u1", fresh_candidates(3))
    assert [r.outfit.id for r in recs if r.outfit.id == "c0"] == []
    assert len(recs) == 2


async def test_shown_outfits_recorded(engine):
    await engine.select_recommendations("u1", fresh_candidates(3))
    recent = await engine.repetition.load_all("u1")
    assert set(recent[RepeatCategory.STYLE]) == {"minimalist", "boho", "classic"}
    assert (await engine.exploration.state("u1")).position3_shown == 1


def test_exploration_slot_takes_learning_band(engine):
    picks = diversifier(engine, 0.0)._assign([scored(0, 95), scored(1, 80), scored(2, 75), scored(3, 60)], 10)
    assert [(s.score, t) for s, t in picks] == [(95, Tier.SAFE_BET), (80, Tier.ADJACENT), (60, Tier.LEARNING)]


def test_without_exploration_picks_best_and_orders_by_score(engine):
    picks = diversifier(engine, 0.99)._assign([scored(0, 95), scored(1, 80), scored(2, 75), scored(3, 60)], 10)
    assert [s.score for s, _ in picks] == [95, 80, 75]


def test_adjacent_slot_prefers_band(engine):
    picks = diversifier(engine, 0.0)._assign([scored(0, 95), scored(1, 92), scored(2, 85), scored(3, 60)], 10)
    assert [s.score for s, _ in picks] == [95, 85, 60]


def test_exploration_without_band_candidate_takes_next_best(engine):
    picks = diversifier(engine, 0.0)._assign([scored(0, 95), scored(1, 80), scored(2, 40), scored(3, 30)], 25)
    assert [s.score for s, _ in picks] == [95, 80, 40]


def test_uniform_scores_keep_tier_order(engine):
    picks = diversifier(engine, 0.5)._assign([scored(0, 50), scored(1, 52), scored(2, 48)], 10)
    assert [t for _, t in picks] == [Tier.SAFE_BET, Tier.ADJACENT, Tier.LEARNING]


async def test_timeout_falls_back_to_generic(engine, monkeypatch):
    async def slow(user_id):
        await asyncio.sleep(1)

    monkeypatch.setattr(engine.taste, "get_or_default", slow)
    engine.diversifier.timeout_s = 0.01
    recs = await engine.select_recommendations("u1", cold_start_candidates())
    assert [r.outfit.id for r in recs] == ["o1", "o2", "o3"]
    assert not any(r.personalized for r in recs)
    assert {r.match_score for r in recs} == {50.0}


async def test_store_outage_still_recommends(clock, keys):
    from personalization.services.engine import PersonalizationEngine
    from tests.fixtures import FlakyStore

    engine = PersonalizationEngine(
        FlakyStore(clock.epoch, failures=1000), keys=keys, clock=clock, retry_min_s=0, retry_max_s=0
    )
    recs = await engine.select_recommendations("u1", cold_start_candidates())
    assert len(recs) == 3
