"""
ScoringService 測試：快速分數、加權指標、加分規則、表現等級
"""
import pytest

from review_engine.core.review_workflow import ReviewWorkflow
from review_engine.models import GameMode
from review_engine.schemas import ReviewSnapshot
from review_engine.services.scoring_config import DEFAULT_WEIGHTS
from review_engine.services.scoring_service import (
    calculate_weighted_score,
    earned_bonuses,
    performance_category,
    quick_score,
    score_progress,
    score_team,
    validate_weights,
)
from tests.factories import make_progress, make_round, make_team


# =============================================================================
# Test: Quick score
# =============================================================================

def test_quick_score_cash_rich_first_round():
    progress = make_progress(
        cash=60000, trl=3, validations=0, interviews=0, founder_equity=40, round=1
    )

    # 25 (cash) + 0 (trl) + 0 (validation) + 2 (equity) + 0 (round)
    assert quick_score(progress) == 27


def test_quick_score_equity_above_seventy_earns_ten():
    progress = make_progress(cash=60000, founder_equity=100)

    assert quick_score(progress) == 35


def test_quick_score_maximum_is_capped_at_100():
    progress = make_progress(
        cash=1_000_000, trl=12, validations=20, interviews=50, founder_equity=100, round=20
    )

    assert quick_score(progress) == 100


def test_quick_score_minimum():
    progress = make_progress(cash=-5000, trl=1, founder_equity=10, round=0)

    assert quick_score(progress) == 2


@pytest.mark.parametrize("field, values", [
    ("cash", [-1, 0, 9999, 10000, 25000, 50000, 90000]),
    ("trl", [1, 3, 4, 6, 9, 12]),
    ("validations", [0, 1, 2, 5]),
    ("interviews", [0, 2, 5, 20]),
    ("round", [0, 1, 3, 6, 10]),
])
def test_quick_score_is_monotonic_and_bounded(field, values):
    scores = [quick_score(make_progress(**{field: v})) for v in values]

    assert scores == sorted(scores)
    assert all(0 <= s <= 100 for s in scores)


# =============================================================================
# Test: Weighted metrics
# =============================================================================

def test_startup_weighted_score_partial_progress():
    progress = make_progress(cash=25000, founder_equity=100)

    base, metrics = calculate_weighted_score(progress, GameMode.STARTUP)

    # cash 50 * 0.2 + equity 100 * 0.1
    assert base == pytest.approx(20.0)
    assert metrics["cash"].raw_value == 50
    assert metrics["development"].raw_value == 0
    assert set(metrics) == set(DEFAULT_WEIGHTS[GameMode.STARTUP])


def test_research_mode_uses_research_metrics():
    progress = make_progress(trl=6, patents=1)

    _, metrics = calculate_weighted_score(progress, GameMode.RESEARCH)

    assert "trl" in metrics and "ip" in metrics
    assert "development" not in metrics
    assert metrics["trl"].raw_value == 50
    assert metrics["ip"].raw_value == 60


def test_custom_weights():
    progress = make_progress(interviews=5)

    base, metrics = calculate_weighted_score(progress, GameMode.STARTUP, {"interviews": 1.0})

    assert base == pytest.approx(50.0)
    assert list(metrics) == ["interviews"]


@pytest.mark.parametrize("weights", [
    {"cash": 0.5, "charisma": 0.5},
    {"cash": 1.5, "trl": -0.5},
    {"cash": 0.5, "trl": 0.4},
])
def test_invalid_weights_are_rejected(weights):
    with pytest.raises(ValueError):
        validate_weights(weights)


# =============================================================================
# Test: Bonuses and totals
# =============================================================================

def test_fully_developed_startup():
    progress = make_progress(
        cash=50000,
        development_hours=400,
        validations=5,
        interviews=10,
        founder_equity=100,
        legal_form="BV",
        employees=2,
        in_incubator=True,
        grants_received=1,
    )

    snapshot = score_progress("team-a", progress, GameMode.STARTUP)

    assert snapshot.base_score == pytest.approx(100.0)
    assert [b.bonus_id for b in snapshot.earned_bonuses] == [
        "incubator_control", "validated_market", "bootstrapped",
    ]
    assert snapshot.bonus_points == 13
    assert snapshot.total_score == pytest.approx(113.0)
    assert snapshot.performance == "Excellent"


def test_mode_specific_bonuses():
    progress = make_progress(patents=1, investor_appeal=5, bank_trust=4)

    research = [b.bonus_id for b in earned_bonuses(progress, GameMode.RESEARCH)]
    startup = [b.bonus_id for b in earned_bonuses(progress, GameMode.STARTUP)]

    assert research == ["protected_ip"]
    assert startup == ["investor_ready"]


@pytest.mark.parametrize("total, level", [
    (95, "Excellent"),
    (80, "Excellent"),
    (65, "Good"),
    (40, "Average"),
    (25, "Developing"),
    (5, "Starting"),
    (-3, "Starting"),
])
def test_performance_category(total, level):
    assert performance_category(total)["level"] == level


# =============================================================================
# Test: score_team
# =============================================================================

def test_score_team_applies_overrides():
    rounds = [make_round(1, progress={"cash": 1000})]
    review = ReviewSnapshot(team_id="team-a", round_number=1)
    ReviewWorkflow.add_override(review, "progress.cash", 1000, 60000, "bank statement shows 60k")

    without = score_team(make_team(), rounds)
    corrected = score_team(make_team(), rounds, {1: review})

    assert without.quick_score == 15
    assert corrected.quick_score == 35


def test_score_team_is_deterministic():
    rounds = [make_round(2, progress={"cash": 30000, "currentTRL": 5, "validationsTotal": 2})]

    first = score_team(make_team(game_mode=GameMode.RESEARCH), rounds)
    second = score_team(make_team(game_mode=GameMode.RESEARCH), rounds)

    assert first == second
