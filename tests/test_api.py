"""
HTTP API 測試：主持人審核流程與排行榜（FastAPI TestClient）
"""
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError

from review_engine.api.leaderboard import LeaderboardRegistry, get_registry
from review_engine.database import Settings, get_db
from review_engine.main import app
from review_engine.models import GameMode
from review_engine.services import store_service

BASE = "/api/games/game-1/teams"


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    registry = LeaderboardRegistry(session_factory, Settings())
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def seeded(add_team):
    add_team(
        "team-a",
        current_round=1,
        rounds=[{
            "round_number": 1,
            "activities": {"customerInterviews": True},
            "funding": {"loan": 20000, "investment": 50000, "investorEquity": 20},
            "progress": {"cash": 500, "interviewsTotal": 0, "validationsTotal": 1},
        }],
    )
    add_team(
        "team-b",
        game_mode=GameMode.STARTUP,
        current_round=1,
        rounds=[{"round_number": 1, "progress": {"cash": 60000}}],
    )
    add_team("team-x", game_id="game-2")


def _check(client, contract, approved=True):
    return client.put(
        f"{BASE}/team-a/rounds/1/review/contracts/{contract}",
        json={"checked": True, "approved": approved},
    )


# =============================================================================
# Test: Reading a review
# =============================================================================

def test_get_review(client, seeded):
    response = client.get(f"{BASE}/team-a/rounds/1/review")

    assert response.status_code == 200
    data = response.json()
    assert data["review"]["status"] == "pending"
    assert data["requiredContracts"] == ["bank", "investor"]
    assert data["summary"]["unchecked"] == ["bank", "investor"]
    assert data["contractDetails"]["bank"][0]["value"] == "€20,000"
    assert "progress.cash" in data["overridableFields"]
    assert [w["message"] for w in data["warnings"]] == [
        "Low cash reserves",
        "No customer interviews yet",
    ]


def test_unknown_team_or_round(client, seeded):
    assert client.get(f"{BASE}/ghost/rounds/1/review").status_code == 404
    assert client.get(f"{BASE}/team-a/rounds/9/review").status_code == 404
    # 隊伍存在但屬於另一場遊戲
    assert client.get(f"{BASE}/team-x/rounds/1/review").status_code == 404


def test_required_contracts_includes_expert_contracts(client, seeded):
    response = client.get(f"{BASE}/team-a/rounds/1/contracts")

    assert response.status_code == 200
    data = response.json()
    assert data["expertContracts"] == {"customer": ["interviewLog"]}
    assert data["missingExpertContracts"] == ["interviewLog"]


# =============================================================================
# Test: Approve / reject
# =============================================================================

def test_approve_flow(client, seeded):
    assert _check(client, "bank").status_code == 200

    response = client.post(f"{BASE}/team-a/rounds/1/review/approve", json={"reviewer": "anna"})
    assert response.status_code == 409
    assert response.json()["detail"]["outstanding"] == ["investor"]

    assert _check(client, "investor").status_code == 200
    response = client.post(f"{BASE}/team-a/rounds/1/review/approve", json={"reviewer": "anna"})

    assert response.status_code == 200
    decision = response.json()
    assert decision["status"] == "approved"
    assert decision["teamIntent"]["status"] == "playing"
    assert decision["teamIntent"]["lastApprovedRound"] == 1


def test_approved_round_rejects_further_checks(client, seeded):
    _check(client, "bank")
    _check(client, "investor")
    client.post(f"{BASE}/team-a/rounds/1/review/approve", json={"reviewer": "anna"})

    assert _check(client, "bank", approved=False).status_code == 409


def test_unknown_contract_key(client, seeded):
    assert _check(client, "handshake").status_code == 400


def test_reject_requires_reason(client, seeded):
    response = client.post(
        f"{BASE}/team-a/rounds/1/review/reject",
        json={"reviewer": "anna", "reason": ""},
    )

    assert response.status_code == 400
    review = client.get(f"{BASE}/team-a/rounds/1/review").json()["review"]
    assert review["status"] == "pending"


def test_reject_then_reset(client, seeded):
    response = client.post(
        f"{BASE}/team-a/rounds/1/review/reject",
        json={"reviewer": "anna", "reason": "bank contract missing"},
    )
    assert response.status_code == 200
    assert response.json()["teamIntent"]["status"] == "blocked"

    response = client.post(f"{BASE}/team-a/reset")

    assert response.status_code == 200
    assert response.json()["status"] == "playing"
    review = client.get(f"{BASE}/team-a/rounds/1/review").json()["review"]
    assert review["status"] == "pending"


def test_persistence_failure_returns_503(client, seeded):
    _check(client, "bank")
    _check(client, "investor")

    with patch.object(
        store_service, "persist_team_status", side_effect=SQLAlchemyError("database is locked")
    ):
        response = client.post(
            f"{BASE}/team-a/rounds/1/review/approve", json={"reviewer": "anna"}
        )

    assert response.status_code == 503
    review = client.get(f"{BASE}/team-a/rounds/1/review").json()["review"]
    assert review["status"] == "pending"


# =============================================================================
# Test: Overrides, notes and scores
# =============================================================================

def test_override_and_score(client, seeded):
    before = client.get(f"{BASE}/team-a/score").json()["quickScore"]

    response = client.post(
        f"{BASE}/team-a/rounds/1/review/overrides",
        json={"fieldPath": "progress.cash", "corrected": "60000", "reason": "bank statement"},
    )
    assert response.status_code == 200
    entry = response.json()["overrides"]["progress.cash"]
    assert entry["original"] == 500
    assert entry["corrected"] == 60000

    after = client.get(f"{BASE}/team-a/score").json()["quickScore"]
    assert after > before


def test_non_numeric_override_is_rejected(client, seeded):
    response = client.post(
        f"{BASE}/team-a/rounds/1/review/overrides",
        json={"fieldPath": "progress.cash", "corrected": "lots", "reason": "typo"},
    )

    assert response.status_code == 400


def test_corrected_loan_drops_bank_contract(client, seeded):
    response = client.post(
        f"{BASE}/team-a/rounds/1/review/overrides",
        json={"fieldPath": "funding.loan", "corrected": 0, "reason": "loan was declined"},
    )
    assert response.status_code == 200

    data = client.get(f"{BASE}/team-a/rounds/1/review").json()
    assert data["requiredContracts"] == ["investor"]
    contracts = client.get(f"{BASE}/team-a/rounds/1/contracts").json()
    assert contracts["requiredContracts"] == ["investor"]


def test_fractional_employee_override_is_rejected(client, seeded):
    response = client.post(
        f"{BASE}/team-a/rounds/1/review/overrides",
        json={"fieldPath": "employees", "corrected": 2.5, "reason": "part-time"},
    )

    assert response.status_code == 400
    assert client.get(f"{BASE}/team-a/score").status_code == 200


def test_save_notes(client, seeded):
    response = client.put(
        f"{BASE}/team-a/rounds/1/review/notes", json={"notes": "Check loan next round"}
    )

    assert response.status_code == 200
    assert response.json()["notes"] == "Check loan next round"


# =============================================================================
# Test: Leaderboard
# =============================================================================

def test_leaderboard(client, seeded):
    response = client.get("/api/games/game-1/leaderboard")

    assert response.status_code == 200
    data = response.json()
    assert [e["teamId"] for e in data["entries"]] == ["team-b", "team-a"]
    assert [e["rank"] for e in data["entries"]] == [1, 2]
    assert data["tallies"]["total"] == 2
    assert data["tallies"]["awaitingReview"] == 2
    assert data["faults"] == {}


def test_leaderboard_mode_filter(client, seeded):
    response = client.get("/api/games/game-1/leaderboard", params={"mode": "research"})

    assert response.status_code == 200
    assert response.json()["entries"] == []
