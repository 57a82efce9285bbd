"""
ReviewWorkflow 測試：合約核對、修正值、核准 / 退回、狀態機
"""
import pytest

from review_engine.core.exceptions import (
    IncompleteVerificationError,
    InvalidOverride,
    InvalidStateTransition,
    MissingReason,
    ValidationError,
)
from review_engine.core.review_workflow import ReviewWorkflow, parse_override_value
from review_engine.core.state_machine import ReviewStateMachine
from review_engine.models import ContractType, ReviewStatus, TeamStatus
from review_engine.services.contract_service import required_contracts
from tests.factories import make_round


@pytest.fixture
def review():
    return ReviewWorkflow.new_review("team-a", 2)


@pytest.fixture
def bank_and_investor_round():
    return make_round(2, funding={"loan": 20000, "investment": 50000})


# =============================================================================
# Test: Contract checks
# =============================================================================

def test_contract_check_does_not_change_status(review):
    ReviewWorkflow.record_contract_check(review, ContractType.BANK, True, True, "signed")

    assert review.status == ReviewStatus.PENDING
    assert review.contract_checks["bank"].approved is True
    assert review.contract_checks["bank"].comment == "signed"


def test_contract_check_upserts(review):
    ReviewWorkflow.record_contract_check(review, ContractType.BANK, True, False, "wrong amount")
    ReviewWorkflow.record_contract_check(review, ContractType.BANK, True, True)

    assert len(review.contract_checks) == 1
    assert review.contract_checks["bank"].approved is True
    assert review.contract_checks["bank"].comment == ""


def test_verification_summary(review):
    required = {ContractType.BANK, ContractType.INVESTOR, ContractType.KVK}
    ReviewWorkflow.record_contract_check(review, ContractType.BANK, True, True)
    ReviewWorkflow.record_contract_check(review, ContractType.INVESTOR, True, False, "missing page")

    summary = ReviewWorkflow.verification_summary(review, required)

    assert summary.approved == (ContractType.BANK,)
    assert summary.flagged == (ContractType.INVESTOR,)
    assert summary.unchecked == (ContractType.KVK,)
    assert summary.complete is False


# =============================================================================
# Test: Approve
# =============================================================================

def test_approve_requires_every_contract(review, bank_and_investor_round):
    required = required_contracts(bank_and_investor_round)
    ReviewWorkflow.record_contract_check(review, ContractType.BANK, True, True)

    with pytest.raises(IncompleteVerificationError) as exc:
        ReviewWorkflow.approve(review, required, "facilitator")

    assert exc.value.outstanding == ["investor"]
    assert review.status == ReviewStatus.PENDING

    ReviewWorkflow.record_contract_check(review, ContractType.INVESTOR, True, True)
    approved, decision = ReviewWorkflow.approve(review, required, "facilitator")

    assert approved.status == ReviewStatus.APPROVED
    assert approved.reviewed_by == "facilitator"
    assert approved.reviewed_at is not None
    assert decision.team_intent.status == TeamStatus.PLAYING
    assert decision.team_intent.last_approved_round == 2


def test_checked_but_undecided_contract_blocks_approval(review):
    ReviewWorkflow.record_contract_check(review, ContractType.KVK, True, None)

    with pytest.raises(IncompleteVerificationError):
        ReviewWorkflow.approve(review, {ContractType.KVK}, "facilitator")


def test_approve_leaves_input_unchanged(review):
    approved, _ = ReviewWorkflow.approve(review, set(), "facilitator")

    assert approved is not review
    assert review.status == ReviewStatus.PENDING
    assert review.reviewed_by is None


def test_approving_for_blocked_team_keeps_it_blocked(review):
    _, decision = ReviewWorkflow.approve(review, set(), "facilitator", TeamStatus.BLOCKED)

    assert decision.team_intent.status == TeamStatus.BLOCKED
    assert decision.team_intent.last_approved_round == 2


def test_approved_round_is_locked(review):
    approved, _ = ReviewWorkflow.approve(review, set(), "facilitator")

    with pytest.raises(InvalidStateTransition):
        ReviewWorkflow.record_contract_check(approved, ContractType.BANK, True, False)
    with pytest.raises(InvalidStateTransition):
        ReviewWorkflow.add_override(approved, "progress.cash", 0, 100, "late correction")
    with pytest.raises(InvalidStateTransition):
        ReviewWorkflow.approve(approved, set(), "facilitator")


# =============================================================================
# Test: Reject
# =============================================================================

@pytest.mark.parametrize("reason", ["", "   ", None])
def test_reject_requires_reason(review, reason):
    with pytest.raises(ValidationError):
        ReviewWorkflow.reject(review, "facilitator", reason)

    assert review.status == ReviewStatus.PENDING
    assert review.rejection_reason is None


def test_reject_blocks_team(review):
    rejected, decision = ReviewWorkflow.reject(review, "facilitator", "loan contract unsigned")

    assert rejected.status == ReviewStatus.REJECTED
    assert rejected.rejection_reason == "loan contract unsigned"
    assert decision.team_intent.status == TeamStatus.BLOCKED
    assert review.status == ReviewStatus.PENDING


def test_rejected_review_only_reopens(review):
    rejected, _ = ReviewWorkflow.reject(review, "facilitator", "missing KVK extract")

    with pytest.raises(InvalidStateTransition):
        ReviewWorkflow.approve(rejected, set(), "facilitator")

    reopened = ReviewWorkflow.reopen(rejected)

    assert reopened.status == ReviewStatus.PENDING
    assert reopened.rejection_reason == "missing KVK extract"


def test_reopen_pending_review_is_invalid(review):
    with pytest.raises(InvalidStateTransition):
        ReviewWorkflow.reopen(review)


def test_transition_table():
    assert ReviewStateMachine.can_transition(ReviewStatus.PENDING, ReviewStatus.APPROVED)
    assert ReviewStateMachine.can_transition(ReviewStatus.PENDING, ReviewStatus.REJECTED)
    assert ReviewStateMachine.can_transition(ReviewStatus.REJECTED, ReviewStatus.PENDING)
    assert not ReviewStateMachine.can_transition(ReviewStatus.REJECTED, ReviewStatus.APPROVED)
    assert not ReviewStateMachine.can_transition(ReviewStatus.APPROVED, ReviewStatus.PENDING)


# =============================================================================
# Test: Overrides
# =============================================================================

def test_override_twice_keeps_first_original(review):
    ReviewWorkflow.add_override(review, "funding.revenue", 1000, 1500, "invoice total")
    first_created = review.overrides["funding.revenue"].created_at
    ReviewWorkflow.add_override(review, "funding.revenue", 1500, 1800, "second invoice")

    entry = review.overrides["funding.revenue"]
    assert entry.original == 1000
    assert entry.corrected == 1800
    assert entry.reason == "second invoice"
    assert entry.created_at == first_created
    assert entry.updated_at is not None


def test_override_requires_reason(review):
    with pytest.raises(MissingReason):
        ReviewWorkflow.add_override(review, "progress.cash", 0, 100, " ")

    assert review.overrides == {}


def test_override_rejects_unknown_field(review):
    with pytest.raises(InvalidOverride):
        ReviewWorkflow.add_override(review, "progress.happiness", 0, 100, "why not")


@pytest.mark.parametrize("value", ["abc", True, None, float("nan"), float("inf"), ""])
def test_override_rejects_non_numeric_value(review, value):
    with pytest.raises(InvalidOverride):
        ReviewWorkflow.add_override(review, "progress.cash", 0, value, "typo")

    assert review.overrides == {}


@pytest.mark.parametrize("value, expected", [
    ("1200", 1200),
    (" 12.5 ", 12.5),
    (3.0, 3),
    (-250, -250),
])
def test_numeric_override_values_are_normalized(value, expected):
    assert parse_override_value("funding.revenue", value) == expected


@pytest.mark.parametrize("field_path", ["employees", "founders"])
def test_headcount_override_must_be_whole_number(review, field_path):
    with pytest.raises(InvalidOverride):
        ReviewWorkflow.add_override(review, field_path, 2, 2.5, "contract says two and a half")
    with pytest.raises(InvalidOverride):
        ReviewWorkflow.add_override(review, field_path, 2, "1.5", "typo")

    assert review.overrides == {}
    assert parse_override_value(field_path, "3") == 3
    assert parse_override_value(field_path, 4.0) == 4


def test_text_override_for_legal_form(review):
    ReviewWorkflow.add_override(review, "legalForm", "vof", " bv ", "registered as BV")

    assert review.overrides["legalForm"].corrected == "bv"


def test_notes_can_be_saved_in_any_state(review):
    rejected, _ = ReviewWorkflow.reject(review, "facilitator", "incomplete")

    ReviewWorkflow.save_notes(rejected, "Team will resubmit next session")

    assert rejected.notes == "Team will resubmit next session"
