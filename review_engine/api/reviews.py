"""
Review API Endpoints（主持人審核）

職責：
1. 讀取回合審核（含必要合約、核對進度、可修正欄位）
2. 合約核對、數值修正、備註
3. 核准 / 退回回合、重設隊伍

所有業務邏輯都在 ReviewManager，這裡只負責把異常轉成 HTTP 狀態碼：
    ValidationError → 400
    TeamNotFound / RoundNotFound → 404
    IncompleteVerificationError / InvalidStateTransition → 409
    PersistenceError → 503
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from review_engine.core.exceptions import (
    IncompleteVerificationError,
    InvalidStateTransition,
    PersistenceError,
    ReviewEngineException,
    RoundNotFound,
    TeamNotFound,
    ValidationError,
)
from review_engine.core.review_manager import ReviewManager
from review_engine.core.review_workflow import ReviewWorkflow
from review_engine.database import get_db, get_settings
from review_engine.models import Team
from review_engine.schemas import (
    ContractCheckSubmit,
    NotesSubmit,
    OverrideSubmit,
    RejectSubmit,
    RequiredContractsResponse,
    ReviewDecision,
    ReviewerSubmit,
    ReviewResponse,
    ReviewSnapshot,
    ScoreSnapshot,
    TeamSnapshot,
)
from review_engine.services import store_service
from review_engine.services.contract_service import (
    contract_details,
    is_known_contract,
    missing_expert_contracts,
    required_contracts,
    required_expert_contracts,
)
from review_engine.services.progress_service import (
    apply_overrides,
    compute_warnings,
    override_labels,
)
from review_engine.services.scoring_service import score_team

router = APIRouter(prefix="/api/games/{game_id}/teams", tags=["reviews"])
logger = logging.getLogger(__name__)


def to_http_exception(e: ReviewEngineException) -> HTTPException:
    if isinstance(e, IncompleteVerificationError):
        return HTTPException(
            status_code=409,
            detail={"message": str(e), "outstanding": e.outstanding},
        )
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, (TeamNotFound, RoundNotFound)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidStateTransition):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, PersistenceError):
        return HTTPException(status_code=503, detail="Review could not be saved, please retry")
    return HTTPException(status_code=500, detail="Internal error")


def ensure_team_in_game(db: Session, game_id: str, team_id: str):
    """隊伍必須屬於這場遊戲"""
    exists = db.query(Team.id).filter(Team.id == team_id, Team.game_id == game_id).first()
    if not exists:
        raise TeamNotFound(team_id)


def build_review_response(db: Session, team_id: str, round_number: int) -> ReviewResponse:
    round_obj, review = ReviewManager.load(db, team_id, round_number)
    corrected = apply_overrides(round_obj, review)
    required = required_contracts(corrected)
    return ReviewResponse(
        review=review,
        required_contracts=sorted(required, key=lambda c: c.value),
        summary=ReviewWorkflow.verification_summary(review, required),
        contract_details={c.value: contract_details(corrected, c) for c in required},
        overridable_fields=override_labels(),
        warnings=compute_warnings(corrected.progress),
    )


@router.get("/{team_id}/rounds/{round_number}/review", response_model=ReviewResponse)
def get_review(game_id: str, team_id: str, round_number: int, db: Session = Depends(get_db)):
    """
    取得回合審核畫面需要的所有資料

    返回：
        - review: 目前的審核（沒有紀錄時是空白的 pending 審核）
        - required_contracts / summary: 必要合約與核對進度
        - contract_details: 每份合約要比對的數位欄位
        - warnings: 套用修正值後的進度警示
    """
    try:
        ensure_team_in_game(db, game_id, team_id)
        return build_review_response(db, team_id, round_number)

    except ReviewEngineException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get review: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get(
    "/{team_id}/rounds/{round_number}/contracts",
    response_model=RequiredContractsResponse,
)
def get_required_contracts(
    game_id: str,
    team_id: str,
    round_number: int,
    db: Session = Depends(get_db),
):
    """
    取得回合的必要合約（含累積活動產生的專家合約）

    專家合約依「到此回合為止」的累積活動計算。
    """
    try:
        ensure_team_in_game(db, game_id, team_id)
        round_obj, review = ReviewManager.load(db, team_id, round_number)
        history = [
            r for r in store_service.get_rounds(db, team_id)
            if r.round_number <= round_number
        ]
        verified = {
            key: check.approved is True
            for key, check in review.contract_checks.items()
        }
        return RequiredContractsResponse(
            round_number=round_number,
            required_contracts=sorted(
                required_contracts(apply_overrides(round_obj, review)), key=lambda c: c.value
            ),
            expert_contracts={
                expert_id: [c.id for c in contracts]
                for expert_id, contracts in required_expert_contracts(history).items()
            },
            missing_expert_contracts=[c.id for c in missing_expert_contracts(history, verified)],
        )

    except ReviewEngineException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get required contracts: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.put(
    "/{team_id}/rounds/{round_number}/review/contracts/{contract_key}",
    response_model=ReviewSnapshot,
)
def record_contract_check(
    game_id: str,
    team_id: str,
    round_number: int,
    contract_key: str,
    check: ContractCheckSubmit,
    db: Session = Depends(get_db),
):
    """記錄一份合約的核對結果（contract_key 是合約類別或專家合約 id）"""
    try:
        if not is_known_contract(contract_key):
            raise HTTPException(status_code=400, detail=f"Unknown contract {contract_key}")
        ensure_team_in_game(db, game_id, team_id)
        return ReviewManager.record_contract_check(
            db, team_id, round_number, contract_key,
            check.checked, check.approved, check.comment,
        )

    except HTTPException:
        raise
    except ReviewEngineException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to record contract check: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{team_id}/rounds/{round_number}/review/overrides", response_model=ReviewSnapshot)
def add_override(
    game_id: str,
    team_id: str,
    round_number: int,
    override: OverrideSubmit,
    db: Session = Depends(get_db),
):
    """修正一個提交值（必須附理由）"""
    try:
        ensure_team_in_game(db, game_id, team_id)
        return ReviewManager.add_override(
            db, team_id, round_number,
            override.field_path, override.corrected, override.reason,
        )

    except ReviewEngineException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to add override: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.put("/{team_id}/rounds/{round_number}/review/notes", response_model=ReviewSnapshot)
def save_notes(
    game_id: str,
    team_id: str,
    round_number: int,
    notes: NotesSubmit,
    db: Session = Depends(get_db),
):
    try:
        ensure_team_in_game(db, game_id, team_id)
        return ReviewManager.save_notes(db, team_id, round_number, notes.notes)

    except ReviewEngineException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to save notes: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{team_id}/rounds/{round_number}/review/approve", response_model=ReviewDecision)
def approve_round(
    game_id: str,
    team_id: str,
    round_number: int,
    body: ReviewerSubmit,
    db: Session = Depends(get_db),
):
    """
    核准回合

    所有必要合約都核可才會成功，否則回傳 409 與未核可的合約列表
    """
    try:
        ensure_team_in_game(db, game_id, team_id)
        return ReviewManager.approve_round(db, team_id, round_number, body.reviewer)

    except ReviewEngineException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to approve round: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{team_id}/rounds/{round_number}/review/reject", response_model=ReviewDecision)
def reject_round(
    game_id: str,
    team_id: str,
    round_number: int,
    body: RejectSubmit,
    db: Session = Depends(get_db),
):
    """退回回合（理由必填），隊伍進入 blocked"""
    try:
        ensure_team_in_game(db, game_id, team_id)
        return ReviewManager.reject_round(db, team_id, round_number, body.reviewer, body.reason)

    except ReviewEngineException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to reject round: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{team_id}/reset", response_model=TeamSnapshot)
def reset_team(game_id: str, team_id: str, db: Session = Depends(get_db)):
    """重設隊伍：恢復 playing，退回的審核重新打開"""
    try:
        ensure_team_in_game(db, game_id, team_id)
        return ReviewManager.reset_team(db, team_id)

    except ReviewEngineException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to reset team: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{team_id}/score", response_model=ScoreSnapshot)
def get_team_score(game_id: str, team_id: str, db: Session = Depends(get_db)):
    """隊伍目前的完整分數（加權指標、加分、快速分數）"""
    try:
        ensure_team_in_game(db, game_id, team_id)
        return score_team(
            store_service.get_team(db, team_id),
            store_service.get_rounds(db, team_id),
            store_service.get_reviews(db, team_id),
            approved_only=get_settings().score_approved_only,
        )

    except ReviewEngineException as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to score team: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
