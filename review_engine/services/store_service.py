"""
資料存取服務：ORM 資料列與 pydantic 快照之間的轉換

核心邏輯（審核流程、計分、排行榜）只認得快照，
所有讀寫資料庫的地方都集中在這裡與 ReviewManager。
"""
import asyncio
from typing import Callable, Dict, List, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from review_engine.core.exceptions import PartialFetchError, PersistenceError, TeamNotFound
from review_engine.core.locks import with_review_lock, with_team_lock
from review_engine.models import Review, Round, Team
from review_engine.schemas import (
    ReviewSnapshot,
    RoundSnapshot,
    TeamSnapshot,
    TeamState,
    TeamStatusIntent,
)

logger = logging.getLogger(__name__)


# ============ ORM -> 快照 ============

def team_snapshot(team: Team) -> TeamSnapshot:
    return TeamSnapshot(
        team_id=team.id,
        team_name=team.team_name,
        game_mode=team.game_mode,
        status=team.status,
        current_round=team.current_round or 0,
        last_approved_round=team.last_approved_round,
        latest_progress=team.latest_progress,
    )


def round_snapshot(round_obj: Round) -> RoundSnapshot:
    return RoundSnapshot(
        team_id=round_obj.team_id,
        round_number=round_obj.round_number,
        activities=round_obj.activities or {},
        completed_activities=round_obj.completed_activities or [],
        funding=round_obj.funding or {},
        progress=round_obj.progress or {},
        founders=round_obj.founders or 0,
        employees=round_obj.employees or 0,
        legal_form=round_obj.legal_form,
        office=round_obj.office,
        submitted_at=round_obj.submitted_at,
    )


def review_snapshot(review: Review) -> ReviewSnapshot:
    return ReviewSnapshot(
        team_id=review.team_id,
        round_number=review.round_number,
        status=review.status,
        contract_checks=review.contract_checks or {},
        overrides=review.overrides or {},
        notes=review.notes or "",
        reviewed_by=review.reviewed_by,
        reviewed_at=review.reviewed_at,
        rejection_reason=review.rejection_reason,
    )


# ============ 讀取 ============

def get_team(db: Session, team_id: str) -> TeamSnapshot:
    """
    異常：
        TeamNotFound: 隊伍不存在
    """
    team = db.query(Team).filter(Team.id == team_id).first()
    if not team:
        raise TeamNotFound(team_id)
    return team_snapshot(team)


def get_rounds(db: Session, team_id: str) -> List[RoundSnapshot]:
    """隊伍的所有回合，依 round_number 由小到大"""
    rows = db.query(Round).filter(
        Round.team_id == team_id
    ).order_by(Round.round_number).all()
    return [round_snapshot(r) for r in rows]


def get_round(db: Session, team_id: str, round_number: int) -> Optional[RoundSnapshot]:
    row = db.query(Round).filter(
        Round.team_id == team_id,
        Round.round_number == round_number,
    ).first()
    return round_snapshot(row) if row else None


def get_review(db: Session, team_id: str, round_number: int) -> Optional[ReviewSnapshot]:
    row = db.query(Review).filter(
        Review.team_id == team_id,
        Review.round_number == round_number,
    ).first()
    return review_snapshot(row) if row else None


def get_reviews(db: Session, team_id: str) -> Dict[int, ReviewSnapshot]:
    rows = db.query(Review).filter(Review.team_id == team_id).all()
    return {r.round_number: review_snapshot(r) for r in rows}


def list_team_ids(db: Session, game_id: str) -> List[str]:
    rows = db.query(Team.id).filter(Team.game_id == game_id).order_by(Team.id).all()
    return [row[0] for row in rows]


def fetch_team_state(db: Session, team_id: str) -> TeamState:
    """
    一次讀出排行榜計算一支隊伍需要的所有資料

    異常：
        PartialFetchError: 隊伍不存在或資料庫讀取失敗
    """
    try:
        return TeamState(
            team=get_team(db, team_id),
            rounds=get_rounds(db, team_id),
            reviews=get_reviews(db, team_id),
        )
    except TeamNotFound as e:
        raise PartialFetchError(team_id, str(e)) from e
    except SQLAlchemyError as e:
        raise PartialFetchError(team_id, str(e)) from e


def make_state_fetcher(session_factory: Callable[[], Session]):
    """
    建立排行榜使用的 async 讀取函式

    每次讀取都開一個新的 session，並在 worker thread 中執行，
    所以慢的資料庫查詢不會卡住 event loop。
    """
    def _fetch(team_id: str) -> TeamState:
        db = session_factory()
        try:
            return fetch_team_state(db, team_id)
        finally:
            db.close()

    async def fetch_state(team_id: str) -> TeamState:
        return await asyncio.to_thread(_fetch, team_id)

    return fetch_state


# ============ 寫入（必須在 @transactional 內呼叫） ============

def persist_review(db: Session, review: ReviewSnapshot) -> Review:
    """
    寫入（新增或覆蓋）一筆審核

    注意：
        - 不 commit，由呼叫端的 transaction 決定
        - SQLAlchemyError 在 flush 時轉成 PersistenceError
    """
    row = with_review_lock(review.team_id, review.round_number, db).first()
    if row is None:
        row = Review(team_id=review.team_id, round_number=review.round_number)
        db.add(row)

    data = review.model_dump(mode="json")
    row.status = review.status
    row.contract_checks = data["contract_checks"]
    row.overrides = data["overrides"]
    row.notes = review.notes
    row.reviewed_by = review.reviewed_by
    row.reviewed_at = review.reviewed_at
    row.rejection_reason = review.rejection_reason

    try:
        db.flush()
    except SQLAlchemyError as e:
        raise PersistenceError(
            f"Review {review.team_id}/{review.round_number} could not be written: {e}"
        ) from e
    return row


def persist_team_status(db: Session, intent: TeamStatusIntent) -> Team:
    """
    套用審核結果對隊伍的狀態變更

    異常：
        TeamNotFound: 隊伍不存在
    """
    team = with_team_lock(intent.team_id, db).first()
    if not team:
        raise TeamNotFound(intent.team_id)

    team.status = intent.status
    if intent.last_approved_round is not None:
        team.last_approved_round = intent.last_approved_round
    if intent.current_round is not None:
        team.current_round = intent.current_round

    try:
        db.flush()
    except SQLAlchemyError as e:
        raise PersistenceError(f"Team {intent.team_id} status could not be written: {e}") from e

    logger.info(f"Team {intent.team_id} -> {intent.status.value}")
    return team
