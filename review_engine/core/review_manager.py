"""
Review Manager：把審核流程接到資料庫

職責：
1. 讀取回合與審核（不存在的審核視為空白的 PENDING 審核）
2. 呼叫 ReviewWorkflow 做純記憶體的審核操作
3. 在同一個 transaction 內寫入審核紀錄與隊伍狀態

每個指令都是一個 transaction：成功就全部寫入，失敗就全部 rollback，
並以 PersistenceError（或業務異常）回報，不會有寫了一半的審核。
"""
from datetime import datetime, timezone
from typing import Any, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from review_engine.core.exceptions import InvalidOverride, RoundNotFound, TeamNotFound
from review_engine.core.locks import with_review_lock, with_team_lock
from review_engine.core.review_workflow import ReviewWorkflow
from review_engine.database import transactional
from review_engine.models import Review, ReviewStatus, TeamStatus
from review_engine.schemas import ReviewDecision, ReviewSnapshot, RoundSnapshot, TeamSnapshot
from review_engine.services import store_service
from review_engine.services.contract_service import required_contracts
from review_engine.services.progress_service import OVERRIDABLE_FIELDS, apply_overrides, read_field

logger = logging.getLogger(__name__)


class ReviewManager:
    """回合審核指令"""

    @staticmethod
    def load(
        db: Session,
        team_id: str,
        round_number: int,
        for_update: bool = False,
    ) -> Tuple[RoundSnapshot, ReviewSnapshot]:
        """
        讀取回合與它的審核

        參數：
            for_update: 指令（寫入）用 True，先鎖隊伍再鎖審核紀錄，
                同一支隊伍的審核指令依序執行，不會互相覆蓋

        返回：
            (回合, 審核)；還沒有審核紀錄時回傳空白的 PENDING 審核（尚未寫入）

        異常：
            TeamNotFound: 隊伍不存在
            RoundNotFound: 回合不存在
        """
        if for_update:
            if not with_team_lock(team_id, db).first():
                raise TeamNotFound(team_id)
        else:
            store_service.get_team(db, team_id)
        round_obj = store_service.get_round(db, team_id, round_number)
        if round_obj is None:
            raise RoundNotFound(team_id, round_number)

        if for_update:
            row = with_review_lock(team_id, round_number, db).first()
            review = store_service.review_snapshot(row) if row else None
        else:
            review = store_service.get_review(db, team_id, round_number)
        if review is None:
            review = ReviewWorkflow.new_review(team_id, round_number)
        return round_obj, review

    @staticmethod
    @transactional
    def get_or_create_review(db: Session, team_id: str, round_number: int) -> ReviewSnapshot:
        """主持人打開回合時呼叫，確保審核紀錄存在"""
        _, review = ReviewManager.load(db, team_id, round_number, for_update=True)
        store_service.persist_review(db, review)
        return review

    @staticmethod
    @transactional
    def record_contract_check(
        db: Session,
        team_id: str,
        round_number: int,
        contract_type,
        checked: bool,
        approved: Optional[bool],
        comment: str = "",
    ) -> ReviewSnapshot:
        _, review = ReviewManager.load(db, team_id, round_number, for_update=True)
        ReviewWorkflow.record_contract_check(review, contract_type, checked, approved, comment)
        store_service.persist_review(db, review)
        return review

    @staticmethod
    @transactional
    def add_override(
        db: Session,
        team_id: str,
        round_number: int,
        field_path: str,
        corrected: Any,
        reason: str,
    ) -> ReviewSnapshot:
        """
        修正一個提交值

        original 一律從提交的回合讀取，呼叫端只需要提供修正值與理由。

        異常：
            MissingReason / InvalidOverride: 輸入不合法
            InvalidStateTransition: 回合已核准
        """
        if field_path not in OVERRIDABLE_FIELDS:
            raise InvalidOverride(field_path, "field cannot be overridden")

        round_obj, review = ReviewManager.load(db, team_id, round_number, for_update=True)
        original = read_field(round_obj, field_path)
        ReviewWorkflow.add_override(review, field_path, original, corrected, reason)
        store_service.persist_review(db, review)
        return review

    @staticmethod
    @transactional
    def save_notes(db: Session, team_id: str, round_number: int, text: str) -> ReviewSnapshot:
        _, review = ReviewManager.load(db, team_id, round_number, for_update=True)
        ReviewWorkflow.save_notes(review, text)
        store_service.persist_review(db, review)
        return review

    @staticmethod
    @transactional
    def approve_round(db: Session, team_id: str, round_number: int, reviewer: str) -> ReviewDecision:
        """
        核准回合

        流程：
        1. 鎖定隊伍與審核紀錄
        2. 依套用修正值後的回合內容計算必要合約
        3. ReviewWorkflow.approve（檢查合約、狀態轉換）
        4. 寫入審核紀錄
        5. 套用隊伍狀態（playing、last_approved_round；blocked 的隊伍維持 blocked）

        異常：
            IncompleteVerificationError: 還有合約未核可
            InvalidStateTransition: 審核不是 PENDING
            PersistenceError: 寫入失敗（審核與隊伍都不會改變）
        """
        round_obj, review = ReviewManager.load(db, team_id, round_number, for_update=True)
        team = store_service.get_team(db, team_id)
        corrected = apply_overrides(round_obj, review)
        approved, decision = ReviewWorkflow.approve(
            review, required_contracts(corrected), reviewer, team.status
        )
        store_service.persist_review(db, approved)
        store_service.persist_team_status(db, decision.team_intent)

        logger.info(f"Round {round_number} of team {team_id} approved by {reviewer}")
        return decision

    @staticmethod
    @transactional
    def reject_round(
        db: Session,
        team_id: str,
        round_number: int,
        reviewer: str,
        reason: str,
    ) -> ReviewDecision:
        """
        退回回合，隊伍進入 blocked

        異常：
            MissingReason: 理由空白
            InvalidStateTransition: 審核不是 PENDING
            PersistenceError: 寫入失敗
        """
        _, review = ReviewManager.load(db, team_id, round_number, for_update=True)
        rejected, decision = ReviewWorkflow.reject(review, reviewer, reason)
        store_service.persist_review(db, rejected)
        store_service.persist_team_status(db, decision.team_intent)

        logger.info(f"Round {round_number} of team {team_id} rejected by {reviewer}: {reason}")
        return decision

    @staticmethod
    @transactional
    def reset_team(db: Session, team_id: str) -> TeamSnapshot:
        """
        重設隊伍（主持人明確的補救操作）

        流程：
        1. 鎖定隊伍
        2. 隊伍回到 playing，current_round 歸零
        3. 所有被退回的審核重新打開（REJECTED -> PENDING）

        這是唯一能讓 blocked 隊伍恢復的方式。
        """
        team = with_team_lock(team_id, db).first()
        if not team:
            raise TeamNotFound(team_id)

        team.status = TeamStatus.PLAYING
        team.current_round = 0
        team.reset_at = datetime.now(timezone.utc)

        rejected = db.query(Review).filter(
            Review.team_id == team_id,
            Review.status == ReviewStatus.REJECTED,
        ).all()
        for row in rejected:
            reopened = ReviewWorkflow.reopen(store_service.review_snapshot(row))
            store_service.persist_review(db, reopened)

        db.flush()
        logger.info(f"Team {team_id} reset ({len(rejected)} rejected review(s) reopened)")
        return store_service.team_snapshot(team)
