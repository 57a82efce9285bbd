"""
審核狀態機：集中管理回合審核的所有狀態轉換

    PENDING ──approve──▶ APPROVED（該回合的終點，合約與修正值鎖定）
       │
       └──reject──▶ REJECTED ──reset（隊伍重設）──▶ PENDING

REJECTED 不會自動回到 PENDING，只有主持人明確重設隊伍才會。
"""
from typing import Dict, List
import logging

from review_engine.core.exceptions import InvalidStateTransition
from review_engine.models import ReviewStatus
from review_engine.schemas import ReviewSnapshot

logger = logging.getLogger(__name__)


class ReviewStateMachine:
    """回合審核狀態機"""

    ALLOWED_TRANSITIONS: Dict[ReviewStatus, List[ReviewStatus]] = {
        ReviewStatus.PENDING: [ReviewStatus.APPROVED, ReviewStatus.REJECTED],
        ReviewStatus.REJECTED: [ReviewStatus.PENDING],
        ReviewStatus.APPROVED: [],
    }

    @classmethod
    def can_transition(cls, from_status: ReviewStatus, to_status: ReviewStatus) -> bool:
        return to_status in cls.ALLOWED_TRANSITIONS.get(from_status, [])

    @classmethod
    def transition(cls, review: ReviewSnapshot, to_status: ReviewStatus, **stamp) -> ReviewSnapshot:
        """
        產生轉換後的新審核物件

        參數：
            review: 目前的審核（不會被修改）
            to_status: 目標狀態
            stamp: 一併寫入的欄位（reviewed_by、reviewed_at、rejection_reason ...）

        返回：
            新的 ReviewSnapshot

        異常：
            InvalidStateTransition: 狀態轉換不合法
        """
        if not cls.can_transition(review.status, to_status):
            allowed = [s.value for s in cls.ALLOWED_TRANSITIONS.get(review.status, [])]
            raise InvalidStateTransition(
                f"Cannot transition review of round {review.round_number} "
                f"(team {review.team_id}) from {review.status.value} to {to_status.value}. "
                f"Allowed: {allowed}"
            )

        updated = review.model_copy(deep=True, update={"status": to_status, **stamp})
        logger.info(
            f"Review {review.team_id}/{review.round_number}: "
            f"{review.status.value} -> {to_status.value}"
        )
        return updated

    @staticmethod
    def is_locked(review: ReviewSnapshot) -> bool:
        """已核准的回合不可再修改合約核對與修正值"""
        return review.status == ReviewStatus.APPROVED
