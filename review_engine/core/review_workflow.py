"""
審核流程：主持人對單一回合的所有審核操作

純記憶體操作，不碰資料庫，也不直接修改 Team：
- 非終點的編輯（合約核對、修正值、備註）直接更新傳入的審核物件
- 會改變狀態的操作（核准、退回、重開）回傳新的審核物件，
  原物件維持上一次提交的狀態，直到持久層寫入成功
- 對 Team 的影響以 TeamStatusIntent 表達，由持久層套用
"""
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Tuple
import logging
import math

from review_engine.core.exceptions import (
    IncompleteVerificationError,
    InvalidOverride,
    InvalidStateTransition,
    MissingReason,
)
from review_engine.core.state_machine import ReviewStateMachine
from review_engine.models import ContractType, ReviewStatus, TeamStatus
from review_engine.schemas import (
    ContractCheck,
    OverrideEntry,
    ReviewDecision,
    ReviewSnapshot,
    TeamStatusIntent,
    VerificationSummary,
)
from review_engine.services.progress_service import OVERRIDABLE_FIELDS

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def _contract_key(contract_type) -> str:
    return contract_type.value if isinstance(contract_type, ContractType) else str(contract_type)


def parse_override_value(field_path: str, corrected: Any) -> Any:
    """
    驗證並正規化修正值

    規則：
    - field_path 必須是可修正欄位
    - 數值欄位：必須是有限的數字（接受 "1200" 這類數字字串，不接受 bool）
    - 整數欄位（employees、founders）：不接受小數
    - 文字欄位：必須是非空字串

    返回：
        正規化後的值（整數值的 float 轉成 int）

    異常：
        InvalidOverride: 不合法
    """
    target = OVERRIDABLE_FIELDS.get(field_path)
    if target is None:
        raise InvalidOverride(field_path, "field cannot be overridden")

    if not target.numeric:
        if not isinstance(corrected, str) or not corrected.strip():
            raise InvalidOverride(field_path, "a non-empty text value is required")
        return corrected.strip()

    if isinstance(corrected, bool) or corrected is None:
        raise InvalidOverride(field_path, f"{corrected!r} is not a number")
    try:
        value = float(corrected.strip() if isinstance(corrected, str) else corrected)
    except (TypeError, ValueError):
        raise InvalidOverride(field_path, f"{corrected!r} is not a number")
    if not math.isfinite(value):
        raise InvalidOverride(field_path, f"{corrected!r} is not a finite number")
    if target.integer and not value.is_integer():
        raise InvalidOverride(field_path, f"{corrected!r} is not a whole number")
    return int(value) if value.is_integer() else value


class ReviewWorkflow:
    """回合審核流程"""

    @staticmethod
    def new_review(team_id: str, round_number: int) -> ReviewSnapshot:
        """主持人第一次打開某回合時建立的空白審核"""
        return ReviewSnapshot(team_id=team_id, round_number=round_number)

    @staticmethod
    def record_contract_check(
        review: ReviewSnapshot,
        contract_type,
        checked: bool,
        approved: Optional[bool],
        comment: str = "",
    ) -> ReviewSnapshot:
        """
        新增或更新一筆合約核對結果（不改變審核狀態）

        參數：
            review: 審核物件（直接更新）
            contract_type: 合約類別
            checked: 是否已比對紙本
            approved: 核可 / 有問題 / 未決定（None）
            comment: 備註或退件原因

        異常：
            InvalidStateTransition: 回合已核准，合約核對已鎖定
        """
        if ReviewStateMachine.is_locked(review):
            raise InvalidStateTransition(
                f"Round {review.round_number} is approved; contract checks are locked"
            )

        key = _contract_key(contract_type)
        review.contract_checks[key] = ContractCheck(
            checked=checked, approved=approved, comment=comment or ""
        )
        return review

    @staticmethod
    def add_override(
        review: ReviewSnapshot,
        field_path: str,
        original: Any,
        corrected: Any,
        reason: str,
    ) -> ReviewSnapshot:
        """
        記錄一筆數值修正（稽核紀錄）

        規則：
        - reason 必填
        - 數值欄位的修正值必須是合法數字
        - 同一欄位修正多次：保留第一次的 original 與 created_at，
          corrected / reason 更新為最新一次（稽核紀錄永遠顯示真正提交的值）

        異常：
            MissingReason: 沒有理由
            InvalidOverride: 欄位或數值不合法
            InvalidStateTransition: 回合已核准
        """
        if not reason or not reason.strip():
            raise MissingReason("override a submitted value")
        value = parse_override_value(field_path, corrected)
        if ReviewStateMachine.is_locked(review):
            raise InvalidStateTransition(
                f"Round {review.round_number} is approved; overrides are locked"
            )

        now = _now()
        previous = review.overrides.get(field_path)
        if previous is None:
            entry = OverrideEntry(
                field=field_path,
                original=original,
                corrected=value,
                reason=reason.strip(),
                created_at=now,
            )
        else:
            entry = OverrideEntry(
                field=field_path,
                original=previous.original,
                corrected=value,
                reason=reason.strip(),
                created_at=previous.created_at,
                updated_at=now,
            )
        review.overrides[field_path] = entry

        logger.info(
            f"Override on {review.team_id}/{review.round_number} {field_path}: "
            f"{entry.original!r} -> {value!r}"
        )
        return review

    @staticmethod
    def save_notes(review: ReviewSnapshot, text: str) -> ReviewSnapshot:
        """儲存主持人備註（任何狀態都可以）"""
        review.notes = text or ""
        return review

    @staticmethod
    def outstanding_contracts(
        review: ReviewSnapshot,
        required_contracts: Iterable,
    ) -> list:
        """還沒有 approved is True 的必要合約"""
        outstanding = []
        for contract_type in required_contracts:
            check = review.contract_checks.get(_contract_key(contract_type))
            if check is None or check.approved is not True:
                outstanding.append(_contract_key(contract_type))
        return outstanding

    @staticmethod
    def verification_summary(
        review: ReviewSnapshot,
        required_contracts: Iterable[ContractType],
    ) -> VerificationSummary:
        """
        彙總必要合約的核對進度

        返回：
            VerificationSummary（required / approved / flagged / unchecked）
        """
        required = sorted(required_contracts, key=lambda c: c.value)
        approved, flagged, unchecked = [], [], []
        for contract_type in required:
            check = review.contract_checks.get(contract_type.value)
            if check is not None and check.approved is True:
                approved.append(contract_type)
            elif check is not None and check.approved is False:
                flagged.append(contract_type)
            else:
                unchecked.append(contract_type)
        return VerificationSummary(
            required=tuple(required),
            approved=tuple(approved),
            flagged=tuple(flagged),
            unchecked=tuple(unchecked),
        )

    @staticmethod
    def approve(
        review: ReviewSnapshot,
        required_contracts: Iterable,
        reviewer: str,
        team_status: Optional[TeamStatus] = None,
    ) -> Tuple[ReviewSnapshot, ReviewDecision]:
        """
        核准回合

        參數：
            review: 審核物件
            required_contracts: 此回合的必要合約
            reviewer: 審核者
            team_status: 隊伍目前的狀態；blocked 的隊伍核准後仍是 blocked，
                只更新 last_approved_round（解除封鎖只能靠重設）

        前置條件：
            每一個必要合約的 contract_checks[c].approved 都是 True

        流程：
        1. 檢查必要合約
        2. 透過狀態機轉換 PENDING -> APPROVED，寫入審核者與時間
        3. 產生隊伍狀態意圖：playing（blocked 維持 blocked），last_approved_round = 此回合

        返回：
            (新的審核物件, ReviewDecision)；傳入的 review 不變

        異常：
            IncompleteVerificationError: 還有合約未核可
            InvalidStateTransition: 審核不是 PENDING
        """
        outstanding = ReviewWorkflow.outstanding_contracts(review, required_contracts)
        if outstanding:
            raise IncompleteVerificationError(outstanding)

        team_after = TeamStatus.BLOCKED if team_status == TeamStatus.BLOCKED else TeamStatus.PLAYING
        now = _now()
        approved = ReviewStateMachine.transition(
            review,
            ReviewStatus.APPROVED,
            reviewed_by=reviewer,
            reviewed_at=now,
            rejection_reason=None,
        )
        decision = ReviewDecision(
            team_id=review.team_id,
            round_number=review.round_number,
            status=ReviewStatus.APPROVED,
            reviewer=reviewer,
            decided_at=now,
            team_intent=TeamStatusIntent(
                team_id=review.team_id,
                status=team_after,
                last_approved_round=review.round_number,
            ),
        )
        return approved, decision

    @staticmethod
    def reject(
        review: ReviewSnapshot,
        reviewer: str,
        reason: str,
    ) -> Tuple[ReviewSnapshot, ReviewDecision]:
        """
        退回回合

        流程：
        1. 檢查理由
        2. 透過狀態機轉換 PENDING -> REJECTED，寫入審核者、時間、理由
        3. 產生隊伍狀態意圖：blocked

        返回：
            (新的審核物件, ReviewDecision)；傳入的 review 不變

        異常：
            MissingReason: 理由空白
            InvalidStateTransition: 審核不是 PENDING
        """
        if not reason or not reason.strip():
            raise MissingReason("reject a round")

        now = _now()
        rejected = ReviewStateMachine.transition(
            review,
            ReviewStatus.REJECTED,
            reviewed_by=reviewer,
            reviewed_at=now,
            rejection_reason=reason.strip(),
        )
        decision = ReviewDecision(
            team_id=review.team_id,
            round_number=review.round_number,
            status=ReviewStatus.REJECTED,
            reviewer=reviewer,
            reason=reason.strip(),
            decided_at=now,
            team_intent=TeamStatusIntent(team_id=review.team_id, status=TeamStatus.BLOCKED),
        )
        return rejected, decision

    @staticmethod
    def reopen(review: ReviewSnapshot) -> ReviewSnapshot:
        """
        隊伍重設後，把退回的審核重新打開（REJECTED -> PENDING）

        退回理由保留在 rejection_reason 供查閱。

        異常：
            InvalidStateTransition: 審核不是 REJECTED
        """
        return ReviewStateMachine.transition(review, ReviewStatus.PENDING)
