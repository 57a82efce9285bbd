"""
進度服務：唯一的「解析隊伍進度」入口

計分、排行榜、顯示都透過 resolve_team_progress() 取得進度，
預設值與備援順序只在這裡定義一次：

    回合快照（套用修正值後） → 隊伍上的進度快取 → 預設值

衍生出來的欄位從不寫回 Team 或 Round。
"""
import math
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence

from review_engine.models import ReviewStatus
from review_engine.schemas import (
    Funding,
    Progress,
    ProgressWarning,
    ResolvedProgress,
    ReviewSnapshot,
    RoundSnapshot,
    TeamSnapshot,
)
from review_engine.services.contract_service import cumulative_activities


DEFAULT_CASH = 5000
DEFAULT_TRL = 3
DEFAULT_INVESTOR_APPEAL = 2
DEFAULT_BANK_TRUST = 2
LOW_CASH_THRESHOLD = 1000

PATENT_ACTIVITIES = ("patentApplication", "patentFiling")
PROVISIONAL_PATENT_ACTIVITIES = ("patentSearch",)


class OverridableField(NamedTuple):
    section: Optional[str]  # "funding" / "progress" / None（回合本身的欄位）
    attribute: str
    label: str
    numeric: bool
    integer: bool = False  # 人數這類欄位只接受整數


OVERRIDABLE_FIELDS = {
    "funding.revenue": OverridableField("funding", "revenue", "Revenue", True),
    "funding.subsidy": OverridableField("funding", "subsidy", "Subsidy", True),
    "funding.subsidyFee": OverridableField("funding", "subsidy_fee", "Subsidy Fee", True),
    "funding.investment": OverridableField("funding", "investment", "Investment", True),
    "funding.investorEquity": OverridableField("funding", "investor_equity", "Investor Equity %", True),
    "funding.loan": OverridableField("funding", "loan", "Loan", True),
    "funding.loanInterest": OverridableField("funding", "loan_interest", "Loan Interest %", True),
    "progress.cash": OverridableField("progress", "cash", "Cash", True),
    "progress.developmentHours": OverridableField("progress", "development_hours", "Development Hours", True),
    "progress.interviewsTotal": OverridableField("progress", "interviews_total", "Interviews", True),
    "progress.validationsTotal": OverridableField("progress", "validations_total", "Validations", True),
    "progress.currentTRL": OverridableField("progress", "current_trl", "TRL", True),
    "progress.investorAppeal": OverridableField("progress", "investor_appeal", "Investor Appeal", True),
    "progress.bankTrust": OverridableField("progress", "bank_trust", "Bank Trust", True),
    "progress.founderEquity": OverridableField("progress", "founder_equity", "Founder Equity %", True),
    "employees": OverridableField(None, "employees", "Employees", True, integer=True),
    "founders": OverridableField(None, "founders", "Founders", True, integer=True),
    "legalForm": OverridableField(None, "legal_form", "Legal Form", False),
    "office": OverridableField(None, "office", "Office", False),
}


def read_field(round_obj: RoundSnapshot, field_path: str) -> Any:
    """
    讀取回合上某個可修正欄位的提交值

    異常：
        KeyError: field_path 不是可修正欄位
    """
    target = OVERRIDABLE_FIELDS[field_path]
    if target.section is None:
        return getattr(round_obj, target.attribute)
    return getattr(getattr(round_obj, target.section), target.attribute)


def apply_overrides(round_obj: RoundSnapshot, review: Optional[ReviewSnapshot]) -> RoundSnapshot:
    """
    回傳套用了審核修正值的新回合快照（原本的快照不變）

    參數：
        round_obj: 提交的回合
        review: 該回合的審核（None 或沒有修正值時直接回傳原回合）

    返回：
        RoundSnapshot
    """
    if review is None or not review.overrides:
        return round_obj

    funding = round_obj.funding.model_dump()
    progress = round_obj.progress.model_dump()
    top_level = {}

    for field_path, entry in review.overrides.items():
        target = OVERRIDABLE_FIELDS.get(field_path)
        if target is None:
            continue
        if target.section == "funding":
            funding[target.attribute] = entry.corrected
        elif target.section == "progress":
            progress[target.attribute] = entry.corrected
        else:
            top_level[target.attribute] = entry.corrected

    return round_obj.model_copy(update={
        "funding": Funding.model_validate(funding),
        "progress": Progress.model_validate(progress),
        **top_level,
    })


def resolve_team_progress(
    team: TeamSnapshot,
    rounds: Sequence[RoundSnapshot],
    reviews: Optional[Mapping[int, ReviewSnapshot]] = None,
    approved_only: bool = False,
) -> ResolvedProgress:
    """
    解析一支隊伍目前的進度

    邏輯：
    1. 回合依 round_number 排序（容忍缺少中間回合）
    2. 選出計分依據的回合：最新回合；approved_only 時改用最新「已核准」回合
    3. 每個回合先套用自己的修正值
    4. 單一欄位依「回合快照 → 隊伍快取 → 預設值」取第一個有值的
    5. 創辦人股權 = 100 - 到依據回合為止所有投資人股權的總和（除非回合直接提供）

    參數：
        team: 隊伍快照
        rounds: 隊伍的回合
        reviews: {round_number: 審核}
        approved_only: 只看已核准回合

    返回：
        ResolvedProgress
    """
    reviews = reviews or {}
    ordered = sorted(rounds, key=lambda r: r.round_number)
    if approved_only:
        ordered = [
            r for r in ordered
            if reviews.get(r.round_number) is not None
            and reviews[r.round_number].status == ReviewStatus.APPROVED
        ]

    corrected = [apply_overrides(r, reviews.get(r.round_number)) for r in ordered]
    basis = corrected[-1] if corrected else None
    cache = team.latest_progress or Progress()
    current = basis.progress if basis else Progress()

    investor_equity = sum(r.funding.investor_equity for r in corrected)
    founder_equity = _first_set(
        current.founder_equity, cache.founder_equity, max(0.0, 100.0 - investor_equity)
    )

    done = cumulative_activities(corrected)
    legal_form = next((r.legal_form for r in reversed(corrected) if r.legal_form), None)

    return ResolvedProgress(
        cash=_first_set(current.cash, cache.cash, DEFAULT_CASH),
        trl=_first_set(current.current_trl, cache.current_trl, DEFAULT_TRL),
        development_hours=_first_set(current.development_hours, cache.development_hours, 0),
        validations=_first_set(current.validations_total, cache.validations_total, 0),
        interviews=_first_set(current.interviews_total, cache.interviews_total, 0),
        founder_equity=founder_equity,
        investor_appeal=_first_set(current.investor_appeal, cache.investor_appeal, DEFAULT_INVESTOR_APPEAL),
        bank_trust=_first_set(current.bank_trust, cache.bank_trust, DEFAULT_BANK_TRUST),
        round=(basis.round_number if basis else 0) or team.current_round or 1,
        has_rounds=basis is not None,
        completed_activities=tuple(sorted(done)),
        legal_form=legal_form,
        employees=basis.employees if basis else 0,
        in_incubator=(
            "incubatorApplication" in done
            or (basis is not None and (basis.office or "").lower() == "incubator")
        ),
        grants_received=sum(1 for r in corrected if r.funding.subsidy > 0),
        patents=1 if done.intersection(PATENT_ACTIVITIES) else 0,
        provisional_patents=1 if done.intersection(PROVISIONAL_PATENT_ACTIVITIES) else 0,
        loans_taken=sum(1 for r in corrected if r.funding.loan > 0),
    )


def _first_set(*values):
    for value in values:
        if value is not None and not (isinstance(value, float) and math.isnan(value)):
            return value
    return None


def compute_warnings(progress: Optional[Progress]) -> List[ProgressWarning]:
    """
    根據回合進度產生給主持人看的警示

    規則：
    - cash < 0：danger「Negative cash flow」
    - 0 <= cash < 1000：warning「Low cash reserves」
    - 訪談數為 0：warning
    - 驗證數為 0：warning

    參數：
        progress: 回合進度（None 表示還沒有資料，不產生警示）
    """
    if progress is None:
        return []

    warnings = []
    if progress.cash is not None and progress.cash < 0:
        warnings.append(ProgressWarning(type="danger", message="Negative cash flow", field="cash"))
    if progress.cash is not None and 0 <= progress.cash < LOW_CASH_THRESHOLD:
        warnings.append(ProgressWarning(type="warning", message="Low cash reserves", field="cash"))
    if progress.interviews_total == 0:
        warnings.append(ProgressWarning(
            type="warning", message="No customer interviews yet", field="interviews"
        ))
    if progress.validations_total == 0:
        warnings.append(ProgressWarning(
            type="warning", message="No customer validation yet", field="validation"
        ))
    return warnings


def override_labels() -> Dict[str, str]:
    """{field_path: 顯示名稱}，給審核畫面列出可修正欄位"""
    return {path: target.label for path, target in OVERRIDABLE_FIELDS.items()}
