"""
Pydantic 模型：引擎對外交換的資料結構

提交端送來的欄位是 camelCase（例如 investorEquity、currentTRL），
Python 端一律用 snake_case，兩種名稱都可以用來建立模型。
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from review_engine.models import (
    ContractType,
    GameMode,
    ReviewStatus,
    ScoreRegime,
    TeamStatus,
)


class SnapshotModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenSnapshotModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ============ 提交資料 ============

class Funding(SnapshotModel):
    investment: float = 0
    loan: float = 0
    subsidy: float = 0
    subsidy_fee: float = 0
    revenue: float = 0
    investor_equity: float = 0
    loan_interest: float = 0

    @field_validator("*", mode="before")
    @classmethod
    def blank_as_zero(cls, value):
        # 表單沒填的欄位會是 None 或空字串
        if value is None or (isinstance(value, str) and not value.strip()):
            return 0
        return value


class Progress(SnapshotModel):
    """回合結束時的進度快照；沒填的欄位保持 None，由 progress_service 統一補預設值"""
    cash: Optional[float] = None
    development_hours: Optional[float] = None
    interviews_total: Optional[float] = Field(
        None, validation_alias=AliasChoices("interviewsTotal", "interviews", "interviews_total")
    )
    validations_total: Optional[float] = Field(
        None, validation_alias=AliasChoices("validationsTotal", "validations", "validations_total")
    )
    investor_appeal: Optional[float] = None
    bank_trust: Optional[float] = None
    current_trl: Optional[float] = Field(
        None,
        alias="currentTRL",
        validation_alias=AliasChoices("currentTRL", "trl", "current_trl"),
    )
    founder_equity: Optional[float] = None


class RoundSnapshot(FrozenSnapshotModel):
    team_id: str = ""
    round_number: int = Field(
        0, validation_alias=AliasChoices("round", "roundNumber", "round_number")
    )
    activities: Dict[str, bool] = Field(default_factory=dict)
    completed_activities: List[str] = Field(default_factory=list)
    funding: Funding = Field(default_factory=Funding)
    progress: Progress = Field(default_factory=Progress)
    founders: int = 0
    employees: int = 0
    legal_form: Optional[str] = None
    office: Optional[str] = None
    submitted_at: Optional[datetime] = None

    @field_validator("activities", mode="before")
    @classmethod
    def drop_unset_flags(cls, value):
        if not value:
            return {}
        return {code: flag for code, flag in value.items() if flag is not None}


class TeamSnapshot(SnapshotModel):
    team_id: str
    team_name: str = "Unknown Team"
    game_mode: GameMode = GameMode.STARTUP
    status: TeamStatus = TeamStatus.REGISTERED
    current_round: int = 0
    last_approved_round: Optional[int] = None
    latest_progress: Optional[Progress] = None


# ============ 審核 ============

class ContractCheck(SnapshotModel):
    checked: bool = False
    approved: Optional[bool] = None
    comment: str = ""


class OverrideEntry(SnapshotModel):
    field: str
    original: Any = None
    corrected: Any = None
    reason: str
    created_at: datetime
    updated_at: Optional[datetime] = None


class ReviewSnapshot(SnapshotModel):
    team_id: str
    round_number: int
    status: ReviewStatus = ReviewStatus.PENDING
    contract_checks: Dict[str, ContractCheck] = Field(default_factory=dict)
    overrides: Dict[str, OverrideEntry] = Field(default_factory=dict)
    notes: str = ""
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


class TeamStatusIntent(FrozenSnapshotModel):
    """審核結果要求隊伍做的狀態變更；由持久層套用，審核流程本身不改 Team"""
    team_id: str
    status: TeamStatus
    last_approved_round: Optional[int] = None
    current_round: Optional[int] = None


class ReviewDecision(FrozenSnapshotModel):
    team_id: str
    round_number: int
    status: ReviewStatus
    reviewer: str
    reason: Optional[str] = None
    decided_at: datetime
    team_intent: TeamStatusIntent


class VerificationSummary(FrozenSnapshotModel):
    required: Tuple[ContractType, ...] = ()
    approved: Tuple[ContractType, ...] = ()
    flagged: Tuple[ContractType, ...] = ()
    unchecked: Tuple[ContractType, ...] = ()

    @property
    def complete(self) -> bool:
        return len(self.approved) == len(self.required)


# ============ 計分 ============

class ResolvedProgress(FrozenSnapshotModel):
    """一支隊伍經過預設值與修正值處理後的進度（所有計分與顯示都讀這份）"""
    cash: float
    trl: float
    development_hours: float
    validations: float
    interviews: float
    founder_equity: float
    investor_appeal: float
    bank_trust: float
    round: int
    has_rounds: bool
    completed_activities: Tuple[str, ...] = ()
    legal_form: Optional[str] = None
    employees: int = 0
    in_incubator: bool = False
    grants_received: int = 0
    patents: int = 0
    provisional_patents: int = 0
    loans_taken: int = 0


class ProgressWarning(FrozenSnapshotModel):
    type: str
    message: str
    field: str


class MetricScore(FrozenSnapshotModel):
    metric_id: str
    label: str
    raw_value: float
    weight: float
    weighted_score: float


class EarnedBonus(FrozenSnapshotModel):
    bonus_id: str
    label: str
    points: float


class ScoreSnapshot(FrozenSnapshotModel):
    team_id: str
    game_mode: GameMode
    base_score: float
    bonus_points: float
    total_score: float
    quick_score: int
    metric_scores: Dict[str, MetricScore] = Field(default_factory=dict)
    earned_bonuses: Tuple[EarnedBonus, ...] = ()
    performance: str = ""

    def value(self, regime: ScoreRegime) -> float:
        if regime == ScoreRegime.QUICK:
            return float(self.quick_score)
        return self.total_score


# ============ 排行榜 ============

class TeamState(SnapshotModel):
    """一次讀取到的單隊完整資料（隊伍 + 依回合排序的回合 + 審核）"""
    team: TeamSnapshot
    rounds: List[RoundSnapshot] = Field(default_factory=list)
    reviews: Dict[int, ReviewSnapshot] = Field(default_factory=dict)


class TeamRecord(FrozenSnapshotModel):
    team: TeamSnapshot
    has_rounds: bool
    awaiting_review: bool
    progress: ResolvedProgress
    score: ScoreSnapshot


class LeaderboardEntry(FrozenSnapshotModel):
    rank: int
    team_id: str
    team_name: str
    game_mode: GameMode
    status: TeamStatus
    score: float
    score_detail: ScoreSnapshot
    progress: ResolvedProgress


class LeaderboardTallies(FrozenSnapshotModel):
    total: int = 0
    registered: int = 0
    playing: int = 0
    blocked: int = 0
    awaiting_review: int = 0


class LeaderboardSnapshot(FrozenSnapshotModel):
    version: int = 0
    regime: ScoreRegime = ScoreRegime.QUICK
    entries: Tuple[LeaderboardEntry, ...] = ()
    tallies: LeaderboardTallies = Field(default_factory=LeaderboardTallies)
    faults: Dict[str, str] = Field(default_factory=dict)
    generated_at: Optional[datetime] = None


# ============ API 請求 / 回應 ============

class ContractCheckSubmit(SnapshotModel):
    checked: bool = True
    approved: Optional[bool] = None
    comment: str = ""


class OverrideSubmit(SnapshotModel):
    field_path: str
    corrected: Any
    reason: str = ""


class NotesSubmit(SnapshotModel):
    notes: str = ""


class ReviewerSubmit(SnapshotModel):
    reviewer: str


class RejectSubmit(SnapshotModel):
    reviewer: str
    reason: str = ""


class ReviewResponse(SnapshotModel):
    review: ReviewSnapshot
    required_contracts: List[ContractType]
    summary: VerificationSummary
    contract_details: Dict[str, List[Dict[str, str]]] = Field(default_factory=dict)
    overridable_fields: Dict[str, str] = Field(default_factory=dict)
    warnings: List[ProgressWarning] = Field(default_factory=list)


class RequiredContractsResponse(SnapshotModel):
    round_number: int
    required_contracts: List[ContractType]
    expert_contracts: Dict[str, List[str]]
    missing_expert_contracts: List[str]


class ActionResponse(BaseModel):
    status: str
