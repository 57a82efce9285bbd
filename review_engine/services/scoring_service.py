"""
計分服務：隊伍分數的計算邏輯

純計算邏輯，輸入是 progress_service 解析好的進度，輸出是 ScoreSnapshot。
兩套計分方式：
- quick_score()：即時排行榜用的快速分數（各項有上限，總和 <= 100）
- calculate_weighted_score()：主持人詳細檢視用的加權指標分數 + 加分規則
"""
import math
from typing import Callable, Dict, List, Mapping, NamedTuple, Optional, Sequence, Tuple

from review_engine.models import GameMode
from review_engine.schemas import (
    EarnedBonus,
    MetricScore,
    ResolvedProgress,
    ReviewSnapshot,
    RoundSnapshot,
    ScoreSnapshot,
    TeamSnapshot,
)
from review_engine.services import scoring_config as config
from review_engine.services.progress_service import resolve_team_progress


def clamp(low: float, high: float, value: float) -> float:
    return max(low, min(high, value))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def quick_score(progress: ResolvedProgress) -> int:
    """
    計算即時排行榜的快速分數

    ┌──────────────┬───────────────────────────────────────────────┬──────┐
    │ 項目          │ 規則                                          │ 上限 │
    ├──────────────┼───────────────────────────────────────────────┼──────┤
    │ 現金          │ >=50000:25, >=25000:18, >=10000:12, >=0:5     │ 25   │
    │ TRL          │ (trl - 3) * 4                                 │ 25   │
    │ 驗證          │ validations * 8 (上限 15) + interviews * 2 (上限 10) │ 25   │
    │ 股權          │ >70:10, >50:6, 其他:2                          │ 10   │
    │ 回合進度      │ (round - 1) * 3                               │ 15   │
    └──────────────┴───────────────────────────────────────────────┴──────┘

    每一項都夾在 [0, 上限]，所以結果一定在 0-100，
    且對現金、TRL、驗證、訪談、回合數各自單調不減。

    參數：
        progress: 解析後的隊伍進度

    返回：
        四捨五入後的整數分數

    範例：
        cash=60000, trl=3, validations=0, interviews=0, founder_equity=40, round=1
        → 25 + 0 + 0 + 2 + 0 = 27
    """
    score = 0.0

    cash = progress.cash
    if cash >= 50000:
        score += 25
    elif cash >= 25000:
        score += 18
    elif cash >= 10000:
        score += 12
    elif cash >= 0:
        score += 5

    score += clamp(0, 25, (progress.trl - 3) * 4)

    score += clamp(0, 15, progress.validations * 8)
    score += clamp(0, 10, progress.interviews * 2)

    if progress.founder_equity > 70:
        score += 10
    elif progress.founder_equity > 50:
        score += 6
    else:
        score += 2

    score += clamp(0, 15, (progress.round - 1) * 3)

    return _round_half_up(score)


# ============ 加權指標 ============

def _legal_milestones(progress: ResolvedProgress) -> float:
    if progress.legal_form:
        base = config.LEGAL_FORM_SCORES.get(
            progress.legal_form.lower(), config.LEGAL_FORM_UNKNOWN_SCORE
        )
    else:
        base = 0
    return base + progress.employees * config.POINTS_PER_EMPLOYEE


METRIC_CURVES: Dict[str, Callable[[ResolvedProgress], float]] = {
    "cash": lambda p: p.cash / config.CASH_TARGET * 100 if p.cash > 0 else 0,
    "trl": lambda p: (p.trl - config.TRL_MIN) / (config.TRL_MAX - config.TRL_MIN) * 100,
    "development": lambda p: p.development_hours / config.DEVELOPMENT_HOURS_TARGET * 100,
    "validations": lambda p: p.validations / config.VALIDATIONS_TARGET * 100,
    "interviews": lambda p: p.interviews / config.INTERVIEWS_TARGET * 100,
    "equity": lambda p: p.founder_equity,
    "ip": lambda p: (
        p.patents * config.PATENT_POINTS
        + p.provisional_patents * config.PROVISIONAL_PATENT_POINTS
    ),
    "legal": _legal_milestones,
    "support": lambda p: (
        (config.INCUBATOR_POINTS if p.in_incubator else 0)
        + p.grants_received * config.GRANT_POINTS
    ),
}


def normalize_metric(metric_id: str, progress: ResolvedProgress) -> float:
    """
    把單一指標正規化成 0-100 的原始分數

    異常：
        KeyError: 未知的指標
    """
    return round(clamp(0, 100, METRIC_CURVES[metric_id](progress)), 2)


def validate_weights(weights: Mapping[str, float]) -> None:
    """
    檢查權重設定

    規則：
    - 只能使用已知指標
    - 權重不可為負
    - 總和必須是 1（確保 base score 落在 0-100）

    異常：
        ValueError: 權重設定不合法
    """
    unknown = set(weights) - set(METRIC_CURVES)
    if unknown:
        raise ValueError(f"Unknown metrics in weights: {sorted(unknown)}")
    if any(w < 0 for w in weights.values()):
        raise ValueError("Metric weights must not be negative")
    total = sum(weights.values())
    if abs(total - 1.0) > config.WEIGHT_TOLERANCE:
        raise ValueError(f"Metric weights must sum to 1, got {total}")


def calculate_weighted_score(
    progress: ResolvedProgress,
    mode: GameMode,
    weights: Optional[Mapping[str, float]] = None,
) -> Tuple[float, Dict[str, MetricScore]]:
    """
    計算加權指標分數

    流程：
    1. 取得模式的權重（或呼叫端提供的權重）
    2. 每個指標正規化成 0-100
    3. 乘上權重後加總成 base score

    返回：
        (base_score, {metric_id: MetricScore})
    """
    weights = weights if weights is not None else config.DEFAULT_WEIGHTS[mode]
    validate_weights(weights)

    metric_scores = {}
    for metric_id, weight in weights.items():
        raw = normalize_metric(metric_id, progress)
        metric_scores[metric_id] = MetricScore(
            metric_id=metric_id,
            label=config.METRIC_LABELS[metric_id],
            raw_value=raw,
            weight=weight,
            weighted_score=round(raw * weight, 2),
        )

    base_score = round(sum(m.raw_value * m.weight for m in metric_scores.values()), 1)
    return base_score, metric_scores


# ============ 加分規則 ============

class BonusRule(NamedTuple):
    id: str
    label: str
    points: float
    modes: Tuple[GameMode, ...]
    predicate: Callable[[ResolvedProgress], bool]


BOTH_MODES = (GameMode.RESEARCH, GameMode.STARTUP)

BONUS_RULES: List[BonusRule] = [
    BonusRule(
        "incubator_control", "Incubator with founder control", 5, BOTH_MODES,
        lambda p: p.in_incubator and p.founder_equity > 70,
    ),
    BonusRule(
        "validated_market", "Validated market", 5, BOTH_MODES,
        lambda p: p.validations >= 3 and p.interviews >= 10,
    ),
    BonusRule(
        "bootstrapped", "Bootstrapped growth", 3, BOTH_MODES,
        lambda p: p.loans_taken == 0 and p.cash >= 25000,
    ),
    BonusRule(
        "protected_ip", "Protected IP", 4, (GameMode.RESEARCH,),
        lambda p: p.patents >= 1,
    ),
    BonusRule(
        "grant_backed_tech", "Grant-backed technology", 3, (GameMode.RESEARCH,),
        lambda p: p.grants_received >= 1 and p.trl >= 5,
    ),
    BonusRule(
        "investor_ready", "Investor ready", 3, (GameMode.STARTUP,),
        lambda p: p.investor_appeal >= 4 and p.bank_trust >= 3,
    ),
]


def earned_bonuses(progress: ResolvedProgress, mode: GameMode) -> List[EarnedBonus]:
    """列出隊伍在此模式下符合的加分規則（依 BONUS_RULES 的順序）"""
    return [
        EarnedBonus(bonus_id=rule.id, label=rule.label, points=rule.points)
        for rule in BONUS_RULES
        if mode in rule.modes and rule.predicate(progress)
    ]


def performance_category(total_score: float) -> Dict[str, str]:
    """
    根據總分決定表現等級

    範例：
        performance_category(85) -> {"level": "Excellent", "color": "#16a34a"}
        performance_category(10) -> {"level": "Starting", "color": "#6b7280"}
    """
    for threshold, level, color in config.PERFORMANCE_LEVELS:
        if total_score >= threshold:
            return {"level": level, "color": color}
    _, level, color = config.PERFORMANCE_LEVELS[-1]
    return {"level": level, "color": color}


# ============ 整合 ============

def score_progress(
    team_id: str,
    progress: ResolvedProgress,
    mode: GameMode,
    weights: Optional[Mapping[str, float]] = None,
) -> ScoreSnapshot:
    """由解析好的進度計算完整分數快照"""
    base_score, metric_scores = calculate_weighted_score(progress, mode, weights)
    bonuses = earned_bonuses(progress, mode)
    bonus_points = sum(b.points for b in bonuses)
    total_score = round(base_score + bonus_points, 1)

    return ScoreSnapshot(
        team_id=team_id,
        game_mode=mode,
        base_score=base_score,
        bonus_points=bonus_points,
        total_score=total_score,
        quick_score=quick_score(progress),
        metric_scores=metric_scores,
        earned_bonuses=tuple(bonuses),
        performance=performance_category(total_score)["level"],
    )


def score_team(
    team: TeamSnapshot,
    rounds: Sequence[RoundSnapshot],
    reviews: Optional[Mapping[int, ReviewSnapshot]] = None,
    mode: Optional[GameMode] = None,
    weights: Optional[Mapping[str, float]] = None,
    approved_only: bool = False,
) -> ScoreSnapshot:
    """
    計算一支隊伍的分數快照

    參數：
        team: 隊伍快照
        rounds: 隊伍的回合
        reviews: {round_number: 審核}（修正值會先套用）
        mode: 計分模式（預設用隊伍自己的模式）
        weights: 自訂權重
        approved_only: 只用已核准回合

    返回：
        ScoreSnapshot（每次都完整重算，不做部分更新）
    """
    progress = resolve_team_progress(team, rounds, reviews, approved_only=approved_only)
    return score_progress(team.team_id, progress, mode or team.game_mode, weights)
