"""
排名服務：把各隊的計分結果排成名次

排序規則（全序，同樣輸入每次都得到同樣名次）：
1. 分數高者在前
2. 同分：技術進度（研究模式 TRL、創業模式開發時數，皆取 0-100 正規化值）高者在前
3. 仍同分：team_id 字典序小者在前
"""
from typing import Iterable, List, Tuple

from review_engine.models import ScoreRegime
from review_engine.schemas import LeaderboardEntry, TeamRecord
from review_engine.services.scoring_config import TECHNOLOGY_METRIC
from review_engine.services.scoring_service import normalize_metric


def technology_progress(record: TeamRecord) -> float:
    """隊伍模式下代表技術進度的正規化值（0-100）"""
    metric_id = TECHNOLOGY_METRIC[record.score.game_mode]
    return normalize_metric(metric_id, record.progress)


def ranking_key(record: TeamRecord, regime: ScoreRegime) -> Tuple[float, float, str]:
    return (
        -record.score.value(regime),
        -technology_progress(record),
        record.team.team_id,
    )


def rank_teams(
    records: Iterable[TeamRecord],
    regime: ScoreRegime = ScoreRegime.QUICK,
) -> List[LeaderboardEntry]:
    """
    排出名次

    注意：
        - 沒有任何回合資料的隊伍不參與排名（由呼叫端計入統計）
        - 名次是 1..n 的位置，同分也不會並列

    參數：
        records: 各隊的計分紀錄
        regime: 使用快速分數或加權總分

    返回：
        依名次排序的 LeaderboardEntry 列表
    """
    ranked = sorted(
        (r for r in records if r.has_rounds),
        key=lambda r: ranking_key(r, regime),
    )
    return [
        LeaderboardEntry(
            rank=position,
            team_id=record.team.team_id,
            team_name=record.team.team_name,
            game_mode=record.score.game_mode,
            status=record.team.status,
            score=record.score.value(regime),
            score_detail=record.score,
            progress=record.progress,
        )
        for position, record in enumerate(ranked, start=1)
    ]
