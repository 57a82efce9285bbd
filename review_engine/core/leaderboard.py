"""
排行榜彙整：把各隊的更新合併成一份排好名次的快照

並發模型：
- 每支隊伍獨立讀取、獨立計分（純計算，不共用狀態）
- 套用結果與發佈快照在同一把 asyncio.Lock 之下，只有一個寫入者
- 快照是 frozen 物件，發佈時整份替換，讀取端永遠看到完整的一份
- 每支隊伍有 generation 計數，較舊的計算結果回來時直接丟棄
- 單隊讀取失敗或逾時：保留上一次的結果（或暫不列入），記錄 fault，不影響其他隊伍
"""
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Iterable, Mapping, Optional
import asyncio
import logging

from review_engine.models import GameMode, ReviewStatus, ScoreRegime, TeamStatus
from review_engine.schemas import (
    LeaderboardSnapshot,
    LeaderboardTallies,
    TeamRecord,
    TeamState,
)
from review_engine.services.progress_service import resolve_team_progress
from review_engine.services.ranking_service import rank_teams
from review_engine.services.scoring_service import score_progress, validate_weights

logger = logging.getLogger(__name__)

FetchState = Callable[[str], Awaitable[TeamState]]


def _awaiting_review(state: TeamState) -> bool:
    if not state.rounds:
        return False
    latest = max(r.round_number for r in state.rounds)
    review = state.reviews.get(latest)
    return review is None or review.status == ReviewStatus.PENDING


def project_team(
    state: TeamState,
    approved_only: bool = False,
    weights: Optional[Mapping[GameMode, Mapping[str, float]]] = None,
) -> TeamRecord:
    """
    把一支隊伍的原始資料計算成排行榜紀錄（純函式）

    參數：
        state: 隊伍、回合、審核
        approved_only: 只用已核准回合計分
        weights: {模式: 權重}，沒有提供的模式使用預設權重

    返回：
        TeamRecord
    """
    team = state.team
    progress = resolve_team_progress(team, state.rounds, state.reviews, approved_only=approved_only)
    mode_weights = (weights or {}).get(team.game_mode)
    return TeamRecord(
        team=team,
        has_rounds=bool(state.rounds),
        awaiting_review=_awaiting_review(state),
        progress=progress,
        score=score_progress(team.team_id, progress, team.game_mode, mode_weights),
    )


def tally(records: Iterable[TeamRecord]) -> LeaderboardTallies:
    """
    統計隊伍狀態

    規則：
    - blocked：隊伍狀態為 blocked
    - playing：有任何回合資料，或 current_round > 0
    - registered：其他
    - awaiting_review：最新回合還沒有審核或審核仍是 pending
    """
    counts = {"total": 0, "registered": 0, "playing": 0, "blocked": 0, "awaiting_review": 0}
    for record in records:
        counts["total"] += 1
        if record.team.status == TeamStatus.BLOCKED:
            counts["blocked"] += 1
        elif record.has_rounds or record.team.current_round > 0:
            counts["playing"] += 1
        else:
            counts["registered"] += 1
        if record.awaiting_review:
            counts["awaiting_review"] += 1
    return LeaderboardTallies(**counts)


class LeaderboardAggregator:
    """
    即時排行榜

    範例：
        aggregator = LeaderboardAggregator(make_state_fetcher(SessionLocal))
        await aggregator.refresh(["team-a", "team-b"])
        aggregator.snapshot.entries[0].team_id
    """

    def __init__(
        self,
        fetch_state: FetchState,
        mode: Optional[GameMode] = None,
        regime: ScoreRegime = ScoreRegime.QUICK,
        fetch_timeout: float = 5.0,
        approved_only: bool = False,
        weights: Optional[Mapping[GameMode, Mapping[str, float]]] = None,
    ):
        for mode_weights in (weights or {}).values():
            validate_weights(mode_weights)

        self.fetch_state = fetch_state
        self.mode = mode
        self.regime = regime
        self.fetch_timeout = fetch_timeout
        self.approved_only = approved_only
        self.weights = weights

        self._lock = asyncio.Lock()
        self._records: Dict[str, TeamRecord] = {}
        self._faults: Dict[str, str] = {}
        self._generations: Dict[str, int] = {}
        self._snapshot = LeaderboardSnapshot(regime=regime)

    @property
    def snapshot(self) -> LeaderboardSnapshot:
        """目前發佈的快照（不可變，可以直接交給讀取端）"""
        return self._snapshot

    async def update_team(self, team_id: str) -> LeaderboardSnapshot:
        """
        重新讀取並計算一支隊伍，然後發佈新的快照

        流程：
        1. 取得新的 generation（之前還在進行的計算會被視為過期）
        2. 在逾時限制內讀取隊伍資料並計分（不持有鎖）
        3. 持有鎖：若 generation 已被更新則丟棄結果，否則套用並發佈

        返回：
            發佈後的快照
        """
        generation = self._generations.get(team_id, 0) + 1
        self._generations[team_id] = generation

        record = None
        fault = None
        try:
            state = await asyncio.wait_for(self.fetch_state(team_id), timeout=self.fetch_timeout)
            record = project_team(state, self.approved_only, self.weights)
        except asyncio.TimeoutError:
            fault = f"fetch timed out after {self.fetch_timeout}s"
        except Exception as e:
            fault = str(e) or e.__class__.__name__

        async with self._lock:
            if self._generations.get(team_id) != generation:
                logger.debug(f"Discarding superseded leaderboard update for team {team_id}")
                return self._snapshot

            if record is not None:
                self._records[team_id] = record
                self._faults.pop(team_id, None)
            else:
                kept = "keeping previous result" if team_id in self._records else "team omitted"
                logger.warning(f"Leaderboard update failed for team {team_id} ({kept}): {fault}")
                self._faults[team_id] = fault

            self._publish()
            return self._snapshot

    async def refresh(self, team_ids: Iterable[str]) -> LeaderboardSnapshot:
        """並行更新多支隊伍；單隊失敗不影響其他隊伍"""
        await asyncio.gather(*(self.update_team(team_id) for team_id in team_ids))
        return self._snapshot

    async def sync(self, team_ids: Iterable[str]) -> LeaderboardSnapshot:
        """以目前的隊伍名單為準：移除已不存在的隊伍，其餘全部更新"""
        team_ids = list(team_ids)
        for stale in set(self._records) - set(team_ids):
            await self.remove_team(stale)
        return await self.refresh(team_ids)

    async def remove_team(self, team_id: str) -> LeaderboardSnapshot:
        async with self._lock:
            self._generations[team_id] = self._generations.get(team_id, 0) + 1
            self._records.pop(team_id, None)
            self._faults.pop(team_id, None)
            self._publish()
            return self._snapshot

    def _publish(self):
        # 只能在持有 self._lock 時呼叫
        records = [
            r for r in self._records.values()
            if self.mode is None or r.team.game_mode == self.mode
        ]
        self._snapshot = LeaderboardSnapshot(
            version=self._snapshot.version + 1,
            regime=self.regime,
            entries=tuple(rank_teams(records, self.regime)),
            tallies=tally(records),
            faults=dict(self._faults),
            generated_at=datetime.now(timezone.utc),
        )
