"""
Leaderboard API Endpoints - 短輪詢版

每次 GET 都以資料庫中的隊伍名單同步排行榜，
前端定期輪詢即可取得最新名次。
"""
from typing import Callable, Dict, Optional, Tuple
import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from review_engine.core.leaderboard import LeaderboardAggregator
from review_engine.database import SessionLocal, Settings, get_settings
from review_engine.models import GameMode, ScoreRegime
from review_engine.schemas import LeaderboardSnapshot
from review_engine.services import store_service

router = APIRouter(prefix="/api/games", tags=["leaderboard"])
logger = logging.getLogger(__name__)


class LeaderboardRegistry:
    """每場遊戲（與模式篩選）一個排行榜，第一次查詢時建立"""

    def __init__(self, session_factory: Callable[[], Session], settings: Settings):
        self.session_factory = session_factory
        self.settings = settings
        self._aggregators: Dict[Tuple[str, Optional[GameMode]], LeaderboardAggregator] = {}

    def get(self, game_id: str, mode: Optional[GameMode] = None) -> LeaderboardAggregator:
        key = (game_id, mode)
        if key not in self._aggregators:
            self._aggregators[key] = LeaderboardAggregator(
                store_service.make_state_fetcher(self.session_factory),
                mode=mode,
                regime=ScoreRegime(self.settings.leaderboard_regime),
                fetch_timeout=self.settings.fetch_timeout_seconds,
                approved_only=self.settings.score_approved_only,
            )
            logger.info(f"Created leaderboard for game {game_id} (mode={mode})")
        return self._aggregators[key]

    async def team_ids(self, game_id: str):
        def _list():
            db = self.session_factory()
            try:
                return store_service.list_team_ids(db, game_id)
            finally:
                db.close()

        return await asyncio.to_thread(_list)


_registry: Optional[LeaderboardRegistry] = None


def get_registry() -> LeaderboardRegistry:
    """FastAPI dependency：全域的排行榜登錄表"""
    global _registry
    if _registry is None:
        _registry = LeaderboardRegistry(SessionLocal, get_settings())
    return _registry


@router.get("/{game_id}/leaderboard", response_model=LeaderboardSnapshot)
async def get_leaderboard(
    game_id: str,
    mode: Optional[GameMode] = None,
    registry: LeaderboardRegistry = Depends(get_registry),
):
    """
    取得排行榜

    參數：
        mode: 只看某個模式的隊伍（research / startup），不填則全部

    返回：
        名次、統計、讀取失敗的隊伍（faults）
    """
    try:
        aggregator = registry.get(game_id, mode)
        team_ids = await registry.team_ids(game_id)
        return await aggregator.sync(team_ids)

    except Exception as e:
        logger.error(f"Failed to build leaderboard for game {game_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
