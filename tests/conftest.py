"""
共用 fixtures：暫存的 SQLite 資料庫與建立測試資料的工具
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from review_engine import models  # noqa: F401
from review_engine.database import Base
from review_engine.models import GameMode, Round, Team, TeamStatus


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def session_factory(tmp_path):
    """每個測試一個全新的 SQLite 檔案（排行榜會從 worker thread 讀取，每個 thread 各自連線）"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'review_engine.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def add_team(db):
    """建立隊伍（以及可選的回合），回傳 team id"""
    def _add_team(
        team_id="team-a",
        game_id="game-1",
        team_name=None,
        game_mode=GameMode.STARTUP,
        status=TeamStatus.PLAYING,
        current_round=0,
        rounds=(),
    ):
        team = Team(
            id=team_id,
            game_id=game_id,
            team_name=team_name or team_id.title(),
            game_mode=game_mode,
            status=status,
            current_round=current_round,
        )
        db.add(team)
        for round_data in rounds:
            db.add(Round(team_id=team_id, **round_data))
        db.commit()
        return team_id

    return _add_team
