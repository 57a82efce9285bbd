"""
並發控制工具

提供 Database-level 的鎖定機制，避免兩位主持人同時審核同一個回合時互相覆蓋

使用 SELECT ... FOR UPDATE 實現悲觀鎖（SQLite 會忽略，PostgreSQL 才有實際效果）
"""
from sqlalchemy.orm import Query, Session

from review_engine.models import Review, Team


def with_review_lock(team_id: str, round_number: int, db: Session) -> Query:
    """
    鎖定一個回合的審核紀錄（行級鎖）

    使用場景：
    - 合約核對、修正值、備註、核准、退回

    範例：
        row = with_review_lock(team_id, 2, db).first()
        if row is None:
            row = Review(team_id=team_id, round_number=2)

    返回：
        Query object（需要呼叫 .first() 取得結果）

    注意：
        - nowait=False 表示如果鎖被佔用，會等待
        - 必須在 transaction 內使用
    """
    return db.query(Review).filter(
        Review.team_id == team_id,
        Review.round_number == round_number,
    ).with_for_update(nowait=False)


def with_team_lock(team_id: str, db: Session) -> Query:
    """
    鎖定一支隊伍（行級鎖）

    使用場景：
    - 套用審核結果造成的隊伍狀態變更
    - 隊伍重設
    """
    return db.query(Team).filter(
        Team.id == team_id
    ).with_for_update(nowait=False)
