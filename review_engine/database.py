from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
import logging

from review_engine.core.exceptions import PersistenceError

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./review_engine.db"
    # 單一隊伍資料讀取的等待上限（秒），逾時則沿用上一次的結果
    fetch_timeout_seconds: float = 5.0
    # True：只用已核准的回合計分；False：用最新提交的回合
    score_approved_only: bool = False
    # 即時排行榜使用的計分方式：quick / weighted
    leaderboard_regime: str = "quick"

    class Config:
        env_file = ".env"
        env_prefix = "REVIEW_ENGINE_"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()

# SQLite 需要特殊設定：connect_args={"check_same_thread": False}
# 排行榜會在 worker thread 中讀取資料，同一個 SQLite 連線需要跨執行緒使用
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {},
    pool_pre_ping=True
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    FastAPI dependency：提供 Database Session

    使用 yield 確保 session 在請求結束後會被關閉
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def transactional(func):
    """
    Transaction decorator：確保審核操作的原子性

    使用方式：
        @transactional
        def approve_round(db: Session, ...):
            # 審核紀錄與隊伍狀態在同一個 transaction 內寫入
            persist_review(db, review)
            persist_team_status(db, intent)
            # 不需要手動 commit，decorator 會處理

    如果函式內發生異常：
        - 自動 rollback
        - SQLAlchemyError 轉成 PersistenceError（呼叫端只需要處理一種寫入失敗）
        - 其他異常原樣重新拋出（讓上層處理）

    注意：
        - 第一個參數必須是 db: Session
        - 不要在函式內手動 commit（decorator 會處理）
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        # 找出 db session（可能在 args 或 kwargs）
        db = None
        if args and isinstance(args[0], Session):
            db = args[0]
        elif 'db' in kwargs:
            db = kwargs['db']

        if db is None:
            raise ValueError(
                f"@transactional requires 'db: Session' as first argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except SQLAlchemyError as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise PersistenceError(f"{func.__name__} could not be persisted: {e}") from e
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise

    return wrapper
