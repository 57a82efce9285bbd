"""
資料表與列舉

Team / Round 由提交流程建立，本引擎只讀取；
Review 由主持人（facilitator）的審核操作建立與更新。
"""
from datetime import datetime, timezone
import enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from review_engine.database import Base


def utcnow():
    return datetime.now(timezone.utc)


class GameMode(str, enum.Enum):
    RESEARCH = "research"
    STARTUP = "startup"


class TeamStatus(str, enum.Enum):
    REGISTERED = "registered"
    PLAYING = "playing"
    BLOCKED = "blocked"


class ReviewStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ContractType(str, enum.Enum):
    KVK = "kvk"
    BANK = "bank"
    INVESTOR = "investor"
    PATENT = "patent"
    INCUBATOR = "incubator"
    SUBSIDY = "subsidy"
    NETWORKER = "networker"
    TECH_EXPERT = "techExpert"


class ScoreRegime(str, enum.Enum):
    QUICK = "quick"
    WEIGHTED = "weighted"


class Team(Base):
    __tablename__ = "teams"

    id = Column(String(64), primary_key=True)
    game_id = Column(String(64), nullable=False, index=True)
    team_name = Column(String(120), nullable=False, default="Unknown Team")
    game_mode = Column(SAEnum(GameMode), nullable=False, default=GameMode.STARTUP)
    status = Column(SAEnum(TeamStatus), nullable=False, default=TeamStatus.REGISTERED)
    current_round = Column(Integer, nullable=False, default=0)
    last_approved_round = Column(Integer, nullable=True)
    # 提交端寫入的進度快取，只作為讀取時的備援值
    latest_progress = Column(JSON, nullable=True)
    reset_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    rounds = relationship(
        "Round", back_populates="team", order_by="Round.round_number"
    )
    reviews = relationship(
        "Review", back_populates="team", order_by="Review.round_number"
    )


class Round(Base):
    __tablename__ = "rounds"
    __table_args__ = (
        UniqueConstraint("team_id", "round_number", name="uq_round_team_number"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(String(64), ForeignKey("teams.id"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    activities = Column(JSON, nullable=False, default=dict)
    completed_activities = Column(JSON, nullable=False, default=list)
    funding = Column(JSON, nullable=False, default=dict)
    progress = Column(JSON, nullable=False, default=dict)
    founders = Column(Integer, nullable=False, default=0)
    employees = Column(Integer, nullable=False, default=0)
    legal_form = Column(String(32), nullable=True)
    office = Column(String(32), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    team = relationship("Team", back_populates="rounds")


class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("team_id", "round_number", name="uq_review_team_number"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(String(64), ForeignKey("teams.id"), nullable=False, index=True)
    round_number = Column(Integer, nullable=False)
    status = Column(SAEnum(ReviewStatus), nullable=False, default=ReviewStatus.PENDING)
    contract_checks = Column(JSON, nullable=False, default=dict)
    overrides = Column(JSON, nullable=False, default=dict)
    notes = Column(Text, nullable=False, default="")
    reviewed_by = Column(String(120), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    team = relationship("Team", back_populates="reviews")
