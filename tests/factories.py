"""
建立測試用快照的工具
"""
from review_engine.models import GameMode
from review_engine.schemas import ResolvedProgress, RoundSnapshot, TeamSnapshot


def make_round(round_number=1, team_id="team-a", **fields) -> RoundSnapshot:
    return RoundSnapshot(team_id=team_id, round_number=round_number, **fields)


def make_team(team_id="team-a", game_mode=GameMode.STARTUP, **fields) -> TeamSnapshot:
    return TeamSnapshot(team_id=team_id, game_mode=game_mode, **fields)


def make_progress(**fields) -> ResolvedProgress:
    values = {
        "cash": 5000,
        "trl": 3,
        "development_hours": 0,
        "validations": 0,
        "interviews": 0,
        "founder_equity": 100,
        "investor_appeal": 2,
        "bank_trust": 2,
        "round": 1,
        "has_rounds": True,
    }
    values.update(fields)
    return ResolvedProgress(**values)
