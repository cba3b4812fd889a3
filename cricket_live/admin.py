# cricket_live/admin.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from cricket_live import config
from cricket_live.errors import TeamNotFound, ValidationError
from cricket_live.logging import get_logger
from cricket_live.models import Match, Player, Team
from cricket_live.state_machine import load_match

logger = get_logger(__name__)


def create_team(db: Session, name: str, short_name: Optional[str] = None) -> Team:
    name = (name or "").strip()
    if not name:
        raise ValidationError("team name is required")

    team = Team(name=name, short_name=(short_name or "").strip().upper() or None)
    db.add(team)
    db.flush()
    logger.info("Team created", extra={"team_id": team.id, "team_name": team.name})
    return team


def create_player(db: Session, name: str, team_id: Optional[str] = None, role: Optional[str] = None) -> Player:
    name = (name or "").strip()
    if not name:
        raise ValidationError("player name is required")
    if team_id is not None and db.get(Team, team_id) is None:
        raise TeamNotFound(f"Team not found: {team_id}")

    player = Player(name=name, team_id=team_id, role=role)
    db.add(player)
    db.flush()
    return player


def create_match(
    db: Session,
    home_team_id: str,
    away_team_id: str,
    venue: str,
    match_date: datetime,
    *,
    overs_limit: Optional[int] = None,
    match_format: Optional[str] = None,
    tournament_id: Optional[str] = None,
) -> Match:
    """
    Rules:
    - both teams must exist and differ
    - format falls back to DEFAULT_FORMAT, overs to DEFAULT_OVERS_LIMIT
    """
    if home_team_id == away_team_id:
        raise ValidationError("home and away team must differ")
    for team_id in (home_team_id, away_team_id):
        if db.get(Team, team_id) is None:
            raise TeamNotFound(f"Team not found: {team_id}")

    fmt = (match_format or config.DEFAULT_FORMAT).upper()
    if fmt not in config.SUPPORTED_FORMATS:
        raise ValidationError(f"format must be one of {', '.join(config.SUPPORTED_FORMATS)}")

    overs = overs_limit if overs_limit is not None else config.DEFAULT_OVERS_LIMIT
    if overs <= 0:
        raise ValidationError("overs_limit must be positive")

    match = Match(
        home_team_id=home_team_id,
        away_team_id=away_team_id,
        venue=venue,
        match_date=match_date,
        format=fmt,
        overs_limit=overs,
        status="SCHEDULED",
        tournament_id=tournament_id,
    )
    db.add(match)
    db.flush()

    logger.info(
        "Match created",
        extra={"match_id": match.id, "home_team_id": home_team_id, "away_team_id": away_team_id},
    )
    return match


def get_match(db: Session, match_id: str) -> Match:
    return load_match(db, match_id)
