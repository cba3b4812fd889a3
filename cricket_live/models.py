"""
Database models for the live scoring engine.

Rows are created by the state machine (match, innings), the ball processor
(over, ball, performances, commentary) and the win probability estimator
(snapshots). Nothing is deleted during normal operation.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


# -----------------------------
# Status / kind vocabularies
# -----------------------------
MatchStatus = Literal["SCHEDULED", "TOSS_DONE", "LIVE", "COMPLETED", "CANCELLED"]
InningsStatus = Literal["IN_PROGRESS", "COMPLETED"]
TossDecision = Literal["bat", "bowl"]
MatchResultType = Literal["WIN", "NR", "TIE"]
ExtraType = Literal["WIDE", "NO_BALL", "BYE", "LEG_BYE", "PENALTY"]
WicketType = Literal[
    "BOWLED",
    "CAUGHT",
    "LBW",
    "RUN_OUT",
    "STUMPED",
    "HIT_WICKET",
    "RETIRED_HURT",
    "OBSTRUCTING_FIELD",
]

TERMINAL_MATCH_STATUSES = ("COMPLETED", "CANCELLED")

# Extras that are not a legal delivery; every extra is charged to the bowler
NON_LEGAL_EXTRAS = ("WIDE", "NO_BALL")

# Dismissals not credited to the bowler
NON_BOWLER_WICKETS = ("RUN_OUT", "RETIRED_HURT", "OBSTRUCTING_FIELD")


def _uuid() -> str:
    return str(uuid.uuid4())


class Team(Base):
    __tablename__ = "teams"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    short_name = Column(String(10), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    players = relationship("Player", back_populates="team")


class Player(Base):
    __tablename__ = "players"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False, index=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=True, index=True)
    role = Column(String(30), nullable=True)  # batter, bowler, all-rounder, keeper
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    team = relationship("Team", back_populates="players")


class Match(Base):
    """One fixture between two teams."""
    __tablename__ = "matches"

    id = Column(String(36), primary_key=True, default=_uuid)
    tournament_id = Column(String(36), nullable=True, index=True)
    home_team_id = Column(String(36), ForeignKey("teams.id"), nullable=False)
    away_team_id = Column(String(36), ForeignKey("teams.id"), nullable=False)
    venue = Column(String(255), nullable=False)
    match_date = Column(DateTime, nullable=False, index=True)
    format = Column(String(10), nullable=False, default="T20")
    overs_limit = Column(Integer, nullable=False, default=20)
    status = Column(String(20), nullable=False, default="SCHEDULED", index=True)

    toss_winner_id = Column(String(36), ForeignKey("teams.id"), nullable=True)
    toss_decision = Column(String(10), nullable=True)

    winner_id = Column(String(36), ForeignKey("teams.id"), nullable=True)
    result_type = Column(String(10), nullable=True)
    win_margin = Column(String(50), nullable=True)
    result_text = Column(String(255), nullable=True)
    man_of_match_id = Column(String(36), ForeignKey("players.id"), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    home_team = relationship("Team", foreign_keys=[home_team_id])
    away_team = relationship("Team", foreign_keys=[away_team_id])
    innings = relationship(
        "Innings",
        back_populates="match",
        order_by="Innings.innings_number",
        cascade="all, delete-orphan",
    )

    def other_team_id(self, team_id: str) -> str:
        return self.away_team_id if team_id == self.home_team_id else self.home_team_id

    def team_name(self, team_id: str) -> str:
        team = self.home_team if team_id == self.home_team_id else self.away_team
        return team.name if team is not None else team_id


class Innings(Base):
    """One team's batting effort. `legal_balls` is the source of truth for overs."""
    __tablename__ = "innings"

    id = Column(String(36), primary_key=True, default=_uuid)
    match_id = Column(String(36), ForeignKey("matches.id"), nullable=False, index=True)
    innings_number = Column(Integer, nullable=False)
    batting_team_id = Column(String(36), ForeignKey("teams.id"), nullable=False)
    bowling_team_id = Column(String(36), ForeignKey("teams.id"), nullable=False)

    total_runs = Column(Integer, nullable=False, default=0)
    total_wickets = Column(Integer, nullable=False, default=0)
    legal_balls = Column(Integer, nullable=False, default=0)
    total_overs = Column(Float, nullable=False, default=0.0)  # notation: 19.4

    extras = Column(Integer, nullable=False, default=0)
    wides = Column(Integer, nullable=False, default=0)
    no_balls = Column(Integer, nullable=False, default=0)
    byes = Column(Integer, nullable=False, default=0)
    leg_byes = Column(Integer, nullable=False, default=0)
    penalties = Column(Integer, nullable=False, default=0)

    current_striker_id = Column(String(36), nullable=True)
    current_non_striker_id = Column(String(36), nullable=True)

    status = Column(String(20), nullable=False, default="IN_PROGRESS", index=True)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    match = relationship("Match", back_populates="innings")
    batting_team = relationship("Team", foreign_keys=[batting_team_id])
    bowling_team = relationship("Team", foreign_keys=[bowling_team_id])
    overs = relationship(
        "Over",
        back_populates="innings",
        order_by="Over.over_number",
        cascade="all, delete-orphan",
    )
    batting_performances = relationship(
        "BattingPerformance",
        back_populates="innings",
        order_by="BattingPerformance.position",
        cascade="all, delete-orphan",
    )
    bowling_performances = relationship(
        "BowlingPerformance",
        back_populates="innings",
        order_by="BowlingPerformance.position",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("match_id", "innings_number", name="uq_innings_match_number"),
    )


class Over(Base):
    """Six legal deliveries by one bowler."""
    __tablename__ = "overs"

    id = Column(String(36), primary_key=True, default=_uuid)
    innings_id = Column(String(36), ForeignKey("innings.id"), nullable=False, index=True)
    over_number = Column(Integer, nullable=False)  # 0-based
    bowler_id = Column(String(36), ForeignKey("players.id"), nullable=False, index=True)

    legal_balls = Column(Integer, nullable=False, default=0)
    runs_scored = Column(Integer, nullable=False, default=0)
    wickets = Column(Integer, nullable=False, default=0)
    maiden = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=0)

    innings = relationship("Innings", back_populates="overs")
    balls = relationship(
        "Ball",
        back_populates="over",
        order_by="Ball.sequence",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("innings_id", "over_number", name="uq_over_innings_number"),
    )

    @property
    def is_complete(self) -> bool:
        return self.legal_balls >= 6


class Ball(Base):
    """One delivery. Immutable once written; corrections are new events."""
    __tablename__ = "balls"

    id = Column(String(36), primary_key=True, default=_uuid)
    innings_id = Column(String(36), ForeignKey("innings.id"), nullable=False, index=True)
    over_id = Column(String(36), ForeignKey("overs.id"), nullable=False, index=True)
    over_number = Column(Integer, nullable=False)
    ball_number = Column(Integer, nullable=False)  # legal slot 1-6
    sequence = Column(Integer, nullable=False)  # delivery index within the over, extras included

    bowler_id = Column(String(36), ForeignKey("players.id"), nullable=False, index=True)
    batsman_id = Column(String(36), ForeignKey("players.id"), nullable=False, index=True)

    runs = Column(Integer, nullable=False, default=0)  # off the bat
    is_wicket = Column(Boolean, nullable=False, default=False)
    wicket_type = Column(String(30), nullable=True)
    dismissed_player_id = Column(String(36), ForeignKey("players.id"), nullable=True)
    wicket_taker_id = Column(String(36), ForeignKey("players.id"), nullable=True)
    is_extra = Column(Boolean, nullable=False, default=False)
    extra_type = Column(String(20), nullable=True)
    extra_runs = Column(Integer, nullable=False, default=0)
    commentary = Column(Text, nullable=True)

    # Opaque telemetry, passed through untouched
    shot_angle = Column(Float, nullable=True)
    shot_distance = Column(Float, nullable=True)
    shot_zone = Column(String(50), nullable=True)
    shot_type = Column(String(50), nullable=True)
    pitch_line = Column(String(50), nullable=True)
    pitch_length = Column(String(50), nullable=True)
    pitch_x = Column(Float, nullable=True)
    pitch_y = Column(Float, nullable=True)
    ball_speed = Column(Float, nullable=True)
    ball_trajectory = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    over = relationship("Over", back_populates="balls")

    __table_args__ = (
        Index("idx_ball_innings_over", "innings_id", "over_number", "sequence"),
    )

    @property
    def total_runs(self) -> int:
        return self.runs + (self.extra_runs or 0)


class BattingPerformance(Base):
    __tablename__ = "batting_performances"

    id = Column(String(36), primary_key=True, default=_uuid)
    innings_id = Column(String(36), ForeignKey("innings.id"), nullable=False, index=True)
    player_id = Column(String(36), ForeignKey("players.id"), nullable=False, index=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)  # order of first involvement

    runs = Column(Integer, nullable=False, default=0)
    balls_faced = Column(Integer, nullable=False, default=0)
    fours = Column(Integer, nullable=False, default=0)
    sixes = Column(Integer, nullable=False, default=0)
    strike_rate = Column(Float, nullable=False, default=0.0)
    is_out = Column(Boolean, nullable=False, default=False)
    dismissal = Column(String(30), nullable=True)

    innings = relationship("Innings", back_populates="batting_performances")
    player = relationship("Player")

    __table_args__ = (
        UniqueConstraint("innings_id", "player_id", name="uq_batting_innings_player"),
    )


class BowlingPerformance(Base):
    __tablename__ = "bowling_performances"

    id = Column(String(36), primary_key=True, default=_uuid)
    innings_id = Column(String(36), ForeignKey("innings.id"), nullable=False, index=True)
    player_id = Column(String(36), ForeignKey("players.id"), nullable=False, index=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    balls_bowled = Column(Integer, nullable=False, default=0)
    overs_bowled = Column(Float, nullable=False, default=0.0)  # notation
    maidens = Column(Integer, nullable=False, default=0)
    runs_conceded = Column(Integer, nullable=False, default=0)
    wickets = Column(Integer, nullable=False, default=0)
    wides = Column(Integer, nullable=False, default=0)
    no_balls = Column(Integer, nullable=False, default=0)
    economy_rate = Column(Float, nullable=False, default=0.0)

    innings = relationship("Innings", back_populates="bowling_performances")
    player = relationship("Player")

    __table_args__ = (
        UniqueConstraint("innings_id", "player_id", name="uq_bowling_innings_player"),
    )


class Commentary(Base):
    __tablename__ = "commentary"

    id = Column(String(36), primary_key=True, default=_uuid)
    match_id = Column(String(36), ForeignKey("matches.id"), nullable=False, index=True)
    over = Column(Integer, nullable=False)
    ball = Column(Integer, nullable=False)
    text = Column(Text, nullable=False)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)


class WinProbabilitySnapshot(Base):
    """Append-only; the newest row per match is the current estimate."""
    __tablename__ = "win_probabilities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    match_id = Column(String(36), ForeignKey("matches.id"), nullable=False, index=True)
    innings_id = Column(String(36), ForeignKey("innings.id"), nullable=False)
    innings_number = Column(Integer, nullable=False)
    over_number = Column(Integer, nullable=False)
    ball_number = Column(Integer, nullable=False)

    home_probability = Column(Float, nullable=False)
    away_probability = Column(Float, nullable=False)
    tie_probability = Column(Float, nullable=False, default=0.0)

    target = Column(Integer, nullable=True)
    required_run_rate = Column(Float, nullable=True)
    current_score = Column(Integer, nullable=False)
    wickets_lost = Column(Integer, nullable=False)
    balls_remaining = Column(Integer, nullable=False)

    calculated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_winprob_match_order", "match_id", "innings_number", "over_number", "ball_number"),
    )
