"""Shared pytest fixtures for the live scoring tests."""
from datetime import datetime
from types import SimpleNamespace
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from cricket_live.ball_processor import BallData, BallEventProcessor
from cricket_live.cache import MemoryCache
from cricket_live.coordinator import CacheFanoutCoordinator
from cricket_live.database import init_db
from cricket_live.fanout import MatchBroker
from cricket_live.models import Match, Player, Team
from cricket_live.service import ScoringService
from cricket_live.state_machine import MatchStateMachine


@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite; StaticPool keeps every session on the same database."""
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


def _player(db: Session, name: str, team: Team) -> str:
    p = Player(name=name, team_id=team.id)
    db.add(p)
    db.flush()
    return p.id


def _match(db: Session, home: Team, away: Team, overs_limit: int = 20) -> Match:
    m = Match(
        home_team_id=home.id,
        away_team_id=away.id,
        venue="Wankhede Stadium",
        match_date=datetime(2026, 4, 12, 14, 0),
        format="T20",
        overs_limit=overs_limit,
        status="SCHEDULED",
    )
    db.add(m)
    db.flush()
    return m


@pytest.fixture(scope="function")
def seed(db: Session) -> SimpleNamespace:
    """Two teams with four players each, a scheduled T20 match and a one-over match."""
    home = Team(name="Mumbai Indians", short_name="MI")
    away = Team(name="Chennai Super Kings", short_name="CSK")
    db.add_all([home, away])
    db.flush()

    ids = SimpleNamespace(
        home=home.id,
        away=away.id,
        h1=_player(db, "Rohit Sharma", home),
        h2=_player(db, "Ishan Kishan", home),
        h3=_player(db, "Jasprit Bumrah", home),
        h4=_player(db, "Suryakumar Yadav", home),
        a1=_player(db, "Ruturaj Gaikwad", away),
        a2=_player(db, "Deepak Chahar", away),
        a3=_player(db, "Ravindra Jadeja", away),
        a4=_player(db, "MS Dhoni", away),
    )
    ids.match = _match(db, home, away).id
    ids.short_match = _match(db, home, away, overs_limit=1).id
    db.commit()
    return ids


@pytest.fixture
def state_machine() -> MatchStateMachine:
    return MatchStateMachine()


@pytest.fixture
def processor() -> BallEventProcessor:
    return BallEventProcessor()


@pytest.fixture
def innings1(db, seed, state_machine):
    """Home side batting first, innings 1 open and the match LIVE."""
    state_machine.record_toss(db, seed.match, seed.home, "bat")
    innings = state_machine.start_innings(db, seed.match, 1)
    db.commit()
    return innings


@pytest.fixture
def bowl(db, processor):
    """bowl(innings, bowler, batsman, **ball_fields) -> Ball"""

    def _bowl(innings, bowler_id, batsman_id, **fields):
        return processor.record_ball(db, innings.id, bowler_id, batsman_id, BallData(**fields))

    return _bowl


@pytest.fixture
def coordinator() -> CacheFanoutCoordinator:
    return CacheFanoutCoordinator(MemoryCache(), MatchBroker())


@pytest.fixture
def service(session_factory, coordinator) -> ScoringService:
    return ScoringService(session_factory, coordinator=coordinator)
