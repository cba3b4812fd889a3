# cricket_live/service.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy.orm import Session

from cricket_live import admin, config
from cricket_live.ball_processor import BallData, BallEventProcessor
from cricket_live.cache import MemoryCache
from cricket_live.coordinator import LIVE_MATCHES_KEY, CacheFanoutCoordinator, live_match_key
from cricket_live.database import transaction
from cricket_live.errors import InningsNotFound, InvalidState
from cricket_live.fanout import MatchBroker
from cricket_live.live_view import (
    LiveViewAssembler,
    ball_to_dict,
    innings_to_dict,
    match_header,
    team_to_dict,
)
from cricket_live.logging import get_logger
from cricket_live.models import Innings, Match
from cricket_live.state_machine import MatchStateMachine, load_match
from cricket_live.win_probability import WinProbabilityEstimator, snapshot_to_dict

logger = get_logger(__name__)

SessionFactory = Callable[[], Session]


def player_to_dict(player) -> Dict[str, Any]:
    return {"id": player.id, "name": player.name, "team_id": player.team_id, "role": player.role}


class ScoringService:
    """
    Entry point for collaborators (HTTP routes, sockets, scripts).

    Every state change runs in one transaction and is followed, after commit,
    by a synchronous cache invalidation for the match. A recorded ball then
    gets its win-probability snapshot (own transaction), a fresh live view and
    a fan-out publish; failures in those steps are logged, the ball stays
    recorded. Ball writes to one match are serialized in-process from the
    transaction through the publish, so subscribers see balls in commit order.

    Returns plain dicts so callers never touch detached ORM rows.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        coordinator: Optional[CacheFanoutCoordinator] = None,
        processor: Optional[BallEventProcessor] = None,
        state_machine: Optional[MatchStateMachine] = None,
        estimator: Optional[WinProbabilityEstimator] = None,
        assembler: Optional[LiveViewAssembler] = None,
    ) -> None:
        self.session_factory = session_factory
        self.coordinator = coordinator or CacheFanoutCoordinator(MemoryCache(), MatchBroker())
        self.processor = processor or BallEventProcessor()
        self.state_machine = state_machine or MatchStateMachine()
        self.estimator = estimator or WinProbabilityEstimator()
        self.assembler = assembler or LiveViewAssembler()
        self._match_locks: Dict[str, threading.Lock] = {}
        self._match_locks_guard = threading.Lock()

    @property
    def broker(self) -> MatchBroker:
        return self.coordinator.broker

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def _match_lock(self, match_id: str) -> threading.Lock:
        with self._match_locks_guard:
            return self._match_locks.setdefault(match_id, threading.Lock())

    # -----------------------
    # Administration
    # -----------------------
    def create_team(self, name: str, short_name: Optional[str] = None) -> Dict[str, Any]:
        with self._session() as db:
            with transaction(db):
                team = admin.create_team(db, name, short_name)
            return team_to_dict(team)

    def create_player(
        self,
        name: str,
        team_id: Optional[str] = None,
        role: Optional[str] = None,
    ) -> Dict[str, Any]:
        with self._session() as db:
            with transaction(db):
                player = admin.create_player(db, name, team_id, role)
            return player_to_dict(player)

    def create_match(
        self,
        home_team_id: str,
        away_team_id: str,
        venue: str,
        match_date: datetime,
        *,
        overs_limit: Optional[int] = None,
        match_format: Optional[str] = None,
        tournament_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        with self._session() as db:
            with transaction(db):
                match = admin.create_match(
                    db,
                    home_team_id,
                    away_team_id,
                    venue,
                    match_date,
                    overs_limit=overs_limit,
                    match_format=match_format,
                    tournament_id=tournament_id,
                )
            self.coordinator.invalidate_match(match.id)
            return match_header(match)

    def get_match(self, match_id: str) -> Dict[str, Any]:
        with self._session() as db:
            match = admin.get_match(db, match_id)
            out = match_header(match)
            out["innings"] = [
                {
                    "id": i.id,
                    "innings_number": i.innings_number,
                    "batting_team_id": i.batting_team_id,
                    "status": i.status,
                    "score": f"{i.total_runs}/{i.total_wickets}",
                    "overs": i.total_overs,
                }
                for i in match.innings
            ]
            return out

    # -----------------------
    # Lifecycle
    # -----------------------
    def record_toss(self, match_id: str, winner_team_id: str, decision: str) -> Dict[str, Any]:
        with self._session() as db:
            with transaction(db):
                innings = self.state_machine.record_toss(db, match_id, winner_team_id, decision)
                out = innings_to_dict(innings)
        self.coordinator.invalidate_match(match_id)
        return out

    def start_innings(self, match_id: str, innings_number: int) -> Dict[str, Any]:
        with self._session() as db:
            with transaction(db):
                innings = self.state_machine.start_innings(db, match_id, innings_number)
                out = innings_to_dict(innings)
        self.coordinator.invalidate_match(match_id)
        return out

    def complete_innings(self, match_id: str, innings_id: Optional[str] = None) -> Dict[str, Any]:
        with self._session() as db:
            with transaction(db):
                innings = self._resolve_innings(db, match_id, innings_id)
                innings = self.state_machine.complete_innings(db, innings.id)
                out = innings_to_dict(innings)
        self.coordinator.invalidate_match(match_id)
        return out

    def complete_match(self, match_id: str, forfeiting_team_id: Optional[str] = None) -> Dict[str, Any]:
        with self._session() as db:
            with transaction(db):
                self.state_machine.complete_match(db, match_id, forfeiting_team_id=forfeiting_team_id)
                out = match_header(load_match(db, match_id))
        self.coordinator.invalidate_match(match_id)
        return out

    def cancel_match(self, match_id: str) -> Dict[str, Any]:
        with self._session() as db:
            with transaction(db):
                match = self.state_machine.cancel_match(db, match_id)
                out = match_header(match)
        self.coordinator.invalidate_match(match_id)
        return out

    # -----------------------
    # Ball ingestion
    # -----------------------
    def record_ball(
        self,
        match_id: str,
        bowler_id: str,
        batsman_id: str,
        data: BallData,
        innings_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Rules:
        - innings_id defaults to the match's IN_PROGRESS innings
        - the ball write is all-or-nothing; ConcurrencyConflict means nothing
          was stored and the whole call may be retried
        - one ball per match at a time, held until its events are published
        """
        with self._match_lock(match_id):
            with self._session() as db:
                with transaction(db):
                    innings = self._resolve_innings(db, match_id, innings_id)
                    ball = self.processor.record_ball(db, innings.id, bowler_id, batsman_id, data)
                    ball_out = ball_to_dict(ball)
                    innings_id = innings.id
                    innings_number = innings.innings_number

            self.coordinator.invalidate_match(match_id)

            snapshot = self._estimate(match_id, innings_id, ball_out["over_number"], ball_out["ball_number"])
            live_score = self._fresh_live_score(match_id)

            if live_score is not None:
                self.coordinator.publish_ball(
                    match_id,
                    ball_out,
                    live_score,
                    snapshot if innings_number == 2 else None,
                )

        return {"ball": ball_out, "live_score": live_score, "win_probability": snapshot}

    def _resolve_innings(self, db: Session, match_id: str, innings_id: Optional[str]) -> Innings:
        match: Match = load_match(db, match_id)
        if innings_id is None:
            current = next((i for i in match.innings if i.status == "IN_PROGRESS"), None)
            if current is None:
                raise InvalidState(f"Match {match_id} has no innings in progress")
            return current

        innings = next((i for i in match.innings if i.id == innings_id), None)
        if innings is None:
            raise InningsNotFound(f"Innings {innings_id} not found in match {match_id}")
        return innings

    def _estimate(self, match_id: str, innings_id: str, over_number: int, ball_number: int) -> Optional[Dict[str, Any]]:
        try:
            with self._session() as db:
                with transaction(db):
                    snapshot = self.estimator.calculate(db, match_id, innings_id, over_number, ball_number)
                return snapshot_to_dict(snapshot)
        except Exception:
            logger.warning(
                "Win probability calculation failed",
                exc_info=True,
                extra={"match_id": match_id, "innings_id": innings_id},
            )
            return None

    def _fresh_live_score(self, match_id: str) -> Optional[Dict[str, Any]]:
        try:
            with self._session() as db:
                return self.assembler.get_live_score(db, match_id)
        except Exception:
            logger.warning("Live view assembly failed", exc_info=True, extra={"match_id": match_id})
            return None

    # -----------------------
    # Reads
    # -----------------------
    def get_live_score(self, match_id: str) -> Dict[str, Any]:
        def build() -> Dict[str, Any]:
            with self._session() as db:
                return self.assembler.get_live_score(db, match_id)

        return self.coordinator.cached(live_match_key(match_id), config.LIVE_SCORE_CACHE_TTL_SECONDS, build)

    def get_all_live_matches(self) -> List[Dict[str, Any]]:
        def build() -> List[Dict[str, Any]]:
            with self._session() as db:
                return self.assembler.get_all_live_matches(db)

        return self.coordinator.cached(LIVE_MATCHES_KEY, config.LIVE_MATCHES_CACHE_TTL_SECONDS, build)

    def get_win_probability_history(self, match_id: str) -> List[Dict[str, Any]]:
        with self._session() as db:
            return [snapshot_to_dict(s) for s in self.estimator.get_history(db, match_id)]

    def get_latest_win_probability(self, match_id: str) -> Dict[str, Any]:
        with self._session() as db:
            return snapshot_to_dict(self.estimator.get_latest(db, match_id))
