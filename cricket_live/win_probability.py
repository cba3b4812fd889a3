# cricket_live/win_probability.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from cricket_live import cricket_math
from cricket_live.errors import InningsNotFound, NotFound
from cricket_live.models import Match, WinProbabilitySnapshot
from cricket_live.state_machine import load_match

FORM_WINDOW = 5
FORM_WEIGHT = 10.0  # max points a form gap moves the first-innings estimate
TOSS_EDGE = 2.0
FIRST_INNINGS_BOUNDS = (35.0, 65.0)


class WinProbabilityEstimator:
    """
    Appends one WinProbabilitySnapshot per call; history is never rewritten.

    - First innings: no target yet, so the estimate is 50/50 nudged by recent
      team form and the toss. It exists for UI completeness, not precision.
    - Second innings: chase model from cricket_math.calculate_win_probability.
    """

    def calculate(
        self,
        db: Session,
        match_id: str,
        innings_id: str,
        over_number: int,
        ball_number: int,
    ) -> WinProbabilitySnapshot:
        match = load_match(db, match_id)
        innings = next((i for i in match.innings if i.id == innings_id), None)
        if innings is None:
            raise InningsNotFound(f"Innings {innings_id} not found in match {match_id}")

        balls_allowed = match.overs_limit * cricket_math.BALLS_PER_OVER
        balls_remaining = max(0, balls_allowed - innings.legal_balls)

        target: Optional[int] = None
        rrr: Optional[float] = None

        if innings.innings_number == 1:
            home = self._first_innings_home_probability(db, match)
        else:
            first = next((i for i in match.innings if i.innings_number == 1), None)
            if first is None:
                raise InningsNotFound(f"First innings not found for match {match_id}")

            target = first.total_runs + 1
            overs_remaining = cricket_math.balls_to_overs_float(balls_remaining)
            rrr = cricket_math.required_run_rate(target, innings.total_runs, overs_remaining)
            chasing = cricket_math.calculate_win_probability(
                target, innings.total_runs, innings.total_wickets, overs_remaining
            )
            home = chasing if innings.batting_team_id == match.home_team_id else 100.0 - chasing

        home = round(home, 2)
        snapshot = WinProbabilitySnapshot(
            match_id=match.id,
            innings_id=innings.id,
            innings_number=innings.innings_number,
            over_number=over_number,
            ball_number=ball_number,
            home_probability=home,
            away_probability=round(100.0 - home, 2),
            tie_probability=0.0,
            target=target,
            required_run_rate=rrr,
            current_score=innings.total_runs,
            wickets_lost=innings.total_wickets,
            balls_remaining=balls_remaining,
        )
        db.add(snapshot)
        db.flush()
        return snapshot

    # -----------------------
    # First innings proxy
    # -----------------------
    def _team_form(self, db: Session, team_id: str, exclude_match_id: str) -> float:
        """Win ratio over the team's last few completed matches; 0.5 with no history."""
        recent: List[Match] = (
            db.query(Match)
            .filter(
                Match.status == "COMPLETED",
                Match.id != exclude_match_id,
                or_(Match.home_team_id == team_id, Match.away_team_id == team_id),
            )
            .order_by(Match.match_date.desc())
            .limit(FORM_WINDOW)
            .all()
        )
        if not recent:
            return 0.5
        wins = sum(1 for m in recent if m.winner_id == team_id)
        return wins / len(recent)

    def _first_innings_home_probability(self, db: Session, match: Match) -> float:
        home_form = self._team_form(db, match.home_team_id, match.id)
        away_form = self._team_form(db, match.away_team_id, match.id)

        probability = 50.0 + (home_form - away_form) * FORM_WEIGHT
        if match.toss_winner_id == match.home_team_id:
            probability += TOSS_EDGE
        elif match.toss_winner_id == match.away_team_id:
            probability -= TOSS_EDGE

        low, high = FIRST_INNINGS_BOUNDS
        return max(low, min(high, probability))

    # -----------------------
    # Reads
    # -----------------------
    def get_history(self, db: Session, match_id: str) -> List[WinProbabilitySnapshot]:
        load_match(db, match_id)
        return (
            db.query(WinProbabilitySnapshot)
            .filter(WinProbabilitySnapshot.match_id == match_id)
            .order_by(
                WinProbabilitySnapshot.innings_number,
                WinProbabilitySnapshot.over_number,
                WinProbabilitySnapshot.ball_number,
                WinProbabilitySnapshot.id,
            )
            .all()
        )

    def get_latest(self, db: Session, match_id: str) -> WinProbabilitySnapshot:
        load_match(db, match_id)
        latest = (
            db.query(WinProbabilitySnapshot)
            .filter(WinProbabilitySnapshot.match_id == match_id)
            .order_by(WinProbabilitySnapshot.id.desc())
            .first()
        )
        if latest is None:
            raise NotFound(f"No win probability data for match {match_id}")
        return latest


def snapshot_to_dict(s: WinProbabilitySnapshot) -> Dict[str, Any]:
    return {
        "id": s.id,
        "match_id": s.match_id,
        "innings_id": s.innings_id,
        "innings_number": s.innings_number,
        "over_number": s.over_number,
        "ball_number": s.ball_number,
        "home_probability": s.home_probability,
        "away_probability": s.away_probability,
        "tie_probability": s.tie_probability,
        "target": s.target,
        "required_run_rate": s.required_run_rate,
        "current_score": s.current_score,
        "wickets_lost": s.wickets_lost,
        "balls_remaining": s.balls_remaining,
        "calculated_at": s.calculated_at.isoformat() + "Z" if s.calculated_at else None,
    }
