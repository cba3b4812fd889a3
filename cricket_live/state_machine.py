# cricket_live/state_machine.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from cricket_live import cricket_math
from cricket_live.cricket_math import PlayerContribution
from cricket_live.errors import (
    InningsNotFound,
    InvalidState,
    InvalidTransition,
    MatchNotFound,
    UnknownTeam,
    ValidationError,
)
from cricket_live.logging import get_logger
from cricket_live.models import TERMINAL_MATCH_STATUSES, Innings, Match, Player

logger = get_logger(__name__)

MAX_INNINGS = 2

# Fewest registered players a side needs before the toss
MIN_SQUAD_SIZE = 4

# Pluggable: takes every player's combined figures, returns the chosen player id
ManOfMatchRanker = Callable[[Sequence[PlayerContribution]], Optional[str]]


@dataclass
class MatchResult:
    winner_id: Optional[str]
    result_type: str
    win_margin: Optional[str]
    result_text: str
    man_of_match_id: Optional[str]


def load_match(db: Session, match_id: str, *, lock: bool = False) -> Match:
    q = db.query(Match).filter(Match.id == match_id)
    if lock:
        q = q.with_for_update()
    match = q.first()
    if match is None:
        raise MatchNotFound(f"Match not found: {match_id}")
    return match


def load_innings(db: Session, innings_id: str) -> Innings:
    innings = db.query(Innings).filter(Innings.id == innings_id).first()
    if innings is None:
        raise InningsNotFound(f"Innings not found: {innings_id}")
    return innings


def _new_innings(match: Match, number: int, batting_team_id: str) -> Innings:
    return Innings(
        match_id=match.id,
        innings_number=number,
        batting_team_id=batting_team_id,
        bowling_team_id=match.other_team_id(batting_team_id),
        total_runs=0,
        total_wickets=0,
        legal_balls=0,
        total_overs=0.0,
        extras=0,
        wides=0,
        no_balls=0,
        byes=0,
        leg_byes=0,
        penalties=0,
        status="IN_PROGRESS",
    )


class MatchStateMachine:
    """
    Match lifecycle:

        SCHEDULED -> TOSS_DONE -> LIVE -> COMPLETED
        (any non-terminal state) -> CANCELLED

    Innings 1 is created by the toss; innings 2 by start_innings once
    innings 1 is completed. Innings and matches are only ever completed by an
    explicit call, never automatically at the overs limit or the tenth wicket.
    """

    def __init__(self, rank_man_of_match: ManOfMatchRanker = cricket_math.rank_man_of_match) -> None:
        self.rank_man_of_match = rank_man_of_match

    # -----------------------
    # Toss
    # -----------------------
    def record_toss(self, db: Session, match_id: str, winner_team_id: str, decision: str) -> Innings:
        match = load_match(db, match_id, lock=True)

        if match.status != "SCHEDULED":
            raise InvalidState(f"Toss can only be recorded for a SCHEDULED match (status={match.status})")
        if decision not in ("bat", "bowl"):
            raise ValidationError("toss decision must be 'bat' or 'bowl'")
        if winner_team_id not in (match.home_team_id, match.away_team_id):
            raise UnknownTeam(f"Team {winner_team_id} is not playing this match")

        for team in (match.home_team, match.away_team):
            squad = db.query(Player).filter(Player.team_id == team.id).count()
            if squad < MIN_SQUAD_SIZE:
                raise ValidationError(f"{team.name} must have at least {MIN_SQUAD_SIZE} players to play a match")

        match.toss_winner_id = winner_team_id
        match.toss_decision = decision
        match.status = "TOSS_DONE"

        batting_team_id = winner_team_id if decision == "bat" else match.other_team_id(winner_team_id)
        innings = _new_innings(match, 1, batting_team_id)
        match.innings.append(innings)
        db.add(innings)
        db.flush()

        logger.info(
            "Toss recorded",
            extra={"match_id": match.id, "toss_winner": winner_team_id, "decision": decision},
        )
        return innings

    # -----------------------
    # Innings
    # -----------------------
    def start_innings(self, db: Session, match_id: str, innings_number: int) -> Innings:
        """
        Innings 1 already exists after the toss: starting it opens play and
        moves the match to LIVE. Innings 2 is created with the sides swapped
        and is legal only once innings 1 is COMPLETED.
        """
        match = load_match(db, match_id, lock=True)

        if match.status in TERMINAL_MATCH_STATUSES:
            raise InvalidState(f"Match is {match.status}")

        existing = {i.innings_number: i for i in match.innings}
        expected = len(existing) + 1

        if innings_number == 1:
            if match.status != "TOSS_DONE" or 1 not in existing:
                raise InvalidTransition("Innings 1 starts once, after the toss")
            match.status = "LIVE"
            db.flush()
            logger.info("Innings started", extra={"match_id": match.id, "innings_number": 1})
            return existing[1]

        if innings_number in existing:
            raise InvalidTransition(f"Innings {innings_number} already exists")
        if innings_number != expected or innings_number > MAX_INNINGS:
            raise InvalidTransition(f"Expected innings {expected}, got {innings_number}")

        previous = existing[innings_number - 1]
        if previous.status != "COMPLETED":
            raise InvalidTransition(f"Innings {previous.innings_number} is still in progress")

        innings = _new_innings(match, innings_number, previous.bowling_team_id)
        match.innings.append(innings)
        match.status = "LIVE"
        db.add(innings)
        db.flush()

        logger.info("Innings started", extra={"match_id": match.id, "innings_number": innings_number})
        return innings

    def complete_innings(self, db: Session, innings_id: str) -> Innings:
        innings = load_innings(db, innings_id)
        if innings.status != "IN_PROGRESS":
            raise InvalidState(f"Innings {innings.innings_number} is already {innings.status}")
        if innings.match.status in TERMINAL_MATCH_STATUSES:
            raise InvalidState(f"Match is {innings.match.status}")

        innings.status = "COMPLETED"
        db.flush()

        logger.info(
            "Innings completed",
            extra={
                "match_id": innings.match_id,
                "innings_number": innings.innings_number,
                "score": f"{innings.total_runs}/{innings.total_wickets}",
                "overs": innings.total_overs,
            },
        )
        return innings

    # -----------------------
    # Completion / cancellation
    # -----------------------
    def complete_match(
        self,
        db: Session,
        match_id: str,
        *,
        forfeiting_team_id: Optional[str] = None,
    ) -> MatchResult:
        """
        Rules:
        - Normal result: both innings COMPLETED; higher total wins.
          Chasing side wins by wickets in hand, defending side by runs.
          Equal totals is a TIE.
        - Forfeit: allowed at any non-terminal point; the other side wins.
        """
        match = load_match(db, match_id, lock=True)

        if match.status in TERMINAL_MATCH_STATUSES:
            raise InvalidState(f"Match is already {match.status}")

        if forfeiting_team_id is not None:
            result = self._forfeit_result(match, forfeiting_team_id)
        else:
            result = self._played_result(match)

        match.status = "COMPLETED"
        match.winner_id = result.winner_id
        match.result_type = result.result_type
        match.win_margin = result.win_margin
        match.result_text = result.result_text
        match.man_of_match_id = result.man_of_match_id
        db.flush()

        logger.info(
            "Match completed",
            extra={"match_id": match.id, "result": result.result_text, "winner_id": result.winner_id},
        )
        return result

    def cancel_match(self, db: Session, match_id: str) -> Match:
        match = load_match(db, match_id, lock=True)
        if match.status in TERMINAL_MATCH_STATUSES:
            raise InvalidState(f"Cannot cancel a {match.status} match")

        match.status = "CANCELLED"
        db.flush()

        logger.info("Match cancelled", extra={"match_id": match.id})
        return match

    # -----------------------
    # Result helpers
    # -----------------------
    def _played_result(self, match: Match) -> MatchResult:
        innings = sorted(match.innings, key=lambda i: i.innings_number)
        if len(innings) < MAX_INNINGS or any(i.status != "COMPLETED" for i in innings):
            raise InvalidState("Both innings must be COMPLETED before the match can be completed")

        first, second = innings[0], innings[1]
        mom = self.rank_man_of_match(self._contributions(innings))

        if second.total_runs > first.total_runs:
            winner_id = second.batting_team_id
            margin = cricket_math.MAX_WICKETS - second.total_wickets
            return MatchResult(
                winner_id=winner_id,
                result_type="WIN",
                win_margin=f"{margin} wickets",
                result_text=cricket_math.generate_result_text(match.team_name(winner_id), margin, True),
                man_of_match_id=mom,
            )

        if first.total_runs > second.total_runs:
            winner_id = first.batting_team_id
            margin = first.total_runs - second.total_runs
            return MatchResult(
                winner_id=winner_id,
                result_type="WIN",
                win_margin=f"{margin} runs",
                result_text=cricket_math.generate_result_text(match.team_name(winner_id), margin, False),
                man_of_match_id=mom,
            )

        return MatchResult(
            winner_id=None,
            result_type="TIE",
            win_margin=None,
            result_text=cricket_math.generate_result_text(None, 0, False, is_tie=True),
            man_of_match_id=mom,
        )

    def _forfeit_result(self, match: Match, forfeiting_team_id: str) -> MatchResult:
        if forfeiting_team_id not in (match.home_team_id, match.away_team_id):
            raise UnknownTeam(f"Team {forfeiting_team_id} is not playing this match")

        winner_id = match.other_team_id(forfeiting_team_id)
        return MatchResult(
            winner_id=winner_id,
            result_type="WIN",
            win_margin="forfeit",
            result_text=f"{match.team_name(winner_id)} won by forfeit",
            man_of_match_id=None,
        )

    def _contributions(self, innings: List[Innings]) -> List[PlayerContribution]:
        """Batting and bowling rows merged per player, in order of first appearance."""
        by_player: Dict[str, PlayerContribution] = {}

        def row(player_id: str) -> PlayerContribution:
            if player_id not in by_player:
                by_player[player_id] = PlayerContribution(player_id=player_id, order=len(by_player))
            return by_player[player_id]

        for inn in innings:
            for bp in inn.batting_performances:
                c = row(bp.player_id)
                c.runs += bp.runs
                c.balls_faced += bp.balls_faced
            for bw in inn.bowling_performances:
                c = row(bw.player_id)
                c.wickets += bw.wickets
                c.balls_bowled += bw.balls_bowled
                c.runs_conceded += bw.runs_conceded

        return list(by_player.values())
