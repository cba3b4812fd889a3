# cricket_live/ball_processor.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, get_args

from sqlalchemy.orm import Session

from cricket_live import cricket_math
from cricket_live.errors import (
    AllOut,
    IllegalBowlerChange,
    InningsNotActive,
    InningsNotFound,
    InvalidExtraCombination,
    InvalidState,
    MissingDismissalInfo,
    NegativeRuns,
    OverFull,
    OversLimitReached,
    PlayerNotFound,
    ValidationError,
)
from cricket_live.logging import get_logger
from cricket_live.models import (
    NON_BOWLER_WICKETS,
    NON_LEGAL_EXTRAS,
    TERMINAL_MATCH_STATUSES,
    Ball,
    BattingPerformance,
    BowlingPerformance,
    Commentary,
    ExtraType,
    Innings,
    Over,
    Player,
    WicketType,
)

logger = get_logger(__name__)

EXTRA_TYPES = set(get_args(ExtraType))
WICKET_TYPES = set(get_args(WicketType))

# Telemetry keys copied verbatim onto the Ball row
LOCATION_FIELDS = (
    "shot_angle",
    "shot_distance",
    "shot_zone",
    "shot_type",
    "pitch_line",
    "pitch_length",
    "pitch_x",
    "pitch_y",
    "ball_speed",
    "ball_trajectory",
)


@dataclass
class BallData:
    """One delivery as reported by the scorer."""
    runs: int = 0
    is_wicket: bool = False
    wicket_type: Optional[str] = None
    dismissed_player_id: Optional[str] = None
    wicket_taker_id: Optional[str] = None
    is_extra: bool = False
    extra_type: Optional[str] = None
    extra_runs: int = 0
    commentary: Optional[str] = None
    striker_id: Optional[str] = None
    non_striker_id: Optional[str] = None
    location: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_legal(self) -> bool:
        """Wides and no-balls do not use up a ball of the over."""
        return not (self.is_extra and self.extra_type in NON_LEGAL_EXTRAS)

    @property
    def total_runs(self) -> int:
        return self.runs + (self.extra_runs if self.is_extra else 0)

    @property
    def credits_bowler(self) -> bool:
        return self.is_wicket and self.wicket_type not in NON_BOWLER_WICKETS


def validate_ball_data(data: BallData) -> None:
    """
    Pure checks, run before anything is read or written.

    Rules:
    - runs / extra runs are never negative
    - a wicket names the dismissed player
    - an extra names its type; a non-extra carries no extra type or runs
    """
    if data.runs < 0 or data.extra_runs < 0:
        raise NegativeRuns("runs and extra_runs must be >= 0")

    if data.is_wicket:
        if not data.dismissed_player_id:
            raise MissingDismissalInfo("dismissed_player_id is required when is_wicket is true")
        if data.wicket_type is not None and data.wicket_type not in WICKET_TYPES:
            raise ValidationError(f"Unknown wicket_type: {data.wicket_type}")

    if data.is_extra:
        if not data.extra_type:
            raise InvalidExtraCombination("extra_type is required when is_extra is true")
        if data.extra_type not in EXTRA_TYPES:
            raise InvalidExtraCombination(f"Unknown extra_type: {data.extra_type}")
    elif data.extra_type or data.extra_runs:
        raise InvalidExtraCombination("extra_type/extra_runs given but is_extra is false")


class BallEventProcessor:
    """
    Records one delivery and rolls it into the innings, over and player
    aggregates. Runs inside the caller's transaction: nothing here commits,
    broadcasts or touches a cache.
    """

    def record_ball(
        self,
        db: Session,
        innings_id: str,
        bowler_id: str,
        batsman_id: str,
        data: BallData,
    ) -> Ball:
        validate_ball_data(data)

        innings = self._lock_innings(db, innings_id)
        match = innings.match

        if innings.status != "IN_PROGRESS":
            raise InningsNotActive(f"Innings {innings.innings_number} is {innings.status}")
        if match.status in TERMINAL_MATCH_STATUSES:
            raise InvalidState(f"Match is {match.status}; no further balls accepted")

        self._require_players(db, bowler_id, batsman_id, data.dismissed_player_id)

        if innings.total_wickets >= cricket_math.MAX_WICKETS:
            raise AllOut(f"{innings.total_wickets} wickets down; complete the innings")
        if innings.legal_balls >= match.overs_limit * cricket_math.BALLS_PER_OVER:
            raise OversLimitReached(f"{match.overs_limit} overs already bowled; complete the innings")
        if data.is_wicket and self._is_out(db, innings, data.dismissed_player_id):
            raise ValidationError(f"Player {data.dismissed_player_id} is already out in this innings")

        over = self._current_over(db, innings, bowler_id)

        if data.is_legal and over.is_complete:
            raise OverFull(f"Over {over.over_number} already has 6 legal balls")

        ball_number = over.legal_balls + 1
        sequence = len(over.balls) + 1

        ball = Ball(
            innings_id=innings.id,
            over_id=over.id,
            over_number=over.over_number,
            ball_number=ball_number,
            sequence=sequence,
            bowler_id=bowler_id,
            batsman_id=batsman_id,
            runs=data.runs,
            is_wicket=data.is_wicket,
            wicket_type=data.wicket_type,
            dismissed_player_id=data.dismissed_player_id,
            wicket_taker_id=data.wicket_taker_id,
            is_extra=data.is_extra,
            extra_type=data.extra_type,
            extra_runs=data.extra_runs if data.is_extra else 0,
            commentary=data.commentary,
            **{k: data.location.get(k) for k in LOCATION_FIELDS},
        )
        over.balls.append(ball)
        db.add(ball)

        over_completed = self._apply_to_over(over, data)
        self._apply_to_innings(innings, data)
        if match.status == "TOSS_DONE":
            match.status = "LIVE"

        self._apply_to_batting(db, innings, batsman_id, data)
        self._apply_to_bowling(db, innings, bowler_id, data, over_completed and over.maiden)

        if data.commentary:
            db.add(Commentary(
                match_id=match.id,
                over=over.over_number,
                ball=ball_number,
                text=data.commentary,
            ))

        db.flush()

        logger.info(
            "Ball recorded",
            extra={
                "match_id": match.id,
                "innings_id": innings.id,
                "ball": f"{over.over_number}.{ball_number}",
                "runs": data.total_runs,
                "wicket": data.is_wicket,
            },
        )
        return ball

    # -----------------------
    # Lookups
    # -----------------------
    def _lock_innings(self, db: Session, innings_id: str) -> Innings:
        innings = (
            db.query(Innings)
            .filter(Innings.id == innings_id)
            .with_for_update()
            .first()
        )
        if innings is None:
            raise InningsNotFound(f"Innings not found: {innings_id}")
        return innings

    def _require_players(self, db: Session, *player_ids: Optional[str]) -> None:
        for pid in player_ids:
            if pid and db.get(Player, pid) is None:
                raise PlayerNotFound(f"Player not found: {pid}")

    def _is_out(self, db: Session, innings: Innings, player_id: str) -> bool:
        return (
            db.query(BattingPerformance)
            .filter(
                BattingPerformance.innings_id == innings.id,
                BattingPerformance.player_id == player_id,
                BattingPerformance.is_out.is_(True),
            )
            .first()
            is not None
        )

    def _current_over(self, db: Session, innings: Innings, bowler_id: str) -> Over:
        """
        Latest over if it is unfinished and belongs to this bowler, else a new
        over at the next index. A bowler may not take two overs in a row, nor
        take over another bowler's unfinished over.
        """
        latest = (
            db.query(Over)
            .filter(Over.innings_id == innings.id)
            .order_by(Over.over_number.desc())
            .with_for_update()
            .first()
        )

        if latest is not None and not latest.is_complete:
            if latest.bowler_id != bowler_id:
                raise IllegalBowlerChange(
                    f"Over {latest.over_number} is still in progress with another bowler"
                )
            return latest

        if latest is not None and latest.bowler_id == bowler_id:
            raise IllegalBowlerChange(
                f"Bowler {bowler_id} bowled over {latest.over_number}; consecutive overs are not allowed"
            )

        over = Over(
            innings_id=innings.id,
            over_number=0 if latest is None else latest.over_number + 1,
            bowler_id=bowler_id,
            legal_balls=0,
            runs_scored=0,
            wickets=0,
            maiden=False,
        )
        innings.overs.append(over)
        db.add(over)
        db.flush()
        return over

    # -----------------------
    # Aggregates
    # -----------------------
    def _apply_to_over(self, over: Over, data: BallData) -> bool:
        """Returns True when this delivery completed the over."""
        over.runs_scored += data.total_runs
        if data.is_wicket:
            over.wickets += 1

        if not data.is_legal:
            return False

        over.legal_balls += 1
        if over.is_complete:
            over.maiden = over.runs_scored == 0
            return True
        return False

    def _apply_to_innings(self, innings: Innings, data: BallData) -> None:
        innings.total_runs += data.total_runs
        if data.is_wicket:
            innings.total_wickets += 1

        if data.is_legal:
            innings.legal_balls += 1
        innings.total_overs = cricket_math.balls_to_overs(innings.legal_balls)

        if data.is_extra:
            innings.extras += data.extra_runs
            bucket = {
                "WIDE": "wides",
                "NO_BALL": "no_balls",
                "BYE": "byes",
                "LEG_BYE": "leg_byes",
                "PENALTY": "penalties",
            }[data.extra_type]
            setattr(innings, bucket, getattr(innings, bucket) + data.extra_runs)

        if data.striker_id:
            innings.current_striker_id = data.striker_id
        if data.non_striker_id:
            innings.current_non_striker_id = data.non_striker_id

    def _batting_row(self, db: Session, innings: Innings, player_id: str) -> BattingPerformance:
        perf = (
            db.query(BattingPerformance)
            .filter(BattingPerformance.innings_id == innings.id, BattingPerformance.player_id == player_id)
            .first()
        )
        if perf is None:
            perf = BattingPerformance(
                innings_id=innings.id,
                player_id=player_id,
                team_id=innings.batting_team_id,
                position=len(innings.batting_performances) + 1,
                runs=0,
                balls_faced=0,
                fours=0,
                sixes=0,
                strike_rate=0.0,
                is_out=False,
            )
            innings.batting_performances.append(perf)
            db.add(perf)
        return perf

    def _apply_to_batting(self, db: Session, innings: Innings, batsman_id: str, data: BallData) -> None:
        perf = self._batting_row(db, innings, batsman_id)

        perf.runs += data.runs
        if data.is_legal:
            perf.balls_faced += 1
        if data.runs == 4:
            perf.fours += 1
        elif data.runs == 6:
            perf.sixes += 1
        perf.strike_rate = cricket_math.strike_rate(perf.runs, perf.balls_faced)

        if data.is_wicket:
            # run outs can dismiss the non-striker
            out = perf if data.dismissed_player_id == batsman_id else self._batting_row(
                db, innings, data.dismissed_player_id
            )
            out.is_out = True
            out.dismissal = data.wicket_type

    def _apply_to_bowling(
        self,
        db: Session,
        innings: Innings,
        bowler_id: str,
        data: BallData,
        maiden_completed: bool,
    ) -> None:
        perf = (
            db.query(BowlingPerformance)
            .filter(BowlingPerformance.innings_id == innings.id, BowlingPerformance.player_id == bowler_id)
            .first()
        )
        if perf is None:
            perf = BowlingPerformance(
                innings_id=innings.id,
                player_id=bowler_id,
                team_id=innings.bowling_team_id,
                position=len(innings.bowling_performances) + 1,
                balls_bowled=0,
                overs_bowled=0.0,
                maidens=0,
                runs_conceded=0,
                wickets=0,
                wides=0,
                no_balls=0,
                economy_rate=0.0,
            )
            innings.bowling_performances.append(perf)
            db.add(perf)

        perf.runs_conceded += data.total_runs
        if data.credits_bowler:
            perf.wickets += 1
        if data.is_legal:
            perf.balls_bowled += 1
        if data.is_extra and data.extra_type == "WIDE":
            perf.wides += 1
        elif data.is_extra and data.extra_type == "NO_BALL":
            perf.no_balls += 1
        if maiden_completed:
            perf.maidens += 1

        perf.overs_bowled = cricket_math.balls_to_overs(perf.balls_bowled)
        perf.economy_rate = cricket_math.economy_rate(
            perf.runs_conceded, cricket_math.balls_to_overs_float(perf.balls_bowled)
        )
