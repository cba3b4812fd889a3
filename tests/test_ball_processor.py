import pytest

from cricket_live.ball_processor import BallData, validate_ball_data
from cricket_live.database import transaction
from cricket_live.errors import (
    AllOut,
    IllegalBowlerChange,
    InningsNotActive,
    InningsNotFound,
    InvalidExtraCombination,
    MissingDismissalInfo,
    NegativeRuns,
    OversLimitReached,
    PlayerNotFound,
    ValidationError,
)
from cricket_live.models import Ball, BattingPerformance, BowlingPerformance, Commentary, Innings, Over


def _batting(db, innings, player_id):
    return (
        db.query(BattingPerformance)
        .filter_by(innings_id=innings.id, player_id=player_id)
        .one()
    )


def _bowling(db, innings, player_id):
    return (
        db.query(BowlingPerformance)
        .filter_by(innings_id=innings.id, player_id=player_id)
        .one()
    )


def _over(db, innings, number):
    return db.query(Over).filter_by(innings_id=innings.id, over_number=number).one()


def _six_dots(bowl, innings, bowler, batsman):
    for _ in range(6):
        bowl(innings, bowler, batsman, runs=0)


class TestValidation:
    def test_negative_runs(self):
        with pytest.raises(NegativeRuns):
            validate_ball_data(BallData(runs=-1))
        with pytest.raises(NegativeRuns):
            validate_ball_data(BallData(is_extra=True, extra_type="WIDE", extra_runs=-1))

    def test_wicket_needs_dismissed_player(self):
        with pytest.raises(MissingDismissalInfo):
            validate_ball_data(BallData(is_wicket=True, wicket_type="BOWLED"))

    def test_unknown_wicket_type(self):
        with pytest.raises(ValidationError):
            validate_ball_data(BallData(is_wicket=True, wicket_type="TIMED_OUT_TWICE", dismissed_player_id="x"))

    def test_extra_needs_known_type(self):
        with pytest.raises(InvalidExtraCombination):
            validate_ball_data(BallData(is_extra=True, extra_runs=1))
        with pytest.raises(InvalidExtraCombination):
            validate_ball_data(BallData(is_extra=True, extra_type="OVERTHROW", extra_runs=1))

    def test_extra_fields_without_extra_flag(self):
        with pytest.raises(InvalidExtraCombination):
            validate_ball_data(BallData(extra_type="WIDE"))

    def test_errors_share_validation_kind(self):
        assert issubclass(MissingDismissalInfo, ValidationError)
        assert MissingDismissalInfo.status_code == 400


class TestScenario:
    def test_four_then_wide_then_bowled(self, db, seed, innings1, bowl):
        bowl(innings1, seed.a1, seed.h1, runs=4)
        assert (innings1.total_runs, innings1.total_wickets) == (4, 0)
        assert _over(db, innings1, 0).legal_balls == 1
        bat = _batting(db, innings1, seed.h1)
        assert (bat.runs, bat.balls_faced, bat.fours) == (4, 1, 1)

        wide = bowl(innings1, seed.a1, seed.h1, is_extra=True, extra_type="WIDE", extra_runs=1)
        assert (innings1.total_runs, innings1.total_wickets) == (5, 0)
        assert _over(db, innings1, 0).legal_balls == 1
        assert innings1.extras == 1
        assert innings1.wides == 1
        assert wide.ball_number == 2
        assert wide.sequence == 2

        bowl(
            innings1, seed.a1, seed.h1,
            is_wicket=True, wicket_type="BOWLED", dismissed_player_id=seed.h1,
        )
        assert (innings1.total_runs, innings1.total_wickets) == (5, 1)
        bowler = _bowling(db, innings1, seed.a1)
        assert bowler.wickets == 1
        assert bowler.runs_conceded == 5
        assert bowler.wides == 1
        assert bowler.balls_bowled == 2
        assert bowler.overs_bowled == 0.2

        out = _batting(db, innings1, seed.h1)
        assert out.is_out
        assert out.dismissal == "BOWLED"

    def test_total_runs_equal_sum_of_ball_runs(self, db, seed, innings1, bowl):
        deliveries = [
            dict(runs=1),
            dict(runs=0, is_extra=True, extra_type="NO_BALL", extra_runs=1),
            dict(runs=6),
            dict(runs=0, is_extra=True, extra_type="LEG_BYE", extra_runs=2),
            dict(runs=2, is_extra=True, extra_type="NO_BALL", extra_runs=1),
            dict(runs=0, is_extra=True, extra_type="WIDE", extra_runs=5),
            dict(runs=3),
        ]
        for d in deliveries:
            bowl(innings1, seed.a1, seed.h1, **d)

        balls = db.query(Ball).filter_by(innings_id=innings1.id).all()
        assert innings1.total_runs == sum(b.runs + b.extra_runs for b in balls) == 21
        assert innings1.extras == 9
        assert innings1.legal_balls == 4
        assert _over(db, innings1, 0).legal_balls == 4


class TestOvers:
    def test_maiden_over_completes(self, db, seed, innings1, bowl):
        _six_dots(bowl, innings1, seed.a1, seed.h1)

        over = _over(db, innings1, 0)
        assert over.legal_balls == 6
        assert over.maiden is True
        assert innings1.total_overs == 1.0
        assert _bowling(db, innings1, seed.a1).maidens == 1

    def test_over_with_runs_is_not_maiden(self, db, seed, innings1, bowl):
        bowl(innings1, seed.a1, seed.h1, runs=1)
        for _ in range(5):
            bowl(innings1, seed.a1, seed.h1, runs=0)
        assert _over(db, innings1, 0).maiden is False
        assert _bowling(db, innings1, seed.a1).maidens == 0

    def test_wides_do_not_fill_the_over(self, db, seed, innings1, bowl):
        for _ in range(3):
            bowl(innings1, seed.a1, seed.h1, is_extra=True, extra_type="WIDE", extra_runs=1)
        for _ in range(6):
            bowl(innings1, seed.a1, seed.h1, runs=0)

        over = _over(db, innings1, 0)
        assert over.legal_balls == 6
        assert len(over.balls) == 9
        assert [b.sequence for b in over.balls] == list(range(1, 10))
        assert over.maiden is False

    def test_next_over_needs_a_different_bowler(self, db, seed, innings1, bowl):
        _six_dots(bowl, innings1, seed.a1, seed.h1)

        with pytest.raises(IllegalBowlerChange):
            bowl(innings1, seed.a1, seed.h1, runs=1)

        ball = bowl(innings1, seed.a2, seed.h1, runs=1)
        assert ball.over_number == 1
        assert ball.ball_number == 1
        assert _over(db, innings1, 1).bowler_id == seed.a2

    def test_bowler_cannot_take_over_an_unfinished_over(self, db, seed, innings1, bowl):
        bowl(innings1, seed.a1, seed.h1, runs=0)
        with pytest.raises(IllegalBowlerChange):
            bowl(innings1, seed.a2, seed.h1, runs=0)

    def test_no_consecutive_overs_by_same_bowler(self, db, seed, innings1, bowl):
        for bowler in (seed.a1, seed.a2, seed.a1, seed.a3):
            _six_dots(bowl, innings1, bowler, seed.h1)

        overs = db.query(Over).filter_by(innings_id=innings1.id).order_by(Over.over_number).all()
        bowlers = [o.bowler_id for o in overs]
        assert all(a != b for a, b in zip(bowlers, bowlers[1:]))
        assert innings1.total_overs == 4.0


class TestExtras:
    def test_byes_advance_the_over_and_count_against_the_bowler(self, db, seed, innings1, bowl):
        bowl(innings1, seed.a1, seed.h1, is_extra=True, extra_type="BYE", extra_runs=2)

        assert innings1.total_runs == 2
        assert innings1.byes == 2
        assert _over(db, innings1, 0).legal_balls == 1
        bowler = _bowling(db, innings1, seed.a1)
        assert bowler.runs_conceded == 2
        assert bowler.balls_bowled == 1
        bat = _batting(db, innings1, seed.h1)
        assert (bat.runs, bat.balls_faced) == (0, 1)

    def test_leg_byes_are_charged(self, db, seed, innings1, bowl):
        bowl(innings1, seed.a1, seed.h1, is_extra=True, extra_type="LEG_BYE", extra_runs=1)
        assert innings1.leg_byes == 1
        assert _bowling(db, innings1, seed.a1).runs_conceded == 1

    def test_no_ball_with_runs_off_the_bat(self, db, seed, innings1, bowl):
        bowl(innings1, seed.a1, seed.h1, runs=4, is_extra=True, extra_type="NO_BALL", extra_runs=1)

        assert innings1.total_runs == 5
        assert innings1.no_balls == 1
        assert innings1.legal_balls == 0
        bat = _batting(db, innings1, seed.h1)
        assert (bat.runs, bat.balls_faced, bat.fours) == (4, 0, 1)
        bowler = _bowling(db, innings1, seed.a1)
        assert (bowler.runs_conceded, bowler.no_balls, bowler.balls_bowled) == (5, 1, 0)

    def test_penalty_counts_as_a_delivery(self, db, seed, innings1, bowl):
        bowl(innings1, seed.a1, seed.h1, is_extra=True, extra_type="PENALTY", extra_runs=5)
        assert innings1.penalties == 5
        assert innings1.legal_balls == 1
        assert _over(db, innings1, 0).legal_balls == 1
        bowler = _bowling(db, innings1, seed.a1)
        assert (bowler.runs_conceded, bowler.balls_bowled) == (5, 1)


class TestWickets:
    def test_run_out_of_non_striker(self, db, seed, innings1, bowl):
        bowl(
            innings1, seed.a1, seed.h1,
            runs=1,
            is_wicket=True,
            wicket_type="RUN_OUT",
            dismissed_player_id=seed.h2,
            wicket_taker_id=seed.a3,
        )

        assert innings1.total_wickets == 1
        assert _bowling(db, innings1, seed.a1).wickets == 0
        assert _batting(db, innings1, seed.h1).is_out is False
        non_striker = _batting(db, innings1, seed.h2)
        assert non_striker.is_out
        assert non_striker.dismissal == "RUN_OUT"
        assert non_striker.balls_faced == 0

    def test_caught_is_credited_to_bowler(self, db, seed, innings1, bowl):
        bowl(
            innings1, seed.a1, seed.h1,
            is_wicket=True, wicket_type="CAUGHT", dismissed_player_id=seed.h1, wicket_taker_id=seed.a3,
        )
        assert _bowling(db, innings1, seed.a1).wickets == 1
        assert _over(db, innings1, 0).wickets == 1

    def test_batter_cannot_be_dismissed_twice(self, db, seed, innings1, bowl):
        bowl(innings1, seed.a1, seed.h1, is_wicket=True, wicket_type="BOWLED", dismissed_player_id=seed.h1)

        with pytest.raises(ValidationError, match="already out"):
            bowl(
                innings1, seed.a1, seed.h2,
                runs=1, is_wicket=True, wicket_type="RUN_OUT", dismissed_player_id=seed.h1,
            )

        assert innings1.total_wickets == 1
        assert _over(db, innings1, 0).legal_balls == 1


class TestRejections:
    def test_failed_ball_leaves_aggregates_untouched(self, db, seed, innings1, processor):
        with transaction(db):
            processor.record_ball(db, innings1.id, seed.a1, seed.h1, BallData(runs=4))

        with pytest.raises(PlayerNotFound):
            with transaction(db):
                processor.record_ball(
                    db, innings1.id, seed.a1, seed.h1,
                    BallData(runs=6, is_wicket=True, wicket_type="CAUGHT", dismissed_player_id="ghost"),
                )

        with pytest.raises(MissingDismissalInfo):
            with transaction(db):
                processor.record_ball(db, innings1.id, seed.a1, seed.h1, BallData(is_wicket=True))

        fresh = db.get(Innings, innings1.id)
        db.refresh(fresh)
        assert (fresh.total_runs, fresh.total_wickets, fresh.legal_balls) == (4, 0, 1)
        assert db.query(Ball).filter_by(innings_id=innings1.id).count() == 1
        assert _batting(db, fresh, seed.h1).runs == 4

    def test_unknown_innings(self, db, seed, processor):
        with pytest.raises(InningsNotFound):
            processor.record_ball(db, "missing", seed.a1, seed.h1, BallData(runs=1))

    def test_completed_innings_rejects_balls(self, db, seed, innings1, bowl, state_machine):
        state_machine.complete_innings(db, innings1.id)
        with pytest.raises(InningsNotActive):
            bowl(innings1, seed.a1, seed.h1, runs=1)

    def test_overs_limit(self, db, seed, state_machine, bowl):
        state_machine.record_toss(db, seed.short_match, seed.home, "bat")
        innings = state_machine.start_innings(db, seed.short_match, 1)
        _six_dots(bowl, innings, seed.a1, seed.h1)

        with pytest.raises(OversLimitReached):
            bowl(innings, seed.a2, seed.h1, runs=1)
        with pytest.raises(OversLimitReached):
            bowl(innings, seed.a2, seed.h1, is_extra=True, extra_type="WIDE", extra_runs=1)
        assert innings.status == "IN_PROGRESS"

    def test_all_out(self, db, seed, innings1, bowl):
        innings1.total_wickets = 10
        db.flush()
        with pytest.raises(AllOut):
            bowl(innings1, seed.a1, seed.h1, runs=1)


class TestSideEffects:
    def test_first_ball_after_toss_makes_match_live(self, db, seed, state_machine, bowl):
        innings = state_machine.record_toss(db, seed.match, seed.away, "bowl")
        assert innings.match.status == "TOSS_DONE"

        bowl(innings, seed.a1, seed.h1, runs=2)
        assert innings.match.status == "LIVE"

    def test_commentary_and_telemetry(self, db, seed, innings1, bowl):
        ball = bowl(
            innings1, seed.a1, seed.h1,
            runs=6,
            commentary="Launched over long-on",
            location={"shot_zone": "long-on", "ball_speed": 142.5, "ball_trajectory": [[0, 0], [10, 20]]},
            striker_id=seed.h1,
            non_striker_id=seed.h2,
        )

        assert ball.shot_zone == "long-on"
        assert ball.ball_speed == 142.5
        assert ball.ball_trajectory == [[0, 0], [10, 20]]
        assert innings1.current_striker_id == seed.h1
        assert innings1.current_non_striker_id == seed.h2
        assert _batting(db, innings1, seed.h1).sixes == 1

        note = db.query(Commentary).one()
        assert note.text == "Launched over long-on"
        assert (note.over, note.ball) == (0, 1)
