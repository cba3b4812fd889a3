import pytest

from cricket_live.errors import (
    InvalidState,
    InvalidTransition,
    MatchNotFound,
    UnknownTeam,
    ValidationError,
)
from cricket_live.models import Match, Player
from cricket_live.state_machine import MatchStateMachine


def _finish_innings(db, state_machine, innings, runs, wickets):
    innings.total_runs = runs
    innings.total_wickets = wickets
    db.flush()
    state_machine.complete_innings(db, innings.id)


def _play_both(db, seed, state_machine, first, second):
    """Home bats first; `first`/`second` are (runs, wickets)."""
    inn1 = state_machine.record_toss(db, seed.match, seed.home, "bat")
    state_machine.start_innings(db, seed.match, 1)
    _finish_innings(db, state_machine, inn1, *first)
    inn2 = state_machine.start_innings(db, seed.match, 2)
    _finish_innings(db, state_machine, inn2, *second)
    return inn1, inn2


class TestToss:
    def test_toss_winner_bats(self, db, seed, state_machine):
        innings = state_machine.record_toss(db, seed.match, seed.home, "bat")

        match = db.get(Match, seed.match)
        assert match.status == "TOSS_DONE"
        assert match.toss_winner_id == seed.home
        assert match.toss_decision == "bat"
        assert innings.innings_number == 1
        assert innings.batting_team_id == seed.home
        assert innings.bowling_team_id == seed.away
        assert innings.status == "IN_PROGRESS"

    def test_toss_winner_bowls(self, db, seed, state_machine):
        innings = state_machine.record_toss(db, seed.match, seed.home, "bowl")
        assert innings.batting_team_id == seed.away
        assert innings.bowling_team_id == seed.home

    def test_toss_only_once(self, db, seed, state_machine):
        state_machine.record_toss(db, seed.match, seed.home, "bat")
        with pytest.raises(InvalidState):
            state_machine.record_toss(db, seed.match, seed.away, "bat")

    def test_bad_decision_or_team(self, db, seed, state_machine):
        with pytest.raises(ValidationError):
            state_machine.record_toss(db, seed.match, seed.home, "field")
        with pytest.raises(UnknownTeam):
            state_machine.record_toss(db, seed.match, "not-playing", "bat")

    def test_toss_needs_four_players_a_side(self, db, seed, state_machine):
        db.get(Player, seed.a4).team_id = None
        db.flush()

        with pytest.raises(ValidationError, match="Chennai Super Kings must have at least 4 players"):
            state_machine.record_toss(db, seed.match, seed.home, "bat")
        assert db.get(Match, seed.match).status == "SCHEDULED"

    def test_unknown_match(self, db, seed, state_machine):
        with pytest.raises(MatchNotFound):
            state_machine.record_toss(db, "missing", seed.home, "bat")


class TestInnings:
    def test_start_first_innings_goes_live(self, db, seed, state_machine):
        tossed = state_machine.record_toss(db, seed.match, seed.home, "bat")
        started = state_machine.start_innings(db, seed.match, 1)

        assert started.id == tossed.id
        assert db.get(Match, seed.match).status == "LIVE"

    def test_first_innings_needs_toss(self, db, seed, state_machine):
        with pytest.raises(InvalidTransition):
            state_machine.start_innings(db, seed.match, 1)

    def test_first_innings_cannot_restart(self, db, seed, innings1, state_machine):
        with pytest.raises(InvalidTransition):
            state_machine.start_innings(db, seed.match, 1)

    def test_second_innings_needs_first_completed(self, db, seed, innings1, state_machine):
        with pytest.raises(InvalidTransition):
            state_machine.start_innings(db, seed.match, 2)

    def test_second_innings_swaps_sides(self, db, seed, innings1, state_machine):
        state_machine.complete_innings(db, innings1.id)
        second = state_machine.start_innings(db, seed.match, 2)

        assert second.innings_number == 2
        assert second.batting_team_id == seed.away
        assert second.bowling_team_id == seed.home
        assert db.get(Match, seed.match).status == "LIVE"

    def test_out_of_sequence_and_duplicate(self, db, seed, innings1, state_machine):
        with pytest.raises(InvalidTransition):
            state_machine.start_innings(db, seed.match, 3)

        state_machine.complete_innings(db, innings1.id)
        state_machine.start_innings(db, seed.match, 2)
        with pytest.raises(InvalidTransition):
            state_machine.start_innings(db, seed.match, 2)

    def test_complete_innings_only_once(self, db, seed, innings1, state_machine):
        state_machine.complete_innings(db, innings1.id)
        with pytest.raises(InvalidState):
            state_machine.complete_innings(db, innings1.id)


class TestCompletion:
    def test_cannot_complete_before_both_innings(self, db, seed, innings1, state_machine):
        with pytest.raises(InvalidState):
            state_machine.complete_match(db, seed.match)

        state_machine.complete_innings(db, innings1.id)
        state_machine.start_innings(db, seed.match, 2)
        with pytest.raises(InvalidState):
            state_machine.complete_match(db, seed.match)

    def test_chasing_side_wins_by_wickets(self, db, seed, state_machine):
        _play_both(db, seed, state_machine, (160, 8), (161, 4))
        result = state_machine.complete_match(db, seed.match)

        assert result.winner_id == seed.away
        assert result.result_type == "WIN"
        assert result.win_margin == "6 wickets"
        assert result.result_text == "Chennai Super Kings won by 6 wickets"

        match = db.get(Match, seed.match)
        assert match.status == "COMPLETED"
        assert match.winner_id == seed.away
        assert match.result_text == result.result_text

    def test_defending_side_wins_by_runs(self, db, seed, state_machine):
        _play_both(db, seed, state_machine, (180, 6), (170, 9))
        result = state_machine.complete_match(db, seed.match)

        assert result.winner_id == seed.home
        assert result.result_text == "Mumbai Indians won by 10 runs"

    def test_equal_totals_tie(self, db, seed, state_machine):
        _play_both(db, seed, state_machine, (150, 7), (150, 10))
        result = state_machine.complete_match(db, seed.match)

        assert result.winner_id is None
        assert result.result_type == "TIE"
        assert result.result_text == "Match Tied"

    def test_completed_match_is_terminal(self, db, seed, state_machine):
        _play_both(db, seed, state_machine, (150, 7), (120, 10))
        state_machine.complete_match(db, seed.match)

        with pytest.raises(InvalidState):
            state_machine.complete_match(db, seed.match)
        with pytest.raises(InvalidState):
            state_machine.cancel_match(db, seed.match)

    def test_forfeit(self, db, seed, innings1, state_machine):
        result = state_machine.complete_match(db, seed.match, forfeiting_team_id=seed.home)

        assert result.winner_id == seed.away
        assert result.win_margin == "forfeit"
        assert result.result_text == "Chennai Super Kings won by forfeit"
        assert db.get(Match, seed.match).status == "COMPLETED"

    def test_man_of_match_from_performances(self, db, seed, state_machine, bowl):
        inn1 = state_machine.record_toss(db, seed.match, seed.home, "bat")
        state_machine.start_innings(db, seed.match, 1)
        for _ in range(3):
            bowl(inn1, seed.a1, seed.h1, runs=6)
        bowl(inn1, seed.a1, seed.h2, runs=1)
        state_machine.complete_innings(db, inn1.id)

        inn2 = state_machine.start_innings(db, seed.match, 2)
        bowl(inn2, seed.h3, seed.a1, is_wicket=True, wicket_type="BOWLED", dismissed_player_id=seed.a1)
        state_machine.complete_innings(db, inn2.id)

        result = state_machine.complete_match(db, seed.match)
        # 18 runs (27 points) beats one wicket (25 points)
        assert result.man_of_match_id == seed.h1
        assert db.get(Match, seed.match).man_of_match_id == seed.h1

    def test_pluggable_ranking(self, db, seed):
        picked = []

        def ranker(contributions):
            picked.extend(contributions)
            return "chosen-one"

        machine = MatchStateMachine(rank_man_of_match=ranker)
        _play_both(db, seed, machine, (100, 10), (101, 2))
        result = machine.complete_match(db, seed.match)

        assert result.man_of_match_id == "chosen-one"
        assert picked == []


class TestCancel:
    def test_cancel_scheduled_match(self, db, seed, state_machine):
        match = state_machine.cancel_match(db, seed.match)
        assert match.status == "CANCELLED"

    def test_cancelled_match_rejects_toss(self, db, seed, state_machine):
        state_machine.cancel_match(db, seed.match)
        with pytest.raises(InvalidState):
            state_machine.record_toss(db, seed.match, seed.home, "bat")
        with pytest.raises(InvalidState):
            state_machine.cancel_match(db, seed.match)
