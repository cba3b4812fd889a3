# cricket_live/cricket_math.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Union

BALLS_PER_OVER = 6
MAX_WICKETS = 10

OversLike = Union[str, int, float]

# Required run rate treated as out of reach by the chase heuristic
FEASIBLE_RRR_CEILING = 15.0

WIN_PROBABILITY_FLOOR = 5.0
WIN_PROBABILITY_CEILING = 95.0

# phase boundaries: (powerplay ends before, death overs start at)
_PHASES = {
    "T20": (6, 16),
    "ODI": (10, 40),
}


def _safe_div(num: float, den: float) -> float:
    if den == 0:
        return 0.0
    return num / den


# -----------------------------
# Overs notation
# -----------------------------
def overs_to_balls(overs: OversLike) -> int:
    """
    Converts cricket overs notation to balls.

    Supported inputs:
    - "20.0", "19.4", "7.2" (string overs notation)
    - 20 (int overs)
    - 19.4 (float) -> treated as "19.4"

    Rule: ".x" means x balls (0-5). Example: 19.4 = 19*6 + 4 = 118 balls.
    """
    if overs is None:
        raise ValueError("Overs cannot be None")

    if isinstance(overs, float):
        # 19.4 -> floor 19, fractional .4 -> 4 balls
        whole = math.floor(overs)
        balls_i = int(round((overs - whole) * 10))
        if whole < 0 or balls_i > 5:
            raise ValueError(f"Invalid overs: {overs}")
        return int(whole) * BALLS_PER_OVER + balls_i

    s = str(overs).strip()
    if not s:
        raise ValueError("Overs cannot be empty")

    if "." not in s:
        ov_i = int(s)
        if ov_i < 0:
            raise ValueError(f"Invalid overs: {overs}")
        return ov_i * BALLS_PER_OVER

    ov_part, ball_part = s.split(".", 1)
    ov_i = int(ov_part) if ov_part else 0
    ball_part = ball_part.strip()
    balls_i = int(ball_part) if ball_part else 0

    if ov_i < 0:
        raise ValueError(f"Invalid overs: {overs}")
    if balls_i < 0 or balls_i > 5:
        raise ValueError(f"Invalid overs format: {overs} (balls part must be 0-5)")

    return ov_i * BALLS_PER_OVER + balls_i


def balls_to_overs(balls: int) -> float:
    """38 balls -> 6.2 (notation, not a decimal quantity)."""
    if balls <= 0:
        return 0.0
    return float(f"{balls // BALLS_PER_OVER}.{balls % BALLS_PER_OVER}")


def balls_to_overs_float(balls: int) -> float:
    """38 balls -> 6.333.. (true overs, for rates)."""
    if balls <= 0:
        return 0.0
    return balls / float(BALLS_PER_OVER)


# -----------------------------
# Batting / bowling rates
# -----------------------------
def strike_rate(runs: int, balls: int) -> float:
    return round(_safe_div(runs * 100.0, balls), 2)


def batting_average(runs: int, dismissals: int) -> float:
    # not-out convention: average reported as the runs themselves
    if dismissals == 0:
        return float(runs)
    return round(runs / dismissals, 2)


def economy_rate(runs_conceded: int, overs: float) -> float:
    return round(_safe_div(runs_conceded, overs), 2)


def bowling_average(runs_conceded: int, wickets: int) -> float:
    return round(_safe_div(runs_conceded, wickets), 2)


def run_rate(runs: int, balls: int) -> float:
    return round(_safe_div(runs, balls_to_overs_float(balls)), 2)


def net_run_rate(
    runs_scored: int,
    overs_played: float,
    runs_conceded: int,
    overs_faced: float,
) -> float:
    """
    Net Run Rate = (runs_scored / overs_played) - (runs_conceded / overs_faced)
    Overs are true overs (balls / 6).
    """
    if overs_played == 0 or overs_faced == 0:
        return 0.0
    return round(runs_scored / overs_played - runs_conceded / overs_faced, 3)


def required_run_rate(target: int, current_runs: int, overs_remaining: float) -> float:
    if overs_remaining <= 0:
        return 0.0
    return round((target - current_runs) / overs_remaining, 2)


def projected_score(current_runs: int, current_overs: float, total_overs: float) -> int:
    if current_overs <= 0:
        return 0
    return int(round(current_runs / current_overs * total_overs))


# -----------------------------
# Match phases
# -----------------------------
def is_powerplay(over_number: int, match_format: str) -> bool:
    phase = _PHASES.get(match_format.upper())
    if phase is None:
        return False
    return over_number < phase[0]


def is_death_overs(over_number: int, match_format: str) -> bool:
    phase = _PHASES.get(match_format.upper())
    if phase is None:
        return False
    return over_number >= phase[1]


# -----------------------------
# Win probability (chasing side)
# -----------------------------
def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def calculate_win_probability(
    target: int,
    current_runs: int,
    wickets_lost: int,
    overs_remaining: float,
) -> float:
    """
    Chasing side's win probability in [5, 95].

    Three normalized signals:
    - pressure    = (target - runs) / target            (0 = nothing left to score)
    - wickets     = (10 - wickets_lost) / 10
    - feasibility = 1 - required_rate / 15               (0 = out of reach)

    chasing = 100 * (0.35 * (1 - pressure) + 0.30 * wickets + 0.35 * feasibility)

    The defending side is 100 - chasing.
    """
    if target <= 0:
        return 50.0

    runs_needed = target - current_runs
    if runs_needed <= 0:
        return WIN_PROBABILITY_CEILING

    wickets_in_hand = MAX_WICKETS - wickets_lost
    if wickets_in_hand <= 0 or overs_remaining <= 0:
        return WIN_PROBABILITY_FLOOR

    pressure = _clamp(runs_needed / target, 0.0, 1.0)
    wickets = _clamp(wickets_in_hand / MAX_WICKETS, 0.0, 1.0)
    rrr = runs_needed / overs_remaining
    feasibility = _clamp(1.0 - rrr / FEASIBLE_RRR_CEILING, 0.0, 1.0)

    probability = 100.0 * (0.35 * (1.0 - pressure) + 0.30 * wickets + 0.35 * feasibility)
    return round(_clamp(probability, WIN_PROBABILITY_FLOOR, WIN_PROBABILITY_CEILING), 2)


# -----------------------------
# Result text / man of the match
# -----------------------------
def generate_result_text(
    winning_team_name: Optional[str],
    margin: int,
    is_wicket_margin: bool,
    *,
    is_tie: bool = False,
) -> str:
    if is_tie or winning_team_name is None:
        return "Match Tied"
    if is_wicket_margin:
        return f"{winning_team_name} won by {margin} wicket{'s' if margin != 1 else ''}"
    return f"{winning_team_name} won by {margin} run{'s' if margin != 1 else ''}"


@dataclass
class PlayerContribution:
    """One player's combined match figures across batting and bowling."""
    player_id: str
    runs: int = 0
    balls_faced: int = 0
    wickets: int = 0
    balls_bowled: int = 0
    runs_conceded: int = 0
    order: int = 0  # first appearance among the match's performances


def contribution_score(c: PlayerContribution) -> float:
    """
    Default contribution heuristic:
    - 1.5 per run, 25 per wicket
    - +20 for strike rate above 150 (at least 10 balls faced)
    - +15 for economy below 6 (at least 2 overs bowled)
    """
    score = c.runs * 1.5 + c.wickets * 25

    if c.balls_faced >= 10 and strike_rate(c.runs, c.balls_faced) > 150:
        score += 20

    if c.balls_bowled >= 12:
        econ = economy_rate(c.runs_conceded, balls_to_overs_float(c.balls_bowled))
        if econ < 6:
            score += 15

    return score


def rank_man_of_match(contributions: Sequence[PlayerContribution]) -> Optional[str]:
    """
    Highest contribution wins; ties broken by runs, then wickets,
    then earliest performance order.
    """
    if not contributions:
        return None

    best = max(
        contributions,
        key=lambda c: (contribution_score(c), c.runs, c.wickets, -c.order),
    )
    return best.player_id
