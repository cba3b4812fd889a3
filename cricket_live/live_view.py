# cricket_live/live_view.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from cricket_live import cricket_math
from cricket_live.models import (
    Ball,
    BattingPerformance,
    BowlingPerformance,
    Innings,
    Match,
    Over,
    Player,
    Team,
)
from cricket_live.state_machine import load_match

RECENT_BALLS_WINDOW = 6


# -----------------------------
# Row serializers
# -----------------------------
def _iso(value) -> Optional[str]:
    return value.isoformat() + "Z" if value is not None else None


def team_to_dict(team: Optional[Team]) -> Optional[Dict[str, Any]]:
    if team is None:
        return None
    return {"id": team.id, "name": team.name, "short_name": team.short_name}


def ball_to_dict(ball: Ball) -> Dict[str, Any]:
    return {
        "id": ball.id,
        "innings_id": ball.innings_id,
        "over_number": ball.over_number,
        "ball_number": ball.ball_number,
        "sequence": ball.sequence,
        "bowler_id": ball.bowler_id,
        "batsman_id": ball.batsman_id,
        "runs": ball.runs,
        "is_wicket": ball.is_wicket,
        "wicket_type": ball.wicket_type,
        "dismissed_player_id": ball.dismissed_player_id,
        "wicket_taker_id": ball.wicket_taker_id,
        "is_extra": ball.is_extra,
        "extra_type": ball.extra_type,
        "extra_runs": ball.extra_runs,
        "total_runs": ball.total_runs,
        "commentary": ball.commentary,
        "location": {
            "shot_angle": ball.shot_angle,
            "shot_distance": ball.shot_distance,
            "shot_zone": ball.shot_zone,
            "shot_type": ball.shot_type,
            "pitch_line": ball.pitch_line,
            "pitch_length": ball.pitch_length,
            "pitch_x": ball.pitch_x,
            "pitch_y": ball.pitch_y,
            "ball_speed": ball.ball_speed,
            "ball_trajectory": ball.ball_trajectory,
        },
        "created_at": _iso(ball.created_at),
    }


def _player_name(p: Optional[Player], fallback: str) -> str:
    return p.name if p is not None else fallback


def batting_to_dict(bp: BattingPerformance) -> Dict[str, Any]:
    return {
        "player_id": bp.player_id,
        "player_name": _player_name(bp.player, bp.player_id),
        "runs": bp.runs,
        "balls_faced": bp.balls_faced,
        "fours": bp.fours,
        "sixes": bp.sixes,
        "strike_rate": bp.strike_rate,
        "is_out": bp.is_out,
        "dismissal": bp.dismissal,
    }


def bowling_to_dict(bw: BowlingPerformance) -> Dict[str, Any]:
    return {
        "player_id": bw.player_id,
        "player_name": _player_name(bw.player, bw.player_id),
        "overs_bowled": bw.overs_bowled,
        "maidens": bw.maidens,
        "runs_conceded": bw.runs_conceded,
        "wickets": bw.wickets,
        "wides": bw.wides,
        "no_balls": bw.no_balls,
        "economy_rate": bw.economy_rate,
    }


def over_to_dict(over: Over) -> Dict[str, Any]:
    return {
        "over_number": over.over_number,
        "bowler_id": over.bowler_id,
        "legal_balls": over.legal_balls,
        "runs_scored": over.runs_scored,
        "wickets": over.wickets,
        "maiden": over.maiden,
        "balls": [ball_to_dict(b) for b in over.balls],
    }


def innings_to_dict(inn: Innings) -> Dict[str, Any]:
    return {
        "id": inn.id,
        "innings_number": inn.innings_number,
        "batting_team_id": inn.batting_team_id,
        "bowling_team_id": inn.bowling_team_id,
        "status": inn.status,
        "total_runs": inn.total_runs,
        "total_wickets": inn.total_wickets,
        "total_overs": inn.total_overs,
        "legal_balls": inn.legal_balls,
        "score": f"{inn.total_runs}/{inn.total_wickets}",
        "run_rate": cricket_math.run_rate(inn.total_runs, inn.legal_balls),
        "extras": {
            "total": inn.extras,
            "wides": inn.wides,
            "no_balls": inn.no_balls,
            "byes": inn.byes,
            "leg_byes": inn.leg_byes,
            "penalties": inn.penalties,
        },
        "overs": [over_to_dict(o) for o in inn.overs],
        "batting": [batting_to_dict(bp) for bp in inn.batting_performances],
        "bowling": [bowling_to_dict(bw) for bw in inn.bowling_performances],
    }


def match_header(match: Match) -> Dict[str, Any]:
    return {
        "id": match.id,
        "tournament_id": match.tournament_id,
        "home_team": team_to_dict(match.home_team),
        "away_team": team_to_dict(match.away_team),
        "venue": match.venue,
        "match_date": _iso(match.match_date),
        "format": match.format,
        "overs_limit": match.overs_limit,
        "status": match.status,
        "toss_winner_id": match.toss_winner_id,
        "toss_decision": match.toss_decision,
        "winner_id": match.winner_id,
        "result_type": match.result_type,
        "win_margin": match.win_margin,
        "result_text": match.result_text,
        "man_of_match_id": match.man_of_match_id,
    }


# -----------------------------
# Chase context
# -----------------------------
def chase_context(match: Match, current: Innings) -> Optional[Dict[str, Any]]:
    """Target / runs needed / rates while a second innings is in progress."""
    if current.innings_number != 2:
        return None
    first = next((i for i in match.innings if i.innings_number == 1), None)
    if first is None:
        return None

    target = first.total_runs + 1
    balls_remaining = max(0, match.overs_limit * cricket_math.BALLS_PER_OVER - current.legal_balls)
    overs_remaining = cricket_math.balls_to_overs_float(balls_remaining)

    return {
        "target": target,
        "runs_needed": max(0, target - current.total_runs),
        "balls_remaining": balls_remaining,
        "current_run_rate": cricket_math.run_rate(current.total_runs, current.legal_balls),
        "required_run_rate": cricket_math.required_run_rate(target, current.total_runs, overs_remaining),
    }


class LiveViewAssembler:
    """
    Builds the live-score read model fresh from the aggregates. No side
    effects; caching, when used, wraps the whole response.
    """

    def get_live_score(self, db: Session, match_id: str) -> Dict[str, Any]:
        match = load_match(db, match_id)
        header = match_header(match)

        if not match.innings:
            return {"match": header, "live": False}

        current = next((i for i in match.innings if i.status == "IN_PROGRESS"), None)
        view: Dict[str, Any] = {
            "match": header,
            "live": True,
            "innings": [innings_to_dict(i) for i in match.innings],
            "current_innings": None,
            "chase": None,
        }
        if current is None:
            return view

        recent = (
            db.query(Ball)
            .filter(Ball.innings_id == current.id)
            .order_by(Ball.over_number.desc(), Ball.sequence.desc())
            .limit(RECENT_BALLS_WINDOW)
            .all()
        )
        this_over = current.overs[-1] if current.overs else None
        bowler = next(
            (bw for bw in current.bowling_performances if this_over and bw.player_id == this_over.bowler_id),
            None,
        )
        batters = [
            bp for bp in current.batting_performances
            if bp.player_id in (current.current_striker_id, current.current_non_striker_id)
        ] or [bp for bp in current.batting_performances if not bp.is_out][-2:]

        current_overs = cricket_math.balls_to_overs_float(current.legal_balls)
        view["current_innings"] = {
            "id": current.id,
            "innings_number": current.innings_number,
            "batting_team_id": current.batting_team_id,
            "score": f"{current.total_runs}/{current.total_wickets}",
            "overs": current.total_overs,
            "run_rate": cricket_math.run_rate(current.total_runs, current.legal_balls),
            "projected_score": cricket_math.projected_score(
                current.total_runs, current_overs, float(match.overs_limit)
            ),
            "is_powerplay": cricket_math.is_powerplay(this_over.over_number, match.format) if this_over else True,
            "is_death_overs": cricket_math.is_death_overs(this_over.over_number, match.format) if this_over else False,
            "striker_id": current.current_striker_id,
            "non_striker_id": current.current_non_striker_id,
            "batters": [batting_to_dict(bp) for bp in batters],
            "bowler": bowling_to_dict(bowler) if bowler else None,
            "this_over": [ball_to_dict(b) for b in this_over.balls] if this_over else [],
            "last_balls": [ball_to_dict(b) for b in reversed(recent)],
        }
        view["chase"] = chase_context(match, current)
        return view

    def get_all_live_matches(self, db: Session) -> List[Dict[str, Any]]:
        matches = (
            db.query(Match)
            .filter(Match.status == "LIVE")
            .order_by(Match.match_date.desc())
            .all()
        )

        out: List[Dict[str, Any]] = []
        for match in matches:
            current = next((i for i in match.innings if i.status == "IN_PROGRESS"), None)
            if current is None and match.innings:
                current = match.innings[-1]

            summary: Optional[Dict[str, Any]] = None
            chase = None
            if current is not None:
                summary = {
                    "innings_number": current.innings_number,
                    "batting_team": team_to_dict(current.batting_team),
                    "score": f"{current.total_runs}/{current.total_wickets}",
                    "overs": current.total_overs,
                    "run_rate": cricket_math.run_rate(current.total_runs, current.legal_balls),
                }
                chase = chase_context(match, current)

            out.append({
                "id": match.id,
                "home_team": team_to_dict(match.home_team),
                "away_team": team_to_dict(match.away_team),
                "venue": match.venue,
                "match_date": _iso(match.match_date),
                "status": match.status,
                "current_innings": summary,
                "target": chase["target"] if chase else None,
                "required_run_rate": chase["required_run_rate"] if chase else None,
            })
        return out
