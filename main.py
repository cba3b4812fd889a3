# main.py
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from fastapi import Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from cricket_live.ball_processor import BallData
from cricket_live.config import LOG_JSON, LOG_LEVEL, validate_config
from cricket_live.database import SessionLocal, init_db
from cricket_live.errors import ConcurrencyConflict, NotFound, ScoringError
from cricket_live.fanout import MatchEvent, to_wire
from cricket_live.logging import configure_logging, get_logger
from cricket_live.service import ScoringService

logger = get_logger(__name__)

# -----------------------
# App
# -----------------------
app = FastAPI(
    title="Cricket Live Scoring API",
    version="0.1.0",
    description="Ball-by-ball scoring engine with live scorecards, win probability and real-time match updates",
)

_service = ScoringService(SessionLocal)


def get_service() -> ScoringService:
    return _service


@app.on_event("startup")
def on_startup():
    configure_logging(LOG_LEVEL, json_output=LOG_JSON)
    validate_config()
    init_db()


@app.exception_handler(ScoringError)
async def scoring_error_handler(request: Request, exc: ScoringError):
    if exc.status_code >= 500:
        logger.error("Request failed: %s", exc, extra={"path": request.url.path})
    else:
        logger.info("Request rejected: %s", exc, extra={"path": request.url.path, "error": exc.kind})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.kind, "detail": str(exc)})


@app.get("/health")
def health_check():
    return {"status": "ok", "time": datetime.utcnow().isoformat() + "Z"}


# -----------------------
# Administration
# -----------------------
class TeamIn(BaseModel):
    name: str = Field(..., min_length=1)
    short_name: Optional[str] = Field(None, max_length=10)


class PlayerIn(BaseModel):
    name: str = Field(..., min_length=1)
    team_id: Optional[str] = None
    role: Optional[str] = Field(None, description="batter / bowler / all-rounder / keeper")


class MatchIn(BaseModel):
    home_team_id: str
    away_team_id: str
    venue: str = Field(..., min_length=1)
    match_date: datetime
    overs_limit: Optional[int] = Field(None, ge=1, le=50)
    format: Optional[Literal["T20", "ODI"]] = None
    tournament_id: Optional[str] = None


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@app.post("/api/teams", status_code=201)
def create_team(req: TeamIn, service: ScoringService = Depends(get_service)):
    return service.create_team(req.name, req.short_name)


@app.post("/api/players", status_code=201)
def create_player(req: PlayerIn, service: ScoringService = Depends(get_service)):
    return service.create_player(req.name, req.team_id, req.role)


@app.post("/api/matches", status_code=201)
def create_match(req: MatchIn, service: ScoringService = Depends(get_service)):
    return service.create_match(
        req.home_team_id,
        req.away_team_id,
        req.venue,
        _naive_utc(req.match_date),
        overs_limit=req.overs_limit,
        match_format=req.format,
        tournament_id=req.tournament_id,
    )


# -----------------------
# Live reads
# -----------------------
@app.get("/api/matches/live/all")
def get_all_live_matches(service: ScoringService = Depends(get_service)):
    matches = service.get_all_live_matches()
    return {"count": len(matches), "matches": matches}


@app.get("/api/matches/{match_id}")
def get_match(match_id: str, service: ScoringService = Depends(get_service)):
    return service.get_match(match_id)


@app.get("/api/matches/{match_id}/live")
def get_live_score(match_id: str, service: ScoringService = Depends(get_service)):
    return service.get_live_score(match_id)


@app.get("/api/matches/{match_id}/win-probability/history")
def get_win_probability_history(match_id: str, service: ScoringService = Depends(get_service)):
    history = service.get_win_probability_history(match_id)
    return {"match_id": match_id, "count": len(history), "history": history}


@app.get("/api/matches/{match_id}/win-probability/latest")
def get_latest_win_probability(match_id: str, service: ScoringService = Depends(get_service)):
    return service.get_latest_win_probability(match_id)


# -----------------------
# Match lifecycle
# -----------------------
class TossIn(BaseModel):
    winner_team_id: str
    decision: Literal["bat", "bowl"]


class StartInningsIn(BaseModel):
    innings_number: int = Field(..., ge=1, le=2)


class CompleteInningsIn(BaseModel):
    innings_id: Optional[str] = Field(None, description="Defaults to the innings in progress")


class CompleteMatchIn(BaseModel):
    forfeiting_team_id: Optional[str] = None


@app.post("/api/matches/{match_id}/toss")
def record_toss(match_id: str, req: TossIn, service: ScoringService = Depends(get_service)):
    return service.record_toss(match_id, req.winner_team_id, req.decision)


@app.post("/api/matches/{match_id}/innings")
def start_innings(match_id: str, req: StartInningsIn, service: ScoringService = Depends(get_service)):
    return service.start_innings(match_id, req.innings_number)


@app.post("/api/matches/{match_id}/complete-innings")
def complete_innings(
    match_id: str,
    req: Optional[CompleteInningsIn] = None,
    service: ScoringService = Depends(get_service),
):
    return service.complete_innings(match_id, req.innings_id if req else None)


@app.post("/api/matches/{match_id}/complete")
def complete_match(
    match_id: str,
    req: Optional[CompleteMatchIn] = None,
    service: ScoringService = Depends(get_service),
):
    return service.complete_match(match_id, req.forfeiting_team_id if req else None)


@app.post("/api/matches/{match_id}/cancel")
def cancel_match(match_id: str, service: ScoringService = Depends(get_service)):
    return service.cancel_match(match_id)


# -----------------------
# Ball ingestion
# -----------------------
class BallIn(BaseModel):
    innings_id: Optional[str] = Field(None, description="Defaults to the innings in progress")
    bowler_id: str
    batsman_id: str
    runs: int = Field(0, ge=0)
    is_wicket: bool = False
    wicket_type: Optional[str] = None
    dismissed_player_id: Optional[str] = None
    wicket_taker_id: Optional[str] = None
    is_extra: bool = False
    extra_type: Optional[str] = None
    extra_runs: int = Field(0, ge=0)
    commentary: Optional[str] = None
    striker_id: Optional[str] = None
    non_striker_id: Optional[str] = None
    location: Dict[str, Any] = Field(default_factory=dict, description="Shot / pitch telemetry")


def _record_ball_with_retry(service: ScoringService, match_id: str, req: BallIn) -> Dict[str, Any]:
    data = BallData(
        runs=req.runs,
        is_wicket=req.is_wicket,
        wicket_type=req.wicket_type,
        dismissed_player_id=req.dismissed_player_id,
        wicket_taker_id=req.wicket_taker_id,
        is_extra=req.is_extra,
        extra_type=req.extra_type,
        extra_runs=req.extra_runs,
        commentary=req.commentary,
        striker_id=req.striker_id,
        non_striker_id=req.non_striker_id,
        location=dict(req.location),
    )

    # One automatic retry; nothing was stored by the failed attempt
    try:
        return service.record_ball(match_id, req.bowler_id, req.batsman_id, data, innings_id=req.innings_id)
    except ConcurrencyConflict:
        logger.warning("Ball write conflicted, retrying once", extra={"match_id": match_id})
        return service.record_ball(match_id, req.bowler_id, req.batsman_id, data, innings_id=req.innings_id)


@app.post("/api/matches/{match_id}/ball", status_code=201)
def record_ball(match_id: str, req: BallIn, service: ScoringService = Depends(get_service)):
    return _record_ball_with_retry(service, match_id, req)


# -----------------------
# Real-time match channel
# -----------------------
# Pending outbound messages per socket; the oldest is dropped when a client lags
RELAY_QUEUE_SIZE = 100


def _error_frame(kind: str, detail: str) -> Dict[str, Any]:
    return {"event": "error", "data": {"error": kind, "detail": detail}}


async def _handle_client_frame(service: ScoringService, match_id: str, text: str) -> Dict[str, Any]:
    """
    Client frames:
      {"event": "record-ball", "data": {...BallIn fields...}} -> ball-recorded
      {"event": "get-live-score"}                            -> live-score
    Anything else, or a rejected operation, gets an error frame back.
    """
    try:
        frame = json.loads(text)
    except ValueError:
        return _error_frame("ValidationError", "Frames must be JSON objects")
    if not isinstance(frame, dict):
        return _error_frame("ValidationError", "Frames must be JSON objects")

    event = frame.get("event")
    try:
        if event == "get-live-score":
            live = await run_in_threadpool(service.get_live_score, match_id)
            return {"event": "live-score", "data": live}

        if event == "record-ball":
            req = BallIn.model_validate(frame.get("data") or {})
            result = await run_in_threadpool(_record_ball_with_retry, service, match_id, req)
            return {"event": "ball-recorded", "data": {"match_id": match_id, "ball": result["ball"]}}
    except PydanticValidationError as e:
        return _error_frame("ValidationError", str(e))
    except ScoringError as e:
        logger.info("Socket request rejected: %s", e, extra={"match_id": match_id, "error": e.kind})
        return _error_frame(e.kind, str(e))

    return _error_frame("ValidationError", f"Unknown event: {event}")


@app.websocket("/ws/matches/{match_id}")
async def match_updates(websocket: WebSocket, match_id: str, service: ScoringService = Depends(get_service)):
    """
    Sends the current live view on connect, then relays every score-update /
    win-probability-update published for the match. Scorers may record balls
    and ask for the live view over the same socket.
    """
    await websocket.accept()

    try:
        current = await run_in_threadpool(service.get_live_score, match_id)
    except NotFound as e:
        await websocket.send_json(_error_frame(e.kind, str(e)))
        await websocket.close(code=4404)
        return

    await websocket.send_json({"event": "live-score", "data": current})

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue(maxsize=RELAY_QUEUE_SIZE)

    def enqueue(message: Dict[str, Any]) -> None:
        if queue.full():
            queue.get_nowait()
            logger.warning("Match channel lagging, dropped oldest message", extra={"match_id": match_id})
        queue.put_nowait(message)

    def on_event(event: MatchEvent) -> None:
        loop.call_soon_threadsafe(enqueue, to_wire(event))

    unsubscribe = service.broker.subscribe(match_id, on_event)

    # Only the relay sends after the greeting, so broadcasts and replies never interleave
    async def relay() -> None:
        while True:
            message = await queue.get()
            await websocket.send_json(message)

    relay_task = asyncio.create_task(relay())
    try:
        while True:
            text = await websocket.receive_text()
            enqueue(await _handle_client_frame(service, match_id, text))
    except WebSocketDisconnect:
        logger.debug("Match channel closed", extra={"match_id": match_id})
    finally:
        unsubscribe()
        relay_task.cancel()
        try:
            await relay_task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.debug("Relay stopped on a failed send", exc_info=True, extra={"match_id": match_id})
