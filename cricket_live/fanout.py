# cricket_live/fanout.py
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Dict, List, Union

from cricket_live.logging import get_logger

logger = get_logger(__name__)


# -----------------------------
# Events published per match channel
# -----------------------------
@dataclass(frozen=True)
class ScoreUpdate:
    """Latest ball plus the refreshed live view."""
    event: ClassVar[str] = "score-update"

    match_id: str
    ball: Dict[str, Any]
    live_score: Dict[str, Any]

    def payload(self) -> Dict[str, Any]:
        return {"ball": self.ball, "live_score": self.live_score}


@dataclass(frozen=True)
class WinProbabilityUpdate:
    """Second innings only: the snapshot appended for the latest ball."""
    event: ClassVar[str] = "win-probability-update"

    match_id: str
    snapshot: Dict[str, Any]

    def payload(self) -> Dict[str, Any]:
        return {"probability": self.snapshot}


MatchEvent = Union[ScoreUpdate, WinProbabilityUpdate]

Subscriber = Callable[[MatchEvent], None]


def channel_name(match_id: str) -> str:
    return f"match-{match_id}"


def to_wire(event: MatchEvent) -> Dict[str, Any]:
    return {"event": event.event, "data": event.payload()}


class MatchBroker:
    """
    In-process publish/subscribe keyed by match channel.

    Delivery is at-most-once and best effort: a subscriber that raises is
    logged and skipped, the others still receive the event.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, match_id: str, callback: Subscriber) -> Callable[[], None]:
        channel = channel_name(match_id)
        with self._lock:
            self._subscribers.setdefault(channel, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                subs = self._subscribers.get(channel, [])
                if callback in subs:
                    subs.remove(callback)
                if not subs:
                    self._subscribers.pop(channel, None)

        return unsubscribe

    def subscriber_count(self, match_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(channel_name(match_id), []))

    def publish(self, event: MatchEvent) -> int:
        channel = channel_name(event.match_id)
        with self._lock:
            subs = list(self._subscribers.get(channel, []))

        delivered = 0
        for callback in subs:
            try:
                callback(event)
                delivered += 1
            except Exception:
                logger.warning(
                    "Subscriber failed on %s",
                    event.event,
                    exc_info=True,
                    extra={"channel": channel},
                )
        return delivered
