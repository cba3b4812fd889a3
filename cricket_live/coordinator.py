# cricket_live/coordinator.py
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from cricket_live.cache import MemoryCache, make_key
from cricket_live.errors import DependencyUnavailable
from cricket_live.fanout import MatchBroker, ScoreUpdate, WinProbabilityUpdate
from cricket_live.logging import get_logger

logger = get_logger(__name__)

LIVE_MATCHES_KEY = "live:matches"


def live_match_key(match_id: str) -> str:
    return make_key("live", "match", match_id)


class CacheFanoutCoordinator:
    """
    Invalidates cached read-models after a state change and publishes match
    events to subscribers.

    Cache and broker failures never reach the write path: they are logged as
    DependencyUnavailable and swallowed, the persisted aggregates stay the
    source of truth.
    """

    def __init__(self, cache: MemoryCache, broker: MatchBroker) -> None:
        self.cache = cache
        self.broker = broker

    # -----------------------
    # Invalidation
    # -----------------------
    def invalidate_match(self, match_id: str) -> int:
        """
        Drops every read-model derived from this match. Idempotent.
        Returns how many entries were removed.
        """
        removed = 0
        try:
            removed += self.cache.delete(live_match_key(match_id))
            removed += self.cache.delete_prefix(f"match:{match_id}:")
            removed += self.cache.delete_prefix(f"analytics:match:{match_id}")
            removed += self.cache.delete(make_key("pdf", "scorecard", match_id))
            removed += self.cache.delete(LIVE_MATCHES_KEY)
        except Exception as e:
            self._dependency_failed("cache invalidation", match_id, e)
            return removed

        logger.debug("Invalidated caches", extra={"match_id": match_id, "removed": removed})
        return removed

    # -----------------------
    # Whole-response caching
    # -----------------------
    def cached(self, key: str, ttl_seconds: int, build: Callable[[], Any]) -> Any:
        """
        Cache-first read. A cache failure falls back to building fresh;
        errors raised by `build` propagate.
        """
        try:
            hit = self.cache.get(key)
        except Exception as e:
            self._dependency_failed("cache get", key, e)
            hit = None

        if hit is not None:
            return hit

        value = build()

        try:
            self.cache.set(key, value, ttl_seconds=ttl_seconds)
        except Exception as e:
            self._dependency_failed("cache set", key, e)

        return value

    # -----------------------
    # Fan-out
    # -----------------------
    def publish_ball(
        self,
        match_id: str,
        ball: Dict[str, Any],
        live_score: Dict[str, Any],
        snapshot: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Score update always; win probability update only when a
        second-innings snapshot is supplied.
        """
        try:
            self.broker.publish(ScoreUpdate(match_id=match_id, ball=ball, live_score=live_score))
            if snapshot is not None:
                self.broker.publish(WinProbabilityUpdate(match_id=match_id, snapshot=snapshot))
        except Exception as e:
            self._dependency_failed("publish", match_id, e)

    def _dependency_failed(self, action: str, target: str, exc: Exception) -> None:
        err = DependencyUnavailable(f"{action} failed for {target}: {exc}")
        logger.warning(str(err), exc_info=exc, extra={"target": target})
