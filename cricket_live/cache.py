# cricket_live/cache.py
from __future__ import annotations

import threading
import time
from typing import Any, Dict, Optional, Tuple


def make_key(*parts: str) -> str:
    """
    Namespaced cache keys:
      make_key("live", "match", "42") -> "live:match:42"
    """
    return ":".join([str(p).strip() for p in parts if str(p).strip()])


class MemoryCache:
    """
    In-memory TTL cache (sufficient for single-instance deploys).
    key -> (expires_at_epoch, value)

    Deleting an absent key or prefix is a no-op.
    """

    def __init__(self) -> None:
        self._data: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            item = self._data.get(key)
            if not item:
                return None

            expires_at, value = item
            if time.time() > expires_at:
                self._data.pop(key, None)
                return None

            return value

    def set(self, key: str, value: Any, ttl_seconds: int = 60) -> None:
        if ttl_seconds <= 0:
            # Do not cache if TTL is invalid
            return
        with self._lock:
            self._data[key] = (time.time() + ttl_seconds, value)

    def delete(self, key: str) -> int:
        with self._lock:
            return 1 if self._data.pop(key, None) is not None else 0

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._data if k.startswith(prefix)]
            for k in doomed:
                del self._data[k]
            return len(doomed)

    def debug_snapshot(self) -> Dict[str, float]:
        """
        Returns current cache keys with remaining TTL (seconds).
        Useful for debugging.
        """
        now = time.time()
        with self._lock:
            return {k: max(0.0, exp - now) for k, (exp, _) in self._data.items()}
