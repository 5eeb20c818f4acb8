"""
Request Rate Limiter

Minimum-interval throttle keyed by (caller, tile), used to damp repeated
polling of the same map tile by one client.
"""
import time
from typing import Callable, Dict, Optional

from config.settings import settings


class RateLimiter:
    """
    Allow at most one request per key within ``interval_ms``.

    State is process-local and pruned lazily once it grows past
    ``max_keys``.
    """

    def __init__(
        self,
        interval_ms: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        max_keys: int = 10000,
    ):
        self.interval_ms = settings.map_rate_limit_ms if interval_ms is None else interval_ms
        self.clock = clock
        self.max_keys = max_keys
        self._last_seen: Dict[str, float] = {}

    def allow(self, key: str) -> bool:
        """
        Record a request for ``key``.

        Returns:
            False when the previous allowed request was less than
            interval_ms ago, True otherwise
        """
        if self.interval_ms <= 0:
            return True

        now = self.clock()
        last = self._last_seen.get(key)
        if last is not None and (now - last) * 1000 < self.interval_ms:
            return False

        self._last_seen[key] = now
        if len(self._last_seen) > self.max_keys:
            self._prune(now)
        return True

    def _prune(self, now: float) -> None:
        horizon = self.interval_ms / 1000
        self._last_seen = {
            key: seen for key, seen in self._last_seen.items() if now - seen < horizon
        }
