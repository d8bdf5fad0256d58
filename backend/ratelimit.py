"""Per-client rate limit on POST /generate.

A moving window of `limit` generations per `window` seconds, keyed by client
IP, kept in the limiter's own in-memory storage. One RateLimiter is built by
create_app() and lives on app.state; a limit of 0 disables it.
"""

import logging

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, limit: int, window: float) -> None:
        self.enabled = limit > 0
        self._item = RateLimitItemPerSecond(max(limit, 1), max(1, int(window)))
        self._storage = MemoryStorage()
        self._strategy = MovingWindowRateLimiter(self._storage)

    def __repr__(self) -> str:
        state = self._item if self.enabled else "disabled"
        return f"<RateLimiter {state}>"

    def hit(self, key: str) -> bool:
        """Record one request for `key`. Returns False if it is over the limit."""
        if not self.enabled:
            return True
        allowed = self._strategy.hit(self._item, key)
        if not allowed:
            logger.warning("Rate limit exceeded for %s (%s)", key, self._item)
        return allowed

    def remaining(self, key: str) -> int:
        if not self.enabled:
            return -1
        return self._strategy.get_window_stats(self._item, key).remaining

    def reset(self) -> None:
        self._storage.reset()
