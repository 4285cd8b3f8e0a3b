from __future__ import annotations

import time
from typing import Callable, Dict, Tuple

from core.errors import RateLimited


class FixedWindowRateLimiter:
    """
    At most `limit` hits per key inside each window of `window_seconds`.
    Windows are aligned to the first hit for the key, not to wall-clock minutes.
    """

    def __init__(self, limit: int, window_seconds: float, clock: Callable[[], float] = time.time):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = int(limit)
        self.window = float(window_seconds)
        self.clock = clock
        # key -> (window start, hits in window)
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._swept = clock()

    def __len__(self) -> int:
        return len(self._windows)

    def hit(self, key: str) -> bool:
        """Record one request; False when the key is over its limit."""
        now = self.clock()
        if now - self._swept >= self.window:
            self._sweep(now)
        start, count = self._windows.get(key, (now, 0))
        if now - start >= self.window:
            start, count = now, 0
        if count >= self.limit:
            self._windows[key] = (start, count)
            return False
        self._windows[key] = (start, count + 1)
        return True

    def _sweep(self, now: float) -> None:
        # drop windows that have fully elapsed
        for key in [k for k, (start, _) in self._windows.items() if now - start >= self.window]:
            del self._windows[key]
        self._swept = now

    def check(self, key: str) -> None:
        if not self.hit(key):
            raise RateLimited(key, retry_after=self.retry_after(key))

    def retry_after(self, key: str) -> float:
        start, count = self._windows.get(key, (0.0, 0))
        if count < self.limit:
            return 0.0
        return max(0.0, self.window - (self.clock() - start))
