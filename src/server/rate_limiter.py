"""In-memory sliding window rate limiter for the send API."""

from __future__ import annotations

import time
from collections import deque


class SendRateLimiter:
    """Sliding window limit per client key (usually the source IP).

    Default: 60 sends per 60 seconds. Keys whose window has emptied are
    dropped so the table only holds recently active clients.
    """

    def __init__(self, max_requests: int = 60, window_seconds: int = 60) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._windows: dict[str, deque[float]] = {}
        self._last_sweep = 0.0

    def check(self, key: str) -> bool:
        """Record a request for ``key``; return False if it exceeds the limit."""
        now = time.time()
        cutoff = now - self._window_seconds
        if now - self._last_sweep >= self._window_seconds:
            self._evict_idle(cutoff)
            self._last_sweep = now

        window = self._windows.get(key)
        if window is not None:
            while window and window[0] <= cutoff:
                window.popleft()
            if not window:
                self._windows.pop(key, None)
                window = None

        if window is not None and len(window) >= self._max_requests:
            return False
        self._windows.setdefault(key, deque()).append(now)
        return True

    def _evict_idle(self, cutoff: float) -> None:
        idle = [key for key, window in self._windows.items() if not window or window[-1] <= cutoff]
        for key in idle:
            del self._windows[key]
