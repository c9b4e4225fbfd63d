import logging
import time
from collections import deque
from threading import Lock
from typing import Deque, Dict

from fastapi import HTTPException, Request

from config import settings

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    """In-process per-client limiter: at most ``limit`` hits per ``window_s`` seconds.

    Clients whose window has emptied are forgotten, at most once per window.
    """

    def __init__(self, *, limit: int, window_s: float, message: str) -> None:
        self.limit = limit
        self.window_s = window_s
        self.message = message
        self._lock = Lock()
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = time.monotonic()

    def _expire(self, hits: Deque[float], now: float) -> None:
        while hits and now - hits[0] >= self.window_s:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        for key in list(self._hits):
            self._expire(self._hits[key], now)
            if not self._hits[key]:
                del self._hits[key]
        self._last_sweep = now

    def hit(self, key: str) -> bool:
        now = time.monotonic()
        with self._lock:
            if now - self._last_sweep >= self.window_s:
                self._sweep(now)
            hits = self._hits.setdefault(key, deque())
            self._expire(hits, now)
            if len(hits) >= self.limit:
                return False
            hits.append(now)
            return True

    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._last_sweep = time.monotonic()

    async def __call__(self, request: Request) -> None:
        client = request.client.host if request.client else "unknown"
        if not self.hit(client):
            logger.warning("Rate limit exceeded for %s on %s", client, request.url.path)
            raise HTTPException(status_code=429, detail=self.message)


verify_email_limiter = SlidingWindowLimiter(
    limit=settings.verify_rate_limit,
    window_s=settings.verify_rate_window_seconds,
    message="Too many attempts from this IP, please try again after 15 minutes",
)
