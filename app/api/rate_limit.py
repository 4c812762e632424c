# ============================================================================
# Fixed-Window Request Rate Limiter - API Ingress Protection
# ============================================================================
#
# Reliability Level: L6 Critical
# Purpose: Caps requests per client host on the /api routes
#
# POLICY:
#   - Each client host gets max_requests per window
#   - The window starts at the client's first request and resets once
#     window_seconds have elapsed
#   - Exceeding the cap yields HTTP 429 until the window resets
#
# Error Codes:
#   - RATE-001: Rate limit exceeded
#
# ============================================================================

import time
import threading
import logging
from typing import Callable, Dict, Tuple

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)


RATE_LIMIT_EXCEEDED = "RATE-001"


class FixedWindowRateLimiter:
    """
    Thread-safe fixed-window request counter keyed by client.

    Example Usage:
        limiter = FixedWindowRateLimiter(max_requests=100, window_seconds=60)

        if not limiter.allow("203.0.113.9"):
            raise HTTPException(status_code=429)
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            max_requests: Requests allowed per window (default: 100)
            window_seconds: Window length (default: 60s)
            clock: Monotonic time source (tests inject a fake)
        """
        if max_requests <= 0:
            raise ValueError(f"max_requests must be positive, got: {max_requests}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got: {window_seconds}")

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock

        # client -> (window_start, count)
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

        logger.info(
            f"[RATE-LIMIT] Initialized | "
            f"max_requests={max_requests} | window={window_seconds}s"
        )

    def allow(self, client: str) -> bool:
        """
        Count one request for the client.

        Returns:
            True if the request is within the limit
        """
        now = self._clock()

        with self._lock:
            start, count = self._windows.get(client, (now, 0))
            if now - start >= self.window_seconds:
                start, count = now, 0

            if count >= self.max_requests:
                return False

            self._windows[client] = (start, count + 1)
            self._evict_expired(now)
            return True

    def _evict_expired(self, now: float) -> None:
        expired = [
            client for client, (start, _) in self._windows.items()
            if now - start >= self.window_seconds
        ]
        for client in expired:
            del self._windows[client]


async def enforce_rate_limit(request: Request) -> None:
    """
    Router dependency applying the app's limiter to the calling host.

    Raises:
        HTTPException: 429 when the client exceeded its window
    """
    limiter: FixedWindowRateLimiter = request.app.state.rate_limiter
    client = request.client.host if request.client else "unknown"

    if not limiter.allow(client):
        logger.warning(f"[{RATE_LIMIT_EXCEEDED}] Rate limit exceeded | client={client}")
        raise HTTPException(
            status_code=429,
            detail="Too many requests from this IP, please try again later."
        )
