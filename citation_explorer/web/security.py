# citation_explorer/web/security.py

from __future__ import annotations

import time
from typing import Callable, Dict, Optional, Tuple

from fastapi import Header, HTTPException, Request, status

from citation_explorer.config.settings import settings


# -------------------------------
# API key auth
# -------------------------------

def api_key_auth(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> None:
    """
    Header-based API key auth for the relationship and layout endpoints.
    If settings.API_KEY is None, auth is disabled.
    """
    expected = settings.API_KEY.get_secret_value() if settings.API_KEY else None
    if expected is None:
        return

    if x_api_key is None or x_api_key != expected:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key.",
        )


# -------------------------------
# In-memory rate limiter
# -------------------------------

class RateLimiter:
    """
    Fixed-window request counter per client host.

    Single process only; state lives in this object.
    """

    def __init__(
        self,
        max_requests: int = 120,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        # host -> (window_start, count)
        self._state: Dict[str, Tuple[float, int]] = {}

    def reset(self) -> None:
        self._state.clear()

    def hit(self, key: str) -> bool:
        """Count one request for `key`; False once the window's quota is used up."""
        now = self._clock()
        window_start, count = self._state.get(key, (now, 0))
        if now - window_start >= self.window_seconds:
            window_start, count = now, 0

        count += 1
        self._state[key] = (window_start, count)
        return count <= self.max_requests

    def __call__(self, request: Request) -> None:
        client_host = request.client.host if request.client else "unknown"
        if not self.hit(client_host):
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded. Try again later.",
            )


rate_limiter = RateLimiter()
