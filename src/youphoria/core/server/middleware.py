"""HTTP middleware for the JSON API: CORS and a per-client rate limit."""

from __future__ import annotations

import logging
import threading
import time

from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from youphoria.core.config.settings import Settings

logger = logging.getLogger(__name__)

RATE_LIMITED_PREFIX = "/api/"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed-window request limit per client IP, held in memory.

    Only ``/api/`` paths are counted; ``/health`` and the MCP endpoint are not.
    """

    def __init__(self, app, max_requests: int = 100, window_ms: int = 900_000) -> None:
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_ms / 1000
        self._windows: dict[str, tuple[float, int]] = {}
        self._next_sweep = 0.0
        self._lock = threading.Lock()

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(RATE_LIMITED_PREFIX):
            return await call_next(request)

        client = request.client.host if request.client else "unknown"
        allowed, remaining, reset_at = self._check(client)
        if not allowed:
            logger.warning("Rate limit exceeded for %s on %s", client, request.url.path)
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": {
                        "code": "rate_limited",
                        "message": "Too many requests. Please try again later.",
                    },
                },
                headers={
                    "X-RateLimit-Limit": str(self.max_requests),
                    "X-RateLimit-Remaining": "0",
                    "Retry-After": str(max(int(reset_at - time.time()), 1)),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response

    def _check(self, client: str) -> tuple[bool, int, float]:
        now = time.time()
        with self._lock:
            if now >= self._next_sweep:
                self._evict_expired(now)
            started, count = self._windows.get(client, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            if count >= self.max_requests:
                return False, 0, started + self.window_seconds
            count += 1
            self._windows[client] = (started, count)
            return True, self.max_requests - count, started + self.window_seconds

    def _evict_expired(self, now: float) -> None:
        """Drop clients whose window has ended; caller holds the lock."""
        expired = [c for c, (started, _) in self._windows.items() if now - started >= self.window_seconds]
        for client in expired:
            del self._windows[client]
        self._next_sweep = now + self.window_seconds


def build_middleware(settings: Settings) -> list[Middleware]:
    """Middleware stack for ``FastMCP.http_app`` / ``run``."""
    return [
        Middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origin_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization", "X-User-Id", "X-Request-Id", "mcp-session-id"],
            expose_headers=["mcp-session-id"],
        ),
        Middleware(
            RateLimitMiddleware,
            max_requests=settings.rate_limit_max_requests,
            window_ms=settings.rate_limit_window_ms,
        ),
    ]
