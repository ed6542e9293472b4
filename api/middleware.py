import os
import time
import logging
from collections import defaultdict, deque
from threading import Lock

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from .schemas import ErrorResponse

logger = logging.getLogger(__name__)

# sliding window per client IP, in-process only
RATE_LIMIT_REQUESTS = int(os.getenv("RATE_LIMIT_REQUESTS", "30"))
RATE_LIMIT_WINDOW = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))

# site crawls fan out to many fetches, so each one costs more of the budget
ROUTE_COST = {"/crawl/site": 5}
EXEMPT_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


def client_ip(request: Request) -> str:
    # honour X-Forwarded-For if behind a proxy / load balancer
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, requests_per_window: int = RATE_LIMIT_REQUESTS, window_seconds: int = RATE_LIMIT_WINDOW):
        super().__init__(app)
        self.requests_per_window = requests_per_window
        self.window_seconds = window_seconds
        self._buckets: dict[str, deque] = defaultdict(deque)
        self._lock = Lock()

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in EXEMPT_PATHS:
            return await call_next(request)

        ip = client_ip(request)
        cost = ROUTE_COST.get(path, 1)
        now = time.monotonic()

        with self._lock:
            bucket = self._buckets[ip]
            while bucket and bucket[0] <= now - self.window_seconds:
                bucket.popleft()

            if len(bucket) + cost > self.requests_per_window:
                retry_after = int(self.window_seconds - (now - bucket[0])) + 1 if bucket else self.window_seconds
                logger.warning("Rate limit hit for IP %s on %s", ip, path)
                return JSONResponse(
                    status_code=429,
                    content=ErrorResponse(detail="Too many requests. Please slow down.", code="rate_limit_exceeded").model_dump(),
                    headers={"Retry-After": str(retry_after)},
                )

            bucket.extend([now] * cost)

        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            "%s %s from %s -> %d (%dms)",
            request.method,
            request.url.path,
            client_ip(request),
            response.status_code,
            duration_ms,
        )
        return response
