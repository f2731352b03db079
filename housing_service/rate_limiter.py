# housing_service/rate_limiter.py
import time
from typing import Dict, List

import structlog
from fastapi import HTTPException, Request, status

from . import config

logger = structlog.get_logger(__name__)


class SlidingWindowLimiter:
    """
    In-memory sliding-window rate limiter keyed by client IP + path.

    Instances are FastAPI dependencies: ``dependencies=[Depends(auth_limiter)]``.
    """

    def __init__(self, name: str, max_requests: int, window_seconds: int, message: str):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.message = message
        self._request_log: Dict[str, List[float]] = {}

    def __call__(self, request: Request):
        # ❗ Skip rate limiting completely in automated tests
        if config.is_testing():
            return
        client_ip = request.client.host if request.client else "unknown"
        key = f"{client_ip}:{request.url.path}"

        now = time.time()
        window_start = now - self.window_seconds

        # keep only timestamps inside the window
        timestamps = [ts for ts in self._request_log.get(key, []) if ts >= window_start]

        if len(timestamps) >= self.max_requests:
            logger.warning("rate_limited", limiter=self.name, client=client_ip, path=request.url.path)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=self.message,
            )

        timestamps.append(now)
        self._request_log[key] = timestamps

    def reset(self) -> None:
        self._request_log.clear()


WINDOW_SECONDS = 15 * 60

# login / register / code / google
auth_limiter = SlidingWindowLimiter(
    "auth",
    max_requests=20,
    window_seconds=WINDOW_SECONDS,
    message="Too many authentication attempts, please try again after 15 minutes",
)

api_limiter = SlidingWindowLimiter(
    "api",
    max_requests=500,
    window_seconds=WINDOW_SECONDS,
    message="Too many requests, please try again later",
)

read_only_limiter = SlidingWindowLimiter(
    "read_only",
    max_requests=1000,
    window_seconds=WINDOW_SECONDS,
    message="Too many requests, please try again later",
)
