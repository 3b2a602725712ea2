from __future__ import annotations

import hashlib
import logging
import time
from typing import Awaitable, Callable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings
from app.db.redis import redis_client

logger = logging.getLogger(__name__)

EXEMPT_PREFIXES = ("/health", "/metrics")

# Writes that move credits or money get a separate, smaller budget.
MONEY_PATH_MARKERS = ("/withdrawals", "/credits/", "/vouchers", "/payouts/run", "/no-show")

WINDOW_SECONDS = 60


def client_subject(request: Request) -> str:
    auth = (request.headers.get("authorization") or "").strip()
    scheme, _, token = auth.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        digest = hashlib.sha256(token.strip().encode("utf-8")).hexdigest()[:32]
        return f"tok:{digest}"

    for header in ("x-forwarded-for", "x-real-ip"):
        value = (request.headers.get(header) or "").split(",")[0].strip()
        if value:
            return f"ip:{value}"
    return f"ip:{request.client.host if request.client else 'unknown'}"


def limit_tier(request: Request) -> str:
    if request.method != "GET" and any(marker in request.url.path for marker in MONEY_PATH_MARKERS):
        return "money"
    return "default"


class RedisRateLimitMiddleware(BaseHTTPMiddleware):
    """Fixed one-minute window per caller, counted in Redis.

    Callers are bucketed by a hash of their bearer token, falling back to the
    client address. When Redis is unreachable requests pass through.
    """

    def __init__(self, app, limit_per_minute: int | None = None, money_limit_per_minute: int | None = None):
        super().__init__(app)
        self.limits = {
            "default": limit_per_minute or settings.rate_limit_per_minute,
            "money": money_limit_per_minute or settings.rate_limit_money_per_minute,
        }

    async def _hit(self, key: str) -> int:
        count = await redis_client.incr(key)
        if count == 1:
            await redis_client.expire(key, WINDOW_SECONDS + 5)
        return int(count)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable]):
        if request.url.path.startswith(EXEMPT_PREFIXES):
            return await call_next(request)

        tier = limit_tier(request)
        window = int(time.time() // WINDOW_SECONDS)
        key = f"rl:{tier}:{client_subject(request)}:{window}"

        try:
            count = await self._hit(key)
        except Exception:
            logger.debug("Rate limiter unavailable, letting %s through", request.url.path)
            return await call_next(request)

        if count > self.limits[tier]:
            logger.info("Rate limit hit tier=%s path=%s", tier, request.url.path)
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded"},
                headers={"Retry-After": str(WINDOW_SECONDS)},
            )
        return await call_next(request)
