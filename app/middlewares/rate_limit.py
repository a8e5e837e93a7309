# app/middlewares/rate_limit.py
import time
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from redis.asyncio import Redis

from app.platform.config import settings
from app.platform.response import api_response


def _limit_for_path(path: str) -> Optional[int]:
    for suffix, limit in settings.RATE_LIMITS.items():
        if path.endswith(suffix):
            return limit
    return None


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app):
        super().__init__(app)
        self.redis = None
        self.memory_store = {}

    async def dispatch(self, request: Request, call_next):
        client_ip = request.client.host if request.client else "testclient"

        # Skip limit if whitelisted
        if client_ip in settings.WHITELIST_IPS:
            return await call_next(request)

        # Only POSTs are limited (signups), reads stay open
        if request.method != "POST":
            return await call_next(request)

        path = request.url.path
        limit = _limit_for_path(path)

        # If endpoint is not rate-limited, continue
        if limit is None:
            return await call_next(request)

        window = settings.RATE_LIMIT_WINDOW_SECONDS

        # ---------------------------
        # TEST MODE: In-memory store
        # ---------------------------
        if settings.FORCE_IN_MEMORY_RATE_LIMITER or not settings.REDIS_URL:
            key = f"{client_ip}:{path}"
            count, expiry = self.memory_store.get(key, (0, time.time() + window))

            if time.time() > expiry:
                count = 0
                expiry = time.time() + window

            if count >= limit:
                retry_after = int(expiry - time.time())
                return self._too_many(retry_after)

            self.memory_store[key] = (count + 1, expiry)
            return await call_next(request)

        # ---------------------------
        # PRODUCTION: Redis store
        # ---------------------------
        if self.redis is None:
            self.redis = Redis.from_url(settings.REDIS_URL, decode_responses=True)

        key = f"rl:{client_ip}:{path}"
        current_count = await self.redis.get(key)

        if current_count is None:
            await self.redis.set(key, 1, ex=window)
        else:
            current_count = int(current_count)
            if current_count >= limit:
                ttl = await self.redis.ttl(key)
                return self._too_many(ttl)
            await self.redis.incr(key)

        return await call_next(request)

    @staticmethod
    def _too_many(retry_after: int) -> JSONResponse:
        return api_response(
            message="Too Many Requests - Rate limit exceeded.",
            status_code=429,
            error="rate_limited",
            headers={"Retry-After": str(max(retry_after, 0))},
        )
