"""Rate limiting middleware for public token routes."""

import logging
import time

import redis
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from pactlink_api.settings import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()
redis_client = redis.from_url(settings.redis_url, decode_responses=True)

RATE_LIMITED_PREFIX = "/tokens/"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Token bucket rate limiting per client address on public link routes.

    Link secrets are unguessable, but OTP submission and code resend are
    worth throttling per caller on top of the per-challenge attempt limit.
    """

    async def dispatch(self, request: Request, call_next):
        """Apply rate limiting."""
        if not settings.rate_limit_enabled or not request.url.path.startswith(RATE_LIMITED_PREFIX):
            return await call_next(request)

        client_id = request.client.host if request.client else "unknown"
        key = f"rate_limit:tokens:{client_id}"
        now = time.time()
        limit = settings.rate_limit_requests_per_minute

        try:
            pipe = redis_client.pipeline()
            pipe.get(key)
            pipe.get(f"{key}:last_refill")
            results = pipe.execute()
        except redis.RedisError as e:
            # Fail open: the attempt limit on each challenge still holds
            logger.warning(f"Rate limiter unavailable: {e.__class__.__name__}")
            return await call_next(request)

        tokens = float(results[0]) if results[0] else limit
        last_refill = float(results[1]) if results[1] else now

        # Refill tokens based on time passed
        time_passed = now - last_refill
        tokens = min(limit, tokens + (time_passed / 60.0) * limit)

        if tokens < 1:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": "rate_limited", "detail": "Rate limit exceeded. Please try again later."},
                headers={"Retry-After": "60"},
            )

        tokens -= 1

        # Update state with TTL to prevent key accumulation
        ttl = settings.rate_limit_ttl_seconds
        try:
            pipe = redis_client.pipeline()
            pipe.set(key, tokens, ex=ttl)
            pipe.set(f"{key}:last_refill", now, ex=ttl)
            pipe.execute()
        except redis.RedisError as e:
            logger.warning(f"Rate limiter state not saved: {e.__class__.__name__}")

        response = await call_next(request)

        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(int(tokens))
        response.headers["X-RateLimit-Reset"] = str(int(now + 60))

        return response
