"""Per-client rate limiting for the generation endpoints, backed by Upstash Redis.

Generation requests are expensive and share a small pool of upstream slots,
so each client gets a sliding window of requests. When Upstash is not
configured (development, tests) every request is allowed.
"""

from __future__ import annotations

import logging
import time
import uuid
from functools import lru_cache
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status

from core.config import Settings, get_settings


if TYPE_CHECKING:
    from upstash_ratelimit import Ratelimit

logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX = "portfolio-gateway:ratelimit"

# Cheap polling endpoints that must never be throttled
RATE_LIMIT_BYPASS_PATHS: frozenset[str] = frozenset(
    {
        "/api/v1/health",
        "/api/v1/queue-status",
    }
)


@lru_cache
def get_ratelimiter() -> Ratelimit | None:
    """Build the shared limiter, or None when Upstash is not configured."""
    from upstash_ratelimit import Ratelimit, SlidingWindow
    from upstash_redis import Redis

    settings = get_settings()

    if not settings.UPSTASH_REDIS_REST_URL or not settings.UPSTASH_REDIS_REST_TOKEN:
        logger.warning(
            "Upstash Redis not configured; generation endpoints are not rate limited"
        )
        return None

    try:
        ratelimit = Ratelimit(
            redis=Redis(
                url=settings.UPSTASH_REDIS_REST_URL,
                token=settings.UPSTASH_REDIS_REST_TOKEN,
            ),
            limiter=SlidingWindow(
                max_requests=settings.RATE_LIMIT_REQUESTS,
                window=settings.RATE_LIMIT_WINDOW_SECONDS,
            ),
            prefix=RATE_LIMIT_PREFIX,
        )
    except Exception as e:
        logger.error("Failed to initialize rate limiter: %s", e)
        return None

    logger.info(
        "Rate limiting enabled: %d requests per %d seconds",
        settings.RATE_LIMIT_REQUESTS,
        settings.RATE_LIMIT_WINDOW_SECONDS,
    )
    return ratelimit


def client_identifier(request: Request) -> str:
    """Identify the caller: first X-Forwarded-For hop, then the socket peer."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    # Unidentifiable callers must not share one bucket
    return f"unknown:{uuid.uuid4()}"


async def check_rate_limit(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """FastAPI dependency raising 429 once a client exhausts its window.

    Usage:
        @router.post("/stock-recommendations", dependencies=[Depends(check_rate_limit)])
    """
    path = request.url.path.rstrip("/")
    if path in RATE_LIMIT_BYPASS_PATHS:
        return

    ratelimiter = get_ratelimiter()
    if ratelimiter is None:
        return

    identifier = client_identifier(request)
    try:
        response = ratelimiter.limit(identifier)
    except Exception as e:
        # A limiter outage must not take generation down with it
        logger.error("Rate limit check failed: %s", e)
        return

    if response.allowed:
        return

    reset_in_seconds = max(1, (response.reset - int(time.time() * 1000)) // 1000)
    logger.warning(
        "Rate limit exceeded for %s on %s; reset in %d seconds",
        identifier,
        path,
        reset_in_seconds,
    )
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Too many requests. Please try again later.",
        headers={
            "Retry-After": str(reset_in_seconds),
            "X-RateLimit-Limit": str(settings.RATE_LIMIT_REQUESTS),
            "X-RateLimit-Remaining": str(response.remaining),
        },
    )
