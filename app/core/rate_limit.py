"""Rate limiting for link generation and share tracking.

In-memory sliding window per caller. Each instance enforces its own window,
so the effective limit scales with instance count; a shared store would be
needed for a strict global limit.
"""

import time
from collections import defaultdict
from dataclasses import dataclass
from typing import TypeAlias

from fastapi import HTTPException, status

from app.config import settings


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""

    requests: int  # Maximum requests allowed
    window_seconds: int  # Time window in seconds


LINK_LIMIT = RateLimitConfig(requests=settings.link_rate_limit_per_minute, window_seconds=60)
SHARE_LIMIT = RateLimitConfig(requests=settings.share_rate_limit_per_minute, window_seconds=60)


CallerKey: TypeAlias = str
Timestamp: TypeAlias = float


class RateLimiter:
    """In-memory rate limiter with sliding window.

    Tracks request timestamps per caller and enforces configurable limits.
    Automatically cleans up expired entries to prevent memory bloat.
    """

    def __init__(self) -> None:
        # Map of caller -> endpoint_key -> list of timestamps
        self._requests: dict[CallerKey, dict[str, list[Timestamp]]] = defaultdict(
            lambda: defaultdict(list)
        )
        self._last_cleanup = time.time()
        self._cleanup_interval = 300  # Clean up every 5 minutes

    def _cleanup_expired(self, window_seconds: int) -> None:
        """Remove expired entries to prevent memory growth."""
        now = time.time()

        if now - self._last_cleanup < self._cleanup_interval:
            return

        cutoff = now - window_seconds
        for caller in list(self._requests):
            endpoints = self._requests[caller]
            for endpoint in list(endpoints):
                endpoints[endpoint] = [ts for ts in endpoints[endpoint] if ts > cutoff]
                if not endpoints[endpoint]:
                    del endpoints[endpoint]
            if not endpoints:
                del self._requests[caller]

        self._last_cleanup = now

    def check_rate_limit(
        self,
        caller: CallerKey,
        endpoint_key: str,
        config: RateLimitConfig,
    ) -> None:
        """Check if request is within rate limits.

        Args:
            caller: User id of the principal (or client address when anonymous)
            endpoint_key: Unique identifier for the endpoint (e.g., "link", "share")
            config: Rate limit configuration to apply

        Raises:
            HTTPException: 429 Too Many Requests if limit exceeded
        """
        now = time.time()
        cutoff = now - config.window_seconds

        self._cleanup_expired(config.window_seconds)

        timestamps = self._requests[caller][endpoint_key]
        recent_requests = [ts for ts in timestamps if ts > cutoff]

        if len(recent_requests) >= config.requests:
            retry_after = int(min(recent_requests) + config.window_seconds - now) + 1
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
                headers={"Retry-After": str(retry_after)},
            )

        recent_requests.append(now)
        self._requests[caller][endpoint_key] = recent_requests

    def reset(self) -> None:
        """Forget all recorded requests."""
        self._requests.clear()


# Singleton instance for application-wide use
rate_limiter = RateLimiter()
