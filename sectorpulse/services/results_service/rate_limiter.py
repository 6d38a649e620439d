"""Sliding-window rate limiting for receipt-code verification.

Attempts are kept in a Redis sorted set per client token (score = attempt
time), so the limit holds across every process serving the endpoint. Each
check trims expired attempts, counts the rest and records the new attempt
in a single pipeline.

A Redis failure fails open: verification stays available and the error is
logged for operators.
"""
import logging
import os
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import redis

logger = logging.getLogger(__name__)

KEY_PREFIX = "sectorpulse:verify:"


@dataclass(frozen=True)
class RateLimitConfig:
    """Configuration for the verification rate limit."""
    redis_url: str = "redis://localhost:6379/0"
    max_attempts: int = 5
    window_seconds: int = 900

    @classmethod
    def from_env(cls) -> "RateLimitConfig":
        """Create config from environment variables.

        Environment variables:
            REDIS_URL: Redis connection URL
            VERIFY_MAX_ATTEMPTS: Attempts allowed per window (default 5)
            VERIFY_WINDOW_SECONDS: Window length in seconds (default 900)
        """
        def positive(name: str, default: int) -> int:
            try:
                value = int(os.getenv(name, str(default)))
            except ValueError:
                return default
            return value if value > 0 else default

        return cls(
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            max_attempts=positive("VERIFY_MAX_ATTEMPTS", 5),
            window_seconds=positive("VERIFY_WINDOW_SECONDS", 900),
        )


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one rate-limit check."""
    allowed: bool
    remaining: int
    retry_after: int = 0


class SlidingWindowRateLimiter:
    """Limits attempts per client token over a sliding time window."""

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        config: Optional[RateLimitConfig] = None,
    ):
        """Initialize rate limiter.

        Args:
            redis_client: Redis client (injected for testing)
            config: Rate limit configuration
        """
        self.config = config or RateLimitConfig.from_env()
        self.redis = redis_client or redis.Redis.from_url(
            self.config.redis_url,
            socket_timeout=5,
            socket_connect_timeout=5,
        )

    def check(self, client_token: str) -> RateLimitDecision:
        """Record an attempt and decide whether it may proceed.

        Blocked attempts are recorded too, so hammering the endpoint keeps
        the client locked out.

        Args:
            client_token: Caller identity for limiting purposes

        Returns:
            RateLimitDecision
        """
        key = KEY_PREFIX + (client_token or "anonymous")
        now = time.time()
        window_start = now - self.config.window_seconds

        try:
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zadd(key, {f"{now}:{uuid.uuid4().hex}": now})
            pipe.expire(key, self.config.window_seconds)
            _, attempts, _, _ = pipe.execute()
        except redis.RedisError as e:
            logger.error(
                "RATE_LIMITER_UNAVAILABLE",
                extra={"error": str(e)}
            )
            return RateLimitDecision(allowed=True, remaining=self.config.max_attempts)

        attempts = int(attempts)
        if attempts >= self.config.max_attempts:
            logger.warning(
                "RATE_LIMIT_EXCEEDED",
                extra={
                    "attempts": attempts,
                    "max_attempts": self.config.max_attempts,
                    "window_seconds": self.config.window_seconds,
                }
            )
            return RateLimitDecision(
                allowed=False,
                remaining=0,
                retry_after=self.config.window_seconds,
            )

        return RateLimitDecision(
            allowed=True,
            remaining=self.config.max_attempts - attempts - 1,
        )
