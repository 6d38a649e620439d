"""Results Service: the respondent verification boundary.

A receipt code unlocks the guarded sector-wide results of the survey it
was issued for. Attempts are rate limited per client token.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- POST /results/verify - Verify a receipt code
"""

from .rate_limiter import (
    RateLimitConfig,
    RateLimitDecision,
    SlidingWindowRateLimiter,
)
from .handler import VerificationHandler, app

__all__ = [
    "RateLimitConfig",
    "RateLimitDecision",
    "SlidingWindowRateLimiter",
    "VerificationHandler",
    "app",
]
