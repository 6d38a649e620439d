"""Analytics Service configuration.

The k-anonymity threshold is deliberately not frozen into the config
object: it is read from the environment on every check so a changed setting
applies to the next read, never retroactively to stored cache rows.
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_K_ANONYMITY_THRESHOLD = 5
DEFAULT_DASHBOARD_CACHE_LIMIT = 500
DEFAULT_EXPORT_CACHE_LIMIT = 200
DEFAULT_SUMMARY_MAX_TOKENS = 4096


def parse_positive_int(raw: Optional[str], default: int) -> int:
    """Parse a positive integer setting, falling back to ``default``.

    Never raises: non-numeric, zero and negative values all yield the default.
    """
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def get_k_threshold() -> int:
    """Current k-anonymity threshold from ``K_ANONYMITY_THRESHOLD``."""
    return parse_positive_int(
        os.getenv("K_ANONYMITY_THRESHOLD"), DEFAULT_K_ANONYMITY_THRESHOLD
    )


@dataclass(frozen=True)
class AnalyticsConfig:
    """Configuration for dashboard and export readers.

    Attributes:
        dashboard_cache_limit: Max cached slices returned on the dashboard
        export_cache_limit: Max cached slices included in an export
        summary_max_tokens: Token limit of a generated executive summary
        k_threshold: Fixed threshold; None reads the environment per check
    """
    dashboard_cache_limit: int = DEFAULT_DASHBOARD_CACHE_LIMIT
    export_cache_limit: int = DEFAULT_EXPORT_CACHE_LIMIT
    summary_max_tokens: int = DEFAULT_SUMMARY_MAX_TOKENS
    k_threshold: Optional[int] = None

    @classmethod
    def from_env(cls) -> "AnalyticsConfig":
        """Create config from environment variables.

        Environment variables:
            DASHBOARD_CACHE_LIMIT: Cached slices on the dashboard (default 500)
            EXPORT_CACHE_LIMIT: Cached slices in an export (default 200)
            SUMMARY_MAX_TOKENS: Executive summary token limit (default 4096)
        """
        return cls(
            dashboard_cache_limit=parse_positive_int(
                os.getenv("DASHBOARD_CACHE_LIMIT"), DEFAULT_DASHBOARD_CACHE_LIMIT
            ),
            export_cache_limit=parse_positive_int(
                os.getenv("EXPORT_CACHE_LIMIT"), DEFAULT_EXPORT_CACHE_LIMIT
            ),
            summary_max_tokens=parse_positive_int(
                os.getenv("SUMMARY_MAX_TOKENS"), DEFAULT_SUMMARY_MAX_TOKENS
            ),
        )
