"""Analytics Service: aggregate reporting with privacy protection.

Every respondent-derived statistic is suppressed when fewer than k
submissions contribute to it (k = 5 unless ``K_ANONYMITY_THRESHOLD`` says
otherwise).

This service provides:
- Per-question aggregation over (survey, sector, year, quarter, size band)
- The aggregate cache, refreshed in the background after each submission
- A full cache rebuild for recovery
- Dashboard, aggregation lookup and export APIs
- An LLM-written executive summary built only from unsuppressed slices

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- GET /dashboard - Live counts and guarded distributions
- GET /aggregations/<question_id> - Cached distribution by dimension
- GET /export - Guarded export items
- GET /summary - Streamed executive summary of unsuppressed statistics
"""

from .aggregation import (
    AggregationEngine,
    AggregationResult,
    RefreshReport,
    fold_answer_groups,
)
from .cache_keys import (
    KeyScheme,
    build_cache_key,
    build_descriptive_cache_key,
    slugify_question_text,
)
from .cache_repository import AggregateCacheEntry, CacheRepository
from .config import AnalyticsConfig, get_k_threshold
from .k_anonymity import (
    KAnonymityEnforcer,
    KAnonResult,
    SUPPRESSION_MESSAGE,
    check_k_anonymity,
)
from .handler import AnalyticsHandler, app

__all__ = [
    "AggregationEngine",
    "AggregationResult",
    "RefreshReport",
    "fold_answer_groups",
    "KeyScheme",
    "build_cache_key",
    "build_descriptive_cache_key",
    "slugify_question_text",
    "AggregateCacheEntry",
    "CacheRepository",
    "AnalyticsConfig",
    "get_k_threshold",
    "KAnonymityEnforcer",
    "KAnonResult",
    "SUPPRESSION_MESSAGE",
    "check_k_anonymity",
    "AnalyticsHandler",
    "app",
]
