"""Background cache refresh via Celery.

The submission transaction commits first; only then is a refresh queued.
Refresh work never runs inside, blocks, or rolls back a submission, and it
is not retried inline: a failed refresh leaves stale rows that the next
refresh or a full rebuild repairs.

Refresh tasks are routed to the ``cache_refresh`` queue. Running that
queue with a single worker process (``celery -A
sectorpulse.services.analytics_service.tasks worker -Q cache_refresh -c 1``)
serialises cache writes; with more workers concurrent refreshes of the same
slice resolve last-writer-wins and self-heal on the next refresh.
"""
import logging
import os
from typing import Any, Dict, Optional

from celery import Celery

from sectorpulse.shared.database import get_connection_manager
from sectorpulse.shared.models import Submission
from .aggregation import AggregationEngine

logger = logging.getLogger(__name__)

REFRESH_TASK_NAME = "analytics.refresh_submission_cache"
CACHE_REFRESH_QUEUE = "cache_refresh"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


celery_app = Celery(
    "sectorpulse",
    broker=os.getenv("CELERY_BROKER_URL") or os.getenv("REDIS_URL", "redis://localhost:6379/0"),
    include=["sectorpulse.services.analytics_service.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_ignore_result=True,
    task_routes={
        REFRESH_TASK_NAME: {"queue": CACHE_REFRESH_QUEUE},
    },
    task_default_queue="default",
    task_always_eager=_env_flag("CELERY_TASK_ALWAYS_EAGER"),
)


@celery_app.task(name=REFRESH_TASK_NAME)
def refresh_submission_cache(
    survey_id: str,
    sector: str,
    year: int,
    quarter: int,
    size_band: str,
) -> Dict[str, Any]:
    """Recompute the cache slices touched by one submission."""
    engine = AggregationEngine(get_connection_manager())
    try:
        report = engine.refresh_cache_for_submission(
            survey_id=survey_id,
            sector=sector,
            year=year,
            quarter=quarter,
            size_band=size_band,
        )
    except Exception as e:
        logger.error(
            "CACHE_REFRESH_TASK_FAILED",
            extra={
                "survey_id": survey_id,
                "sector": sector,
                "year": year,
                "quarter": quarter,
                "error": str(e),
            }
        )
        raise

    return report.to_dict()


class CacheRefreshDispatcher:
    """Queues cache refreshes after submissions commit."""

    def __init__(self, task=None):
        """Initialize dispatcher.

        Args:
            task: Celery task to enqueue (injected for testing)
        """
        self.task = task or refresh_submission_cache

    def dispatch(self, submission: Submission) -> Optional[str]:
        """Queue a refresh for a committed submission.

        Never raises: an enqueue failure is logged for operators and the
        submission stands.

        Returns:
            Task id, or None if the refresh could not be queued
        """
        try:
            async_result = self.task.apply_async(
                kwargs={
                    "survey_id": submission.survey_id,
                    "sector": submission.sector,
                    "year": submission.year,
                    "quarter": submission.quarter,
                    "size_band": submission.size_band,
                }
            )
        except Exception as e:
            logger.error(
                "CACHE_REFRESH_ENQUEUE_FAILED",
                extra={
                    "submission_id": submission.id,
                    "survey_id": submission.survey_id,
                    "error": str(e),
                }
            )
            return None

        logger.info(
            "CACHE_REFRESH_QUEUED",
            extra={
                "submission_id": submission.id,
                "survey_id": submission.survey_id,
                "task_id": async_result.id,
            }
        )
        return async_result.id
