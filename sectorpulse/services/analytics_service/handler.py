"""Analytics Service HTTP Handler - internal dashboard and export API.

Live submission counts are returned as-is: totals are not identifying.
Every respondent-derived distribution passes through the k-anonymity guard
before it leaves this service.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- GET /dashboard - Live counts and guarded cached distributions
- GET /aggregations/<question_id> - One cached distribution by dimension
- GET /export - Guarded export items
- GET /summary - Streamed executive summary of the guarded statistics
"""
import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Set

from flask import Flask, Response, jsonify, request, stream_with_context

from sectorpulse.shared.database import ConnectionManager, get_connection_manager
from sectorpulse.shared.models import QuestionType, Sector
from sectorpulse.services.llm_service import (
    BaseLLM,
    LLMNotConfiguredError,
    llm_from_env,
    sse_events,
)
from sectorpulse.services.survey_service.submission_repository import SubmissionRepository
from .cache_keys import build_cache_key
from .cache_repository import AggregateCacheEntry, CacheRepository
from .config import AnalyticsConfig
from .k_anonymity import KAnonResult, KAnonymityEnforcer
from .summary import SYSTEM_PROMPT, build_summary_prompt

logger = logging.getLogger(__name__)

app = Flask(__name__)


def percentage_averages(result: Dict[str, float], response_count: int) -> Dict[str, float]:
    """Mean share per option from a count-weighted sum."""
    if response_count <= 0:
        return {}
    return {option: total / response_count for option, total in result.items()}


class AnalyticsHandler:
    """Handler for dashboard, aggregation lookup and export endpoints."""

    def __init__(
        self,
        connection_manager: Optional[ConnectionManager] = None,
        config: Optional[AnalyticsConfig] = None,
        enforcer: Optional[KAnonymityEnforcer] = None,
        cache_repository: Optional[CacheRepository] = None,
        submission_repository: Optional[SubmissionRepository] = None,
        llm: Optional[BaseLLM] = None,
    ):
        """Initialize handler with dependencies.

        Args:
            connection_manager: Database connection manager
            config: Analytics configuration
            enforcer: K-anonymity guard (injected for testing)
            cache_repository: Cache store
            submission_repository: Source of live submission counts
            llm: Summary writer; built from the environment when omitted and
                None when no API key is configured
        """
        self.connection_manager = connection_manager or get_connection_manager()
        self.config = config or AnalyticsConfig.from_env()
        self.enforcer = enforcer or KAnonymityEnforcer(k_threshold=self.config.k_threshold)
        self.cache_repository = cache_repository or CacheRepository(self.connection_manager)
        self.submission_repository = submission_repository or SubmissionRepository(
            self.connection_manager
        )
        self.llm = llm if llm is not None else llm_from_env()

        logger.info(
            "ANALYTICS_HANDLER_INITIALIZED",
            extra={
                "k_threshold": self.enforcer.k_threshold,
                "dashboard_cache_limit": self.config.dashboard_cache_limit,
                "export_cache_limit": self.config.export_cache_limit,
                "summary_enabled": self.llm is not None,
            }
        )

    def _percentage_split_ids(self, question_ids: Iterable[str]) -> Set[str]:
        ids = sorted(set(question_ids))
        if not ids:
            return set()

        placeholders = ", ".join(["%s"] * len(ids))
        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT id FROM questions WHERE question_type = %s AND id IN ({placeholders})",
                    [QuestionType.PERCENTAGE_SPLIT.value] + ids
                )
                return {row[0] for row in cur.fetchall()}

    def _guard(self, entry: AggregateCacheEntry, percentage_split: bool) -> Dict[str, Any]:
        guarded = self.enforcer.check(
            entry.result, entry.response_count, context=entry.cache_key
        )
        item = dict(guarded.to_dict(), cache_key=entry.cache_key, dimensions=entry.dimensions)
        if percentage_split and not guarded.suppressed:
            item["averages"] = percentage_averages(entry.result, entry.response_count)
        return item

    def _guard_entries(self, entries: List[AggregateCacheEntry]) -> List[Dict[str, Any]]:
        split_ids = self._percentage_split_ids(entry.question_id for entry in entries)
        return [self._guard(entry, entry.question_id in split_ids) for entry in entries]

    def get_dashboard(
        self,
        year: Optional[int] = None,
        quarter: Optional[int] = None,
        sector: Optional[str] = None,
        size_band: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Live counts plus guarded cached distributions.

        Args:
            year: Filter by year
            quarter: Filter by quarter
            sector: Filter by sector
            size_band: Filter by size band; without it only sector-wide
                slices are returned

        Returns:
            Dictionary with counts and aggregations
        """
        repo = self.submission_repository
        entries = self.cache_repository.find_entries(
            year=year,
            quarter=quarter,
            sector=sector,
            size_band=size_band,
            sector_wide_only=True,
            limit=self.config.dashboard_cache_limit,
        )
        aggregations = self._guard_entries(entries)

        logger.info(
            "DASHBOARD_RETRIEVED",
            extra={
                "year": year,
                "quarter": quarter,
                "sector": sector,
                "size_band": size_band,
                "aggregations": len(aggregations),
                "suppressed": sum(1 for item in aggregations if item["suppressed"]),
            }
        )

        return {
            "filters": {
                "year": year,
                "quarter": quarter,
                "sector": sector,
                "size_band": size_band,
            },
            "k_anonymity_threshold": self.enforcer.k_threshold,
            "total_submissions": repo.count(year, quarter, sector, size_band),
            "by_sector": repo.counts_by_sector(year, quarter, sector, size_band),
            "quarterly_trend": repo.quarterly_trend(year, quarter, sector, size_band),
            "size_band_distribution": repo.size_band_distribution(
                year, quarter, sector, size_band
            ),
            "aggregations": aggregations,
        }

    def get_cached_aggregation(
        self,
        question_id: str,
        year: int,
        quarter: int,
        sector: str,
        size_band: Optional[str] = None,
    ) -> KAnonResult[Dict[str, float]]:
        """Guarded cached distribution for one dimension tuple.

        A cache miss is reported as zero responses, which the guard
        suppresses.
        """
        cache_key = build_cache_key(year, quarter, sector, question_id, size_band)
        entry = self.cache_repository.read(cache_key)

        if entry is None:
            logger.info("CACHE_MISS", extra={"cache_key": cache_key})
            return self.enforcer.check({}, 0, context=cache_key)

        return self.enforcer.check(entry.result, entry.response_count, context=cache_key)

    def get_export_data(
        self,
        year: Optional[int] = None,
        quarter: Optional[int] = None,
        sector: Optional[str] = None,
        size_band: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Guarded distributions for export.

        Sector-wide slices unless a size band is given, in which case only
        that band's slices are exported.

        Returns:
            Dictionary with export items and the live submission total
        """
        entries = self.cache_repository.find_entries(
            year=year,
            quarter=quarter,
            sector=sector,
            size_band=size_band,
            sector_wide_only=True,
            limit=self.config.export_cache_limit,
        )
        items = self._guard_entries(entries)
        total = self.submission_repository.count(year, quarter, sector, size_band)

        logger.info(
            "EXPORT_GENERATED",
            extra={
                "year": year,
                "quarter": quarter,
                "sector": sector,
                "size_band": size_band,
                "items": len(items),
            }
        )

        return {
            "filters": {
                "year": year,
                "quarter": quarter,
                "sector": sector,
                "size_band": size_band,
            },
            "total_submissions": total,
            "items": items,
        }


    def get_summary_prompt(
        self,
        year: Optional[int] = None,
        quarter: Optional[int] = None,
        sector: Optional[str] = None,
        size_band: Optional[str] = None,
    ) -> str:
        """Executive summary prompt over the same data as the dashboard.

        Suppressed slices are left out of the prompt entirely.
        """
        return build_summary_prompt(self.get_dashboard(year, quarter, sector, size_band))

    def stream_summary(self, prompt: str) -> Iterable[str]:
        """Server-sent events carrying the generated summary.

        Raises:
            LLMNotConfiguredError: If no LLM is configured
        """
        if self.llm is None:
            raise LLMNotConfiguredError("Summary generation is not configured")
        chunks = self.llm.stream(
            prompt, system_prompt=SYSTEM_PROMPT, max_tokens=self.config.summary_max_tokens
        )
        return sse_events(chunks)


# Global handler instance
_handler: Optional[AnalyticsHandler] = None


def get_handler() -> AnalyticsHandler:
    """Get or create the global handler instance."""
    global _handler
    if _handler is None:
        _handler = AnalyticsHandler()
    return _handler


def set_handler(handler: Optional[AnalyticsHandler]) -> None:
    """Set the global handler (for testing)."""
    global _handler
    _handler = handler


def _int_arg(name: str) -> Optional[int]:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return int(raw)


def _dimension_args() -> Dict[str, Any]:
    """Parse and check the shared dimension query params.

    Raises:
        ValueError: If year, quarter or sector is invalid
    """
    year = _int_arg("year")
    quarter = _int_arg("quarter")
    sector = request.args.get("sector") or None
    if quarter is not None and not 1 <= quarter <= 4:
        raise ValueError("quarter must be between 1 and 4")
    if sector is not None and sector not in Sector.values():
        raise ValueError("Invalid sector")
    return {"year": year, "quarter": quarter, "sector": sector}


# Flask routes
@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({"status": "healthy", "service": "analytics-service"})


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check endpoint."""
    database = get_handler().connection_manager.health_check()
    if not database["healthy"]:
        return jsonify({"status": "not_ready", "service": "analytics-service"}), 503
    return jsonify({"status": "ready", "service": "analytics-service"})


@app.route("/dashboard", methods=["GET"])
def dashboard():
    """Dashboard data.

    Query params:
        year, quarter, sector, size_band: Optional filters
    """
    try:
        dimensions = _dimension_args()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        result = get_handler().get_dashboard(
            size_band=request.args.get("size_band") or None, **dimensions
        )
    except Exception as e:
        logger.error("DASHBOARD_FAILED", extra={"error": str(e)})
        return jsonify({"error": "Failed to load dashboard"}), 500

    return jsonify(result)


@app.route("/aggregations/<question_id>", methods=["GET"])
def aggregation(question_id: str):
    """Cached aggregation for one question.

    Query params:
        year: Required
        quarter: Required
        sector: Required
        size_band: Optional
    """
    try:
        dimensions = _dimension_args()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    missing = [name for name, value in dimensions.items() if value is None]
    if missing:
        return jsonify({"error": f"Missing fields: {missing}"}), 400

    size_band = request.args.get("size_band") or None
    try:
        result = get_handler().get_cached_aggregation(
            question_id, size_band=size_band, **dimensions
        )
    except Exception as e:
        logger.error(
            "AGGREGATION_LOOKUP_FAILED",
            extra={"question_id": question_id, "error": str(e)}
        )
        return jsonify({"error": "Failed to load aggregation"}), 500

    return jsonify(dict(result.to_dict(), question_id=question_id, size_band=size_band))


@app.route("/export", methods=["GET"])
def export():
    """Export data (JSON).

    Query params:
        year, quarter, sector, size_band: Optional filters
    """
    try:
        dimensions = _dimension_args()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        result = get_handler().get_export_data(
            size_band=request.args.get("size_band") or None, **dimensions
        )
    except Exception as e:
        logger.error("EXPORT_FAILED", extra={"error": str(e)})
        return jsonify({"error": "Failed to generate export"}), 500

    return jsonify(result)


@app.route("/summary", methods=["GET"])
def summary():
    """Executive summary as server-sent events.

    Query params:
        year, quarter, sector, size_band: Optional filters

    Events are ``data: {"text": ...}`` chunks followed by ``data: [DONE]``,
    or a final ``data: {"error": ...}`` if generation fails mid-stream.
    """
    try:
        dimensions = _dimension_args()
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    handler = get_handler()
    if handler.llm is None:
        return jsonify({"error": "Summary generation is not configured"}), 503

    try:
        prompt = handler.get_summary_prompt(
            size_band=request.args.get("size_band") or None, **dimensions
        )
        events = handler.stream_summary(prompt)
    except Exception as e:
        logger.error("SUMMARY_FAILED", extra={"error": str(e)})
        return jsonify({"error": "Failed to generate summary"}), 500

    return Response(
        stream_with_context(events),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


if __name__ == "__main__":
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    port = int(os.getenv("PORT", "8080"))
    app.run(host="0.0.0.0", port=port)
