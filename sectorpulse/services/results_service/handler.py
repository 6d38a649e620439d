"""Results Service HTTP Handler - respondent verification boundary.

A respondent exchanges their receipt code for the sector-wide results of the
survey they answered. The code is normalised and hashed before lookup, the
response never includes the respondent's own answers, and every
distribution is passed through the k-anonymity guard.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- POST /results/verify - Verify a receipt code and return guarded results
"""
import logging
import os
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request

from sectorpulse.shared.database import ConnectionManager, get_connection_manager
from sectorpulse.shared.models import Question, QuestionType, Section, Submission
from sectorpulse.shared.utils import hash_receipt_code, normalize_receipt_code
from sectorpulse.services.analytics_service.aggregation import AggregationEngine
from sectorpulse.services.analytics_service.cache_keys import build_cache_key
from sectorpulse.services.analytics_service.handler import percentage_averages
from sectorpulse.services.analytics_service.k_anonymity import KAnonymityEnforcer
from sectorpulse.services.survey_service.submission_repository import SubmissionRepository
from sectorpulse.services.survey_service.survey_repository import SurveyRepository
from .rate_limiter import RateLimitDecision, SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

app = Flask(__name__)

INVALID_CODE_MESSAGE = "Receipt code not recognised."


class VerificationHandler:
    """Handler for receipt-code verification."""

    def __init__(
        self,
        connection_manager: Optional[ConnectionManager] = None,
        submission_repository: Optional[SubmissionRepository] = None,
        survey_repository: Optional[SurveyRepository] = None,
        engine: Optional[AggregationEngine] = None,
        enforcer: Optional[KAnonymityEnforcer] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
    ):
        """Initialize handler with dependencies.

        Args:
            connection_manager: Database connection manager
            submission_repository: Receipt lookup
            survey_repository: Survey definitions
            engine: Aggregation engine (cache reads and on-demand compute)
            enforcer: K-anonymity guard
            rate_limiter: Verification rate limiter (injected for testing)
        """
        self.connection_manager = connection_manager or get_connection_manager()
        self.submission_repository = submission_repository or SubmissionRepository(
            self.connection_manager
        )
        self.survey_repository = survey_repository or SurveyRepository(self.connection_manager)
        self.engine = engine or AggregationEngine(self.connection_manager)
        self.enforcer = enforcer or KAnonymityEnforcer()
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter()

    def check_rate_limit(self, client_address: str) -> RateLimitDecision:
        return self.rate_limiter.check(client_address)

    def _question_result(
        self,
        submission: Submission,
        section: Section,
        question: Question,
    ) -> Dict[str, Any]:
        cache_key = build_cache_key(
            submission.year, submission.quarter, submission.sector, question.id
        )
        entry = self.engine.cache_repository.read(cache_key)
        if entry is not None:
            distribution, response_count = entry.result, entry.response_count
        else:
            # Computed on demand; the cache is written only by refresh and rebuild
            aggregation = self.engine.compute_aggregation(
                question.id,
                submission.survey_id,
                submission.sector,
                submission.year,
                submission.quarter,
            )
            distribution, response_count = aggregation.result, aggregation.response_count

        guarded = self.enforcer.check(distribution, response_count, context=cache_key)
        item: Dict[str, Any] = dict(
            guarded.to_dict(),
            question_id=question.id,
            question_text=question.question_text,
            question_type=question.question_type.value,
            section_title=section.title,
            pillar=section.pillar.value,
        )
        if question.question_type is QuestionType.PERCENTAGE_SPLIT and not guarded.suppressed:
            item["averages"] = percentage_averages(distribution, response_count)
        return item

    def _question_results(self, submission: Submission) -> List[Dict[str, Any]]:
        definition = self.survey_repository.load_definition(submission.survey_id)
        if definition is None:
            return []

        results = []
        for section in definition.sections:
            for question in section.questions:
                results.append(self._question_result(submission, section, question))

        return results

    def verify(self, code: str) -> Optional[Dict[str, Any]]:
        """Look up a receipt code and build the guarded results.

        Args:
            code: Receipt code as typed by the respondent

        Returns:
            Results dictionary, or None for an unknown code
        """
        normalized = normalize_receipt_code(code)
        if not normalized:
            return None

        receipt_hash = hash_receipt_code(normalized)
        submission = self.submission_repository.find_by_receipt_hash(receipt_hash)
        if submission is None:
            logger.info(
                "RECEIPT_NOT_FOUND",
                extra={"receipt_hash": receipt_hash[:16]}
            )
            return None

        results = self._question_results(submission)

        logger.info(
            "RECEIPT_VERIFIED",
            extra={
                "receipt_hash": receipt_hash[:16],
                "survey_id": submission.survey_id,
                "questions": len(results),
            }
        )

        return {
            "survey_id": submission.survey_id,
            "sector": submission.sector,
            "year": submission.year,
            "quarter": submission.quarter,
            "submitted_at": submission.submitted_at.isoformat() + "Z",
            "k_anonymity_threshold": self.enforcer.k_threshold,
            "results": results,
        }


# Global handler instance
_handler: Optional[VerificationHandler] = None


def get_handler() -> VerificationHandler:
    """Get or create the global handler instance."""
    global _handler
    if _handler is None:
        _handler = VerificationHandler()
    return _handler


def set_handler(handler: Optional[VerificationHandler]) -> None:
    """Set the global handler (for testing)."""
    global _handler
    _handler = handler


# Flask routes
@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({"status": "healthy", "service": "results-service"})


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check endpoint."""
    database = get_handler().connection_manager.health_check()
    if not database["healthy"]:
        return jsonify({"status": "not_ready", "service": "results-service"}), 503
    return jsonify({"status": "ready", "service": "results-service"})


@app.route("/results/verify", methods=["POST"])
def verify():
    """Verify a receipt code.

    Body:
        code: Receipt code from the submission confirmation
    """
    handler = get_handler()

    # Keyed on the peer address; request headers are client controlled
    client_address = request.remote_addr or "anonymous"
    decision = handler.check_rate_limit(client_address)
    if not decision.allowed:
        response = jsonify({"error": "Too many attempts. Try again later."})
        response.headers["Retry-After"] = str(decision.retry_after)
        return response, 429

    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not isinstance(data.get("code"), str) or not data["code"].strip():
        return jsonify({"error": "code is required"}), 400

    try:
        result = handler.verify(data["code"])
    except Exception as e:
        logger.error("VERIFICATION_FAILED", extra={"error": str(e)})
        return jsonify({"error": "Verification failed"}), 500

    if result is None:
        return jsonify({"error": INVALID_CODE_MESSAGE}), 404

    return jsonify(result)


if __name__ == "__main__":
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    port = int(os.getenv("PORT", "8080"))
    app.run(host="0.0.0.0", port=port)
