"""Survey Service HTTP Handler - survey delivery and submission ingestion.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check (database reachable)
- GET /surveys/<sector> - Active survey definition for a sector
- POST /submissions - Validate and store a submission, return its receipt code
- POST /surveys/<sector>/summary - Stream a recap of the respondent's answers

The receipt code is returned exactly once. Only its hash is stored, and the
cache refresh is queued after the submission has committed.
"""
import logging
import os
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Tuple

from flask import Flask, Response, jsonify, request, stream_with_context

from sectorpulse.shared.database import ConnectionManager, DuplicateError, get_connection_manager
from sectorpulse.shared.models import (
    Answer,
    AnswerValue,
    MalformedAnswerError,
    Sector,
    Submission,
    SubmissionReceipt,
    SurveyDefinition,
    parse_answer_value,
)
from sectorpulse.shared.utils import generate_receipt_code, hash_receipt_code
from sectorpulse.services.analytics_service.tasks import CacheRefreshDispatcher
from sectorpulse.services.llm_service import (
    BaseLLM,
    LLMNotConfiguredError,
    llm_from_env,
    sse_events,
)
from .config import SurveyConfig
from .submission_repository import SubmissionRepository, SurveyNotActiveError
from .summary import (
    FULL_MAX_TOKENS,
    FULL_SYSTEM_PROMPT,
    SECTION_MAX_TOKENS,
    SECTION_SYSTEM_PROMPT,
    build_full_prompt,
    build_section_prompt,
)
from .survey_repository import SurveyRepository
from .validation import (
    FieldError,
    SubmissionValidationError,
    SubmissionValidator,
    is_blank,
    parse_submission_payload,
)

logger = logging.getLogger(__name__)

app = Flask(__name__)

RECEIPT_ATTEMPTS = 3


class SurveyHandler:
    """Handler for survey delivery and submissions."""

    def __init__(
        self,
        connection_manager: Optional[ConnectionManager] = None,
        survey_repository: Optional[SurveyRepository] = None,
        submission_repository: Optional[SubmissionRepository] = None,
        dispatcher: Optional[CacheRefreshDispatcher] = None,
        config: Optional[SurveyConfig] = None,
        validator: Optional[SubmissionValidator] = None,
        llm: Optional[BaseLLM] = None,
    ):
        """Initialize handler with dependencies.

        Args:
            connection_manager: Database connection manager
            survey_repository: Survey definitions (injected for testing)
            submission_repository: Submission store (injected for testing)
            dispatcher: Cache refresh dispatcher (injected for testing)
            config: Survey configuration
            validator: Submission validator
            llm: Answer recap writer; built from the environment when omitted
        """
        self.connection_manager = connection_manager or get_connection_manager()
        self.config = config or SurveyConfig.from_env()
        self.survey_repository = survey_repository or SurveyRepository(self.connection_manager)
        self.submission_repository = submission_repository or SubmissionRepository(
            self.connection_manager
        )
        self.dispatcher = dispatcher or CacheRefreshDispatcher()
        self.validator = validator or SubmissionValidator(self.config)
        self.llm = llm if llm is not None else llm_from_env()

        logger.info(
            "SURVEY_HANDLER_INITIALIZED",
            extra={
                "receipt_code_prefix": self.config.receipt_code_prefix,
                "free_text_max_length": self.config.free_text_max_length,
                "summary_enabled": self.llm is not None,
            }
        )

    def get_survey(self, sector: Sector) -> Optional[SurveyDefinition]:
        """Active survey definition for a sector, or None."""
        definition = self.survey_repository.get_active_definition(sector)

        logger.info(
            "SURVEY_DEFINITION_SERVED" if definition else "SURVEY_NOT_FOUND",
            extra={
                "sector": sector.value,
                "survey_id": definition.survey.id if definition else None,
            }
        )
        return definition

    def submit(self, payload: Any) -> SubmissionReceipt:
        """Validate, store and acknowledge a submission.

        Args:
            payload: Decoded request body

        Returns:
            SubmissionReceipt carrying the plaintext receipt code

        Raises:
            SubmissionValidationError: If the payload is invalid
            SurveyNotActiveError: If the survey is missing or retired
        """
        parsed = parse_submission_payload(payload, self.config)

        definition = self.survey_repository.load_definition(parsed.survey_id)
        if definition is None or not definition.survey.is_active:
            raise SurveyNotActiveError(f"Survey {parsed.survey_id} not found or not active")

        survey = definition.survey
        if survey.sector is not parsed.sector:
            raise SubmissionValidationError([
                FieldError("sector", "Does not match the survey's sector")
            ])

        validated = self.validator.validate(definition, parsed.answers, parsed.size_band)

        submission_id = str(uuid.uuid4())
        submitted_at = datetime.utcnow()
        answers = tuple(
            Answer(
                id=str(uuid.uuid4()),
                submission_id=submission_id,
                question_id=question_id,
                value=value,
                created_at=submitted_at,
            )
            for question_id, value in validated.answers.items()
        )
        submission = Submission(
            id=submission_id,
            survey_id=survey.id,
            sector=survey.sector.value,
            year=survey.year,
            quarter=survey.quarter,
            size_band=parsed.size_band,
            submitted_at=submitted_at,
            answers=answers,
        )

        receipt_code = self._store(submission)

        # Queued only after the submission transaction has committed
        task_id = self.dispatcher.dispatch(submission)

        return SubmissionReceipt(
            submission_id=submission_id,
            receipt_code=receipt_code,
            submitted_at=submitted_at,
            refresh_queued=task_id is not None,
            task_id=task_id,
        )

    def _store(self, submission: Submission) -> str:
        """Store a submission under a fresh receipt code and return the code.

        A code whose hash is already taken is replaced, up to
        ``RECEIPT_ATTEMPTS`` times.
        """
        attempt = 1
        while True:
            receipt_code = generate_receipt_code(
                submission.year, submission.quarter, self.config.receipt_code_prefix
            )
            try:
                self.submission_repository.create(submission, hash_receipt_code(receipt_code))
                return receipt_code
            except DuplicateError:
                if attempt >= RECEIPT_ATTEMPTS:
                    raise
                logger.warning(
                    "RECEIPT_CODE_COLLISION",
                    extra={"submission_id": submission.id, "attempt": attempt}
                )
                attempt += 1

    def summary_request(self, sector: Sector, payload: Any) -> Tuple[str, str, int]:
        """Prompt, system prompt and token limit for an answer recap.

        Args:
            sector: Sector whose active survey was answered
            payload: Decoded request body with ``answers`` and an optional
                ``section_id``

        Raises:
            SubmissionValidationError: If the body is malformed, names an
                unknown section or answers nothing
            SurveyNotActiveError: If the sector has no active survey
        """
        raw_answers = payload.get("answers") if isinstance(payload, dict) else None
        if not isinstance(raw_answers, dict):
            raise SubmissionValidationError([FieldError("answers", "Must be an object")])

        definition = self.survey_repository.get_active_definition(sector)
        if definition is None:
            raise SurveyNotActiveError(f"No active survey for {sector.value}")

        questions = definition.question_by_id()
        answers: Dict[str, AnswerValue] = {}
        for question_id, raw in raw_answers.items():
            # Unknown ids and blanks are left out of the recap
            if question_id not in questions or is_blank(raw):
                continue
            try:
                answers[question_id] = parse_answer_value(raw)
            except MalformedAnswerError as e:
                raise SubmissionValidationError([
                    FieldError(f"answers.{question_id}", str(e))
                ]) from e

        section_id = payload.get("section_id")
        if section_id:
            section = next((s for s in definition.sections if s.id == section_id), None)
            if section is None:
                raise SubmissionValidationError([FieldError("section_id", "Unknown section")])
            prompt = build_section_prompt(section, answers)
            system_prompt, max_tokens = SECTION_SYSTEM_PROMPT, SECTION_MAX_TOKENS
        else:
            prompt = build_full_prompt(definition, answers)
            system_prompt, max_tokens = FULL_SYSTEM_PROMPT, FULL_MAX_TOKENS

        if prompt is None:
            raise SubmissionValidationError([FieldError("answers", "No data to summarise")])

        logger.info(
            "ANSWER_SUMMARY_REQUESTED",
            extra={
                "survey_id": definition.survey.id,
                "section_id": section_id,
                "answers": len(answers),
            }
        )
        return prompt, system_prompt, max_tokens

    def stream_summary(self, sector: Sector, payload: Any) -> Iterable[str]:
        """Server-sent events carrying the recap.

        Raises:
            LLMNotConfiguredError: If no LLM is configured
        """
        if self.llm is None:
            raise LLMNotConfiguredError("Summary generation is not configured")
        prompt, system_prompt, max_tokens = self.summary_request(sector, payload)
        return sse_events(
            self.llm.stream(prompt, system_prompt=system_prompt, max_tokens=max_tokens)
        )


# Global handler instance
_handler: Optional[SurveyHandler] = None


def get_handler() -> SurveyHandler:
    """Get or create the global handler instance."""
    global _handler
    if _handler is None:
        _handler = SurveyHandler()
    return _handler


def set_handler(handler: Optional[SurveyHandler]) -> None:
    """Set the global handler (for testing)."""
    global _handler
    _handler = handler


# Flask routes
@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({"status": "healthy", "service": "survey-service"})


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check endpoint."""
    database = get_handler().connection_manager.health_check()
    if not database["healthy"]:
        return jsonify({"status": "not_ready", "service": "survey-service"}), 503
    return jsonify({"status": "ready", "service": "survey-service"})


@app.route("/surveys/<sector>", methods=["GET"])
def get_survey(sector: str):
    """Active survey definition for a sector."""
    if sector not in Sector.values():
        return jsonify({"error": "Invalid sector"}), 400

    try:
        definition = get_handler().get_survey(Sector(sector))
    except Exception as e:
        logger.error("SURVEY_LOAD_FAILED", extra={"sector": sector, "error": str(e)})
        return jsonify({"error": "Failed to load survey"}), 500

    if definition is None:
        return jsonify({"error": "No active survey for this sector"}), 404

    return jsonify(definition.to_dict())


@app.route("/submissions", methods=["POST"])
def create_submission():
    """Submit answers for a survey.

    Body:
        survey_id: Survey answered
        sector: Sector of the survey
        size_band: Respondent size band
        answers: Question id -> answer value
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "Request body required"}), 400

    try:
        receipt = get_handler().submit(data)
    except SubmissionValidationError as e:
        return jsonify(e.to_dict()), 400
    except SurveyNotActiveError:
        return jsonify({"error": "Survey not found or not active"}), 404
    except Exception as e:
        logger.error("SUBMISSION_FAILED", extra={"error": str(e)})
        return jsonify({"error": "Failed to store submission"}), 500

    return jsonify(receipt.to_dict()), 201


@app.route("/surveys/<sector>/summary", methods=["POST"])
def summarise_answers(sector: str):
    """Recap of the respondent's answers as server-sent events.

    Body:
        answers: Question id -> answer value, as collected so far
        section_id: Limit the recap to one section (optional)
    """
    if sector not in Sector.values():
        return jsonify({"error": "Invalid sector"}), 400

    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "Request body required"}), 400

    handler = get_handler()
    if handler.llm is None:
        return jsonify({"error": "Summary generation is not configured"}), 503

    try:
        events = handler.stream_summary(Sector(sector), data)
    except SubmissionValidationError as e:
        return jsonify(e.to_dict()), 400
    except SurveyNotActiveError:
        return jsonify({"error": "No active survey for this sector"}), 404
    except Exception as e:
        logger.error("ANSWER_SUMMARY_FAILED", extra={"sector": sector, "error": str(e)})
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
