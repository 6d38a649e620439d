"""Survey Service: survey delivery and submission ingestion.

This service provides:
- Survey definitions (sections, questions, branching rules) per sector
- Submission validation against the definition and branching outcome
- Atomic storage of a submission, its answers and its receipt hash
- Plain-language recaps of a respondent's answers

The Flask app lives in ``sectorpulse.services.survey_service.handler``.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- GET /surveys/<sector> - Active survey definition
- POST /submissions - Submit answers, receive a receipt code
- POST /surveys/<sector>/summary - Streamed recap of the answers so far
"""

from .config import SurveyConfig
from .submission_repository import SubmissionRepository, SurveyNotActiveError
from .survey_repository import SurveyRepository
from .validation import (
    FieldError,
    SubmissionPayload,
    SubmissionValidationError,
    SubmissionValidator,
    ValidatedAnswers,
    parse_submission_payload,
)

__all__ = [
    "SurveyConfig",
    "SubmissionRepository",
    "SurveyNotActiveError",
    "SurveyRepository",
    "FieldError",
    "SubmissionPayload",
    "SubmissionValidationError",
    "SubmissionValidator",
    "ValidatedAnswers",
    "parse_submission_payload",
]
