"""Submission payload validation.

Checks run in this order:
1. Payload fields: survey id, sector, size band, answers object
2. Answers to unknown questions are rejected
3. Branching rules are evaluated over the submitted answers and answers to
   questions the respondent never saw are dropped
4. Each remaining answer must match its question type and options
5. Every visible required question must be answered
6. The size band must be an option of the size question and match its answer
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from sectorpulse.shared.models import (
    PREFER_NOT_TO_ANSWER,
    AnswerValue,
    ChoiceListAnswer,
    MalformedAnswerError,
    PercentageSplitAnswer,
    Question,
    QuestionType,
    Sector,
    SurveyDefinition,
    TextAnswer,
    parse_answer_value,
)
from sectorpulse.services.branching_service import (
    BranchingResult,
    evaluate_branching_rules,
    visible_question_ids,
)
from .config import SurveyConfig

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("survey_id", "sector", "size_band", "answers")

_TEXT_TYPES = (QuestionType.SINGLE_CHOICE, QuestionType.BAND_SELECT, QuestionType.FREE_TEXT)


@dataclass(frozen=True)
class FieldError:
    """One validation problem."""
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


class SubmissionValidationError(ValueError):
    """Submission payload failed validation."""

    def __init__(self, errors: List[FieldError]):
        self.errors = list(errors)
        super().__init__("; ".join(f"{e.field}: {e.message}" for e in self.errors))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "Invalid submission",
            "details": [error.to_dict() for error in self.errors],
        }


@dataclass(frozen=True)
class SubmissionPayload:
    """Top-level submission fields after shape checks."""
    survey_id: str
    sector: Sector
    size_band: str
    answers: Dict[str, Any]


@dataclass
class ValidatedAnswers:
    """Answers ready for storage, in display order."""
    answers: Dict[str, AnswerValue]
    branching: BranchingResult
    dropped_question_ids: List[str] = field(default_factory=list)


def is_blank(raw: Any) -> bool:
    if raw is None:
        return True
    if isinstance(raw, str):
        return not raw.strip()
    if isinstance(raw, (list, tuple, dict)):
        return len(raw) == 0
    return False


def parse_submission_payload(
    data: Any,
    config: Optional[SurveyConfig] = None,
) -> SubmissionPayload:
    """Check the top-level shape of a submission request body.

    Raises:
        SubmissionValidationError: If fields are missing or malformed
    """
    config = config or SurveyConfig()

    if not isinstance(data, dict):
        raise SubmissionValidationError([FieldError("body", "Request body must be an object")])

    errors: List[FieldError] = []
    missing = [name for name in REQUIRED_FIELDS if is_blank(data.get(name))]
    for name in missing:
        errors.append(FieldError(name, "This field is required"))
    if errors:
        raise SubmissionValidationError(errors)

    if not isinstance(data["survey_id"], str):
        errors.append(FieldError("survey_id", "Must be a string"))

    sector = None
    if data["sector"] not in Sector.values():
        errors.append(FieldError("sector", "Invalid sector"))
    else:
        sector = Sector(data["sector"])

    size_band = data["size_band"]
    if not isinstance(size_band, str) or len(size_band) > config.size_band_max_length:
        errors.append(FieldError("size_band", "Must be one of the listed size bands"))

    if not isinstance(data["answers"], dict):
        errors.append(FieldError("answers", "Must be an object keyed by question id"))

    if errors:
        raise SubmissionValidationError(errors)

    return SubmissionPayload(
        survey_id=data["survey_id"],
        sector=sector,
        size_band=size_band.strip(),
        answers=dict(data["answers"]),
    )


class SubmissionValidator:
    """Validates answers against a survey definition."""

    def __init__(self, config: Optional[SurveyConfig] = None):
        self.config = config or SurveyConfig()

    def _check_answer(self, question: Question, answer: AnswerValue) -> Optional[str]:
        """Return an error message, or None if the answer fits the question."""
        question_type = question.question_type
        options = question.option_values

        if question_type in _TEXT_TYPES:
            if not isinstance(answer, TextAnswer):
                return "Expected a single value"
            if question_type is QuestionType.FREE_TEXT:
                if len(answer.value) > self.config.free_text_max_length:
                    return f"Must be at most {self.config.free_text_max_length} characters"
                return None
            if options and answer.value not in options:
                return "Not one of the listed options"
            return None

        if question_type is QuestionType.MULTI_CHOICE:
            if not isinstance(answer, ChoiceListAnswer):
                return "Expected a list of options"
            if len(set(answer.values)) != len(answer.values):
                return "Options may only be selected once"
            if options and any(value not in options for value in answer.values):
                return "Not one of the listed options"
            max_selections = question.metadata.max_selections
            if max_selections is not None and len(answer.values) > max_selections:
                return f"Select at most {max_selections} options"
            return None

        if not isinstance(answer, PercentageSplitAnswer):
            return "Expected a percentage for each option"
        if options and any(key not in options for key in answer.shares):
            return "Not one of the listed options"
        if any(share < 0 or share > 100 for share in answer.shares.values()):
            return "Percentages must be between 0 and 100"
        if question.metadata.total_must_equal_100 and answer.total > 100:
            return "Percentages must not add up to more than 100"
        return None

    def _check_size_band(
        self,
        definition: SurveyDefinition,
        size_band: str,
        answers: Mapping[str, AnswerValue],
    ) -> Optional[str]:
        """Return an error message, or None if the size band can be reported on."""
        if size_band == PREFER_NOT_TO_ANSWER:
            return "A size band is required for reporting"

        question = definition.size_band_question()
        if question is None:
            return None
        if size_band not in question.option_values:
            return "Must be one of the listed size bands"

        answer = answers.get(question.id)
        if answer is not None and answer != TextAnswer(size_band):
            return "Must match the answer to the size question"
        return None

    def validate(
        self,
        definition: SurveyDefinition,
        raw_answers: Mapping[str, Any],
        size_band: Optional[str] = None,
    ) -> ValidatedAnswers:
        """Validate submitted answers for a survey.

        Args:
            definition: Survey the answers belong to
            raw_answers: Question id -> raw payload value
            size_band: Submitted size band, checked against the size question

        Returns:
            ValidatedAnswers holding only answers to visible questions

        Raises:
            SubmissionValidationError: With every problem found
        """
        questions = definition.question_by_id()
        errors: List[FieldError] = []
        parsed: Dict[str, AnswerValue] = {}
        malformed: Dict[str, str] = {}

        for question_id, raw in raw_answers.items():
            if question_id not in questions:
                errors.append(FieldError(f"answers.{question_id}", "Unknown question"))
                continue
            if is_blank(raw):
                continue
            try:
                parsed[question_id] = parse_answer_value(raw)
            except MalformedAnswerError as e:
                malformed[question_id] = str(e)

        branching = evaluate_branching_rules(definition.rules, parsed)
        visible = visible_question_ids(definition, branching)
        visible_set = set(visible)

        dropped = [qid for qid in list(parsed) + list(malformed) if qid not in visible_set]

        answers: Dict[str, AnswerValue] = {}
        for question_id in visible:
            question = questions[question_id]
            if question_id in malformed:
                errors.append(FieldError(f"answers.{question_id}", malformed[question_id]))
                continue

            answer = parsed.get(question_id)
            if answer is None:
                if question.is_required:
                    errors.append(FieldError(f"answers.{question_id}", "This question is required"))
                continue

            message = self._check_answer(question, answer)
            if message:
                errors.append(FieldError(f"answers.{question_id}", message))
            else:
                answers[question_id] = answer

        if size_band is not None:
            message = self._check_size_band(definition, size_band, answers)
            if message:
                errors.append(FieldError("size_band", message))

        if errors:
            logger.info(
                "SUBMISSION_VALIDATION_FAILED",
                extra={
                    "survey_id": definition.survey.id,
                    "error_count": len(errors),
                }
            )
            raise SubmissionValidationError(errors)

        if dropped:
            logger.info(
                "HIDDEN_ANSWERS_DROPPED",
                extra={
                    "survey_id": definition.survey.id,
                    "dropped_count": len(dropped),
                }
            )

        return ValidatedAnswers(
            answers=answers,
            branching=branching,
            dropped_question_ids=dropped,
        )
