"""Submission domain models.

A submission is one respondent's completed answer set. It carries the
dimension tuple used for aggregation (sector, year, quarter, size band) and
is never updated after it is written.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from .answers import AnswerValue


@dataclass(frozen=True)
class Answer:
    """A single stored answer."""
    id: str
    submission_id: str
    question_id: str
    value: AnswerValue
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_params(self) -> Dict[str, Any]:
        answer_value, answer_values = self.value.to_storage()
        return {
            "id": self.id,
            "submission_id": self.submission_id,
            "question_id": self.question_id,
            "answer_value": answer_value,
            "answer_values": answer_values,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class Submission:
    """One respondent's answer set for a survey occurrence.

    Attributes:
        id: Submission identifier
        survey_id: Survey answered
        sector: Sector value copied from the survey
        year: Survey year
        quarter: Survey quarter (1-4)
        size_band: Banded employee count, never a raw number
        submitted_at: UTC submission time
        answers: Stored answers
    """
    id: str
    survey_id: str
    sector: str
    year: int
    quarter: int
    size_band: str
    submitted_at: datetime = field(default_factory=datetime.utcnow)
    answers: Tuple[Answer, ...] = ()

    @property
    def dimensions(self) -> Dict[str, Any]:
        return {
            "survey_id": self.survey_id,
            "sector": self.sector,
            "year": self.year,
            "quarter": self.quarter,
            "size_band": self.size_band,
        }


@dataclass(frozen=True)
class SubmissionReceipt:
    """What the respondent gets back exactly once after submitting."""
    submission_id: str
    receipt_code: str
    submitted_at: datetime
    refresh_queued: bool = False
    task_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submission_id": self.submission_id,
            "receipt_code": self.receipt_code,
            "submitted_at": self.submitted_at.isoformat() + "Z",
        }
