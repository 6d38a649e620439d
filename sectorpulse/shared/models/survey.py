"""Survey definition domain models.

A survey belongs to exactly one (sector, year, quarter) triple and is made
of ordered sections, each tagged with one of five fixed pillars and holding
ordered questions. Definitions are static once stored.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from .branching import BranchingRule


class Sector(Enum):
    """Industry sectors surveyed each quarter."""
    MANUFACTURERS = "manufacturers"
    RETAILERS = "retailers"
    WHOLESALERS_IMPORTERS = "wholesalers_importers"
    DIAMOND_DEALERS = "diamond_dealers"
    REFINERS = "refiners"

    @classmethod
    def values(cls) -> FrozenSet[str]:
        return frozenset(member.value for member in cls)

    @property
    def label(self) -> str:
        return SECTOR_LABELS[self]


SECTOR_LABELS = {
    Sector.MANUFACTURERS: "Manufacturers",
    Sector.RETAILERS: "Retailers",
    Sector.WHOLESALERS_IMPORTERS: "Wholesalers / Importers",
    Sector.DIAMOND_DEALERS: "Diamond Dealers",
    Sector.REFINERS: "Refiners",
}

PREFER_NOT_TO_ANSWER = "prefer_not_to_answer"


class Pillar(Enum):
    """Thematic category grouping survey sections."""
    CONTEXT = "context"
    PERFORMANCE = "performance"
    MIX_VOLUMES = "mix_volumes"
    PRICING_MARKET = "pricing_market"
    CONSTRAINTS_OUTLOOK = "constraints_outlook"


class QuestionType(Enum):
    """Answer shapes a question can collect."""
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"
    PERCENTAGE_SPLIT = "percentage_split"
    BAND_SELECT = "band_select"
    FREE_TEXT = "free_text"

    @property
    def has_options(self) -> bool:
        return self is not QuestionType.FREE_TEXT


@dataclass(frozen=True)
class QuestionOption:
    """One selectable (value, label) pair."""
    value: str
    label: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QuestionOption":
        return cls(value=str(data["value"]), label=str(data.get("label", data["value"])))

    def to_dict(self) -> Dict[str, str]:
        return {"value": self.value, "label": self.label}


@dataclass(frozen=True)
class QuestionMetadata:
    """Recognised per-question settings; unknown keys are ignored."""
    max_selections: Optional[int] = None
    total_must_equal_100: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "QuestionMetadata":
        data = data or {}
        max_selections = data.get("max_selections")
        if max_selections is not None:
            try:
                max_selections = int(max_selections)
            except (TypeError, ValueError):
                max_selections = None
        return cls(
            max_selections=max_selections if max_selections and max_selections > 0 else None,
            total_must_equal_100=bool(data.get("total_must_equal_100", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.max_selections is not None:
            data["max_selections"] = self.max_selections
        if self.total_must_equal_100:
            data["total_must_equal_100"] = True
        return data


@dataclass(frozen=True)
class Question:
    """A single survey question.

    Attributes:
        id: Question identifier
        section_id: Owning section
        question_text: Text shown to respondents
        question_type: Answer shape collected
        options: Ordered options with unique values
        is_required: Whether a visible instance must be answered
        sort_order: Position within the section (1-based, dense)
        metadata: Recognised settings (max selections, 100% total)
    """
    id: str
    section_id: str
    question_text: str
    question_type: QuestionType
    options: Tuple[QuestionOption, ...] = ()
    is_required: bool = False
    sort_order: int = 0
    metadata: QuestionMetadata = field(default_factory=QuestionMetadata)

    def __post_init__(self):
        values = [option.value for option in self.options]
        if len(values) != len(set(values)):
            raise ValueError(f"Option values must be unique for question {self.id}")

    @property
    def option_values(self) -> FrozenSet[str]:
        return frozenset(option.value for option in self.options)

    def label_for(self, value: str) -> str:
        """Return the display label for an option value (the value itself if unknown)."""
        for option in self.options:
            if option.value == value:
                return option.label
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "section_id": self.section_id,
            "question_text": self.question_text,
            "question_type": self.question_type.value,
            "options": [option.to_dict() for option in self.options],
            "is_required": self.is_required,
            "sort_order": self.sort_order,
            "metadata": self.metadata.to_dict(),
        }


@dataclass(frozen=True)
class Section:
    """Ordered, named group of questions tagged with a pillar."""
    id: str
    survey_id: str
    title: str
    pillar: Pillar
    sort_order: int = 0
    description: Optional[str] = None
    questions: Tuple[Question, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "survey_id": self.survey_id,
            "title": self.title,
            "description": self.description,
            "sort_order": self.sort_order,
            "pillar": self.pillar.value,
            "questions": [question.to_dict() for question in self.questions],
        }


@dataclass(frozen=True)
class Survey:
    """A survey occurrence for one sector and quarter."""
    id: str
    title: str
    sector: Sector
    year: int
    quarter: int
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self):
        if not 1 <= self.quarter <= 4:
            raise ValueError(f"Quarter must be 1-4, got {self.quarter}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "sector": self.sector.value,
            "year": self.year,
            "quarter": self.quarter,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() + "Z",
        }


@dataclass(frozen=True)
class SurveyDefinition:
    """A survey with its ordered sections, questions and branching rules."""
    survey: Survey
    sections: Tuple[Section, ...] = ()
    rules: Tuple[BranchingRule, ...] = ()

    @property
    def questions(self) -> List[Question]:
        """All questions in display order (section order, then question order)."""
        return [question for section in self.sections for question in section.questions]

    def question_by_id(self) -> Dict[str, Question]:
        return {question.id: question for question in self.questions}

    def size_band_question(self) -> Optional[Question]:
        """The band-select question that records company size.

        It is the first band-select question of the first context section.
        The submitted size band must be one of its options.
        """
        for section in self.sections:
            if section.pillar is not Pillar.CONTEXT:
                continue
            for question in section.questions:
                if question.question_type is QuestionType.BAND_SELECT:
                    return question
            return None
        return None

    def section_for_question(self, question_id: str) -> Optional[Section]:
        for section in self.sections:
            if any(question.id == question_id for question in section.questions):
                return section
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = self.survey.to_dict()
        data["sections"] = [section.to_dict() for section in self.sections]
        data["branching_rules"] = [rule.to_dict() for rule in self.rules]
        return data
