"""Shared domain models for SectorPulse."""
from .answers import (
    AnswerValue,
    TextAnswer,
    ChoiceListAnswer,
    PercentageSplitAnswer,
    MalformedAnswerError,
    parse_answer_value,
    from_storage,
)
from .branching import (
    ConditionOperator,
    BranchingAction,
    BranchingCondition,
    BranchingRule,
)
from .submission import Answer, Submission, SubmissionReceipt
from .survey import (
    PREFER_NOT_TO_ANSWER,
    Sector,
    Pillar,
    QuestionType,
    QuestionOption,
    QuestionMetadata,
    Question,
    Section,
    Survey,
    SurveyDefinition,
)

__all__ = [
    "AnswerValue",
    "TextAnswer",
    "ChoiceListAnswer",
    "PercentageSplitAnswer",
    "MalformedAnswerError",
    "parse_answer_value",
    "from_storage",
    "ConditionOperator",
    "BranchingAction",
    "BranchingCondition",
    "BranchingRule",
    "Answer",
    "Submission",
    "SubmissionReceipt",
    "PREFER_NOT_TO_ANSWER",
    "Sector",
    "Pillar",
    "QuestionType",
    "QuestionOption",
    "QuestionMetadata",
    "Question",
    "Section",
    "Survey",
    "SurveyDefinition",
]
