"""Branching Service: conditional visibility of survey sections and questions.

Evaluated by the survey client while a respondent answers, and again at
ingestion so answers to questions that were never visible are dropped
before they can reach aggregation.
"""

from .evaluator import (
    BranchingResult,
    condition_met,
    evaluate_branching_rules,
    is_section_visible,
    is_question_visible,
    visible_question_ids,
)

__all__ = [
    "BranchingResult",
    "condition_met",
    "evaluate_branching_rules",
    "is_section_visible",
    "is_question_visible",
    "visible_question_ids",
]
