"""Branching rule evaluation.

Maps (rules, answers collected so far) to visibility decisions. Pure and
side-effect free, so it is safe to re-run on every answer change.

Rules are applied in the order given (authored ``rule_order``), never
sorted or parallelised: a later ``show_section`` rule removes its target from
the hidden and skipped sets, overriding any earlier rule that hid it.

Rules are trusted survey-definition data rather than a validated schema. A
rule whose source question is unanswered never fires, and a rule with no
target, or one that names an unknown section or question, is a no-op.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from sectorpulse.shared.models import (
    AnswerValue,
    BranchingAction,
    BranchingRule,
    MalformedAnswerError,
    SurveyDefinition,
    parse_answer_value,
)

logger = logging.getLogger(__name__)


@dataclass
class BranchingResult:
    """Visibility decisions produced by rule evaluation.

    ``hidden_section_ids`` and ``skipped_section_ids`` have the same effect
    on visibility; they are kept apart so a skipped section can be
    explained to the respondent while a hidden one stays silent.
    """
    hidden_section_ids: Set[str] = field(default_factory=set)
    skipped_section_ids: Set[str] = field(default_factory=set)
    skipped_question_ids: Set[str] = field(default_factory=set)
    explanations: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hidden_section_ids": sorted(self.hidden_section_ids),
            "skipped_section_ids": sorted(self.skipped_section_ids),
            "skipped_question_ids": sorted(self.skipped_question_ids),
            "explanations": dict(self.explanations),
        }


def _answer_for(answers: Mapping[str, Any], question_id: str) -> Optional[AnswerValue]:
    raw = answers.get(question_id)
    if raw is None:
        return None
    try:
        return parse_answer_value(raw)
    except MalformedAnswerError:
        return None


def condition_met(rule: BranchingRule, answers: Mapping[str, Any]) -> bool:
    """Evaluate one rule's condition; unanswered sources are always false."""
    answer = _answer_for(answers, rule.source_question_id)
    if answer is None:
        return False
    return answer.matches(rule.condition.operator, rule.condition.value)


def evaluate_branching_rules(
    rules: Iterable[BranchingRule],
    answers: Mapping[str, Any],
) -> BranchingResult:
    """Apply every rule, in order, to the current answers.

    Args:
        rules: Rules in authored evaluation order
        answers: Question id -> answer (raw payload value or AnswerValue)

    Returns:
        BranchingResult with hidden/skipped sets and explanations
    """
    result = BranchingResult()

    for rule in rules:
        if not condition_met(rule, answers):
            continue

        target = rule.target_id
        if not target:
            continue

        if rule.action is BranchingAction.SHOW_SECTION:
            result.hidden_section_ids.discard(target)
            result.skipped_section_ids.discard(target)
            continue

        if rule.action is BranchingAction.SKIP_SECTION:
            result.skipped_section_ids.add(target)
        elif rule.action is BranchingAction.HIDE_SECTION:
            result.hidden_section_ids.add(target)
        else:
            result.skipped_question_ids.add(target)

        if rule.explanation:
            result.explanations[target] = rule.explanation

    return result


def is_section_visible(section_id: str, result: BranchingResult) -> bool:
    return (
        section_id not in result.hidden_section_ids
        and section_id not in result.skipped_section_ids
    )


def is_question_visible(question_id: str, result: BranchingResult) -> bool:
    return question_id not in result.skipped_question_ids


def visible_question_ids(
    definition: SurveyDefinition,
    result: BranchingResult,
) -> List[str]:
    """Ids of questions a respondent actually saw, in display order.

    A question is visible when its section is visible and it is not
    individually skipped.
    """
    return [
        question.id
        for section in definition.sections
        if is_section_visible(section.id, result)
        for question in section.questions
        if is_question_visible(question.id, result)
    ]
