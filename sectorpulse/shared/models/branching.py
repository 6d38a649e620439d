"""Branching rule domain models.

Rules are static survey-definition data. They are evaluated strictly in
``rule_order`` (the authored order) because a later ``show_section`` rule
overrides an earlier hide or skip of the same section.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class ConditionOperator(Enum):
    """Comparison applied between a stored answer and a rule literal."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    INCLUDES = "includes"
    NOT_INCLUDES = "not_includes"


class BranchingAction(Enum):
    """What happens to the rule's target when its condition holds."""
    SKIP_SECTION = "skip_section"
    HIDE_SECTION = "hide_section"
    SHOW_SECTION = "show_section"
    SKIP_QUESTION = "skip_question"

    @property
    def targets_section(self) -> bool:
        return self is not BranchingAction.SKIP_QUESTION


@dataclass(frozen=True)
class BranchingCondition:
    """Operator plus the literal it compares against."""
    operator: ConditionOperator
    value: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BranchingCondition":
        return cls(
            operator=ConditionOperator(data["operator"]),
            value=str(data.get("value", "")),
        )

    def to_dict(self) -> Dict[str, str]:
        return {"operator": self.operator.value, "value": self.value}


@dataclass(frozen=True)
class BranchingRule:
    """A conditional visibility rule.

    Attributes:
        id: Rule identifier
        source_question_id: Question whose answer is tested
        condition: Operator and literal
        action: Effect applied to the target when the condition holds
        target_section_id: Target for section actions
        target_question_id: Target for ``skip_question``
        explanation: Optional message shown to the respondent
        survey_id: Owning survey
        rule_order: Authored evaluation position
    """
    id: str
    source_question_id: str
    condition: BranchingCondition
    action: BranchingAction
    target_section_id: Optional[str] = None
    target_question_id: Optional[str] = None
    explanation: Optional[str] = None
    survey_id: Optional[str] = None
    rule_order: int = 0

    @property
    def target_id(self) -> Optional[str]:
        """The id this rule acts on, or None when the matching target is missing."""
        if self.action.targets_section:
            return self.target_section_id
        return self.target_question_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "survey_id": self.survey_id,
            "rule_order": self.rule_order,
            "source_question_id": self.source_question_id,
            "condition": self.condition.to_dict(),
            "action": self.action.value,
            "target_section_id": self.target_section_id,
            "target_question_id": self.target_question_id,
            "explanation": self.explanation,
        }
