"""Answer value variants.

A stored answer is one of three shapes:
- ``TextAnswer``: single-choice, band-select and free-text values
- ``ChoiceListAnswer``: ordered multi-choice selections
- ``PercentageSplitAnswer``: option value -> share mapping

Branching conditions and storage serialisation dispatch on the variant
instead of inspecting raw payload types at each call site.
"""
import json
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .branching import ConditionOperator


class MalformedAnswerError(ValueError):
    """Stored or submitted answer data has an unrecognised shape."""
    pass


class AnswerValue(ABC):
    """Base class for the answer variants."""

    @abstractmethod
    def matches(self, operator: ConditionOperator, literal: str) -> bool:
        """Evaluate a branching condition against this answer."""
        pass

    @abstractmethod
    def to_storage(self) -> Tuple[Optional[str], Optional[str]]:
        """Return the ``(answer_value, answer_values)`` column pair.

        Exactly one side of the pair is populated.
        """
        pass

    @abstractmethod
    def to_json(self) -> Any:
        pass


@dataclass(frozen=True)
class TextAnswer(AnswerValue):
    value: str

    def matches(self, operator: ConditionOperator, literal: str) -> bool:
        if operator in (ConditionOperator.EQUALS, ConditionOperator.INCLUDES):
            return self.value == literal
        return self.value != literal

    def to_storage(self) -> Tuple[Optional[str], Optional[str]]:
        return self.value, None

    def to_json(self) -> str:
        return self.value


@dataclass(frozen=True)
class ChoiceListAnswer(AnswerValue):
    values: Tuple[str, ...]

    def matches(self, operator: ConditionOperator, literal: str) -> bool:
        if operator is ConditionOperator.EQUALS:
            return len(self.values) == 1 and self.values[0] == literal
        if operator is ConditionOperator.NOT_EQUALS:
            return not (len(self.values) == 1 and self.values[0] == literal)
        if operator is ConditionOperator.INCLUDES:
            return literal in self.values
        return literal not in self.values

    def to_storage(self) -> Tuple[Optional[str], Optional[str]]:
        return None, json.dumps(list(self.values))

    def to_json(self) -> list:
        return list(self.values)


@dataclass(frozen=True)
class PercentageSplitAnswer(AnswerValue):
    shares: Dict[str, float] = field(default_factory=dict)

    def _any_share_equals(self, literal: str) -> bool:
        try:
            target = float(literal)
        except (TypeError, ValueError):
            return False
        return any(share == target for share in self.shares.values())

    def matches(self, operator: ConditionOperator, literal: str) -> bool:
        # Membership has no meaning for a share mapping.
        if operator is ConditionOperator.EQUALS:
            return self._any_share_equals(literal)
        if operator is ConditionOperator.NOT_EQUALS:
            return not self._any_share_equals(literal)
        return False

    @property
    def total(self) -> float:
        return sum(self.shares.values())

    def to_storage(self) -> Tuple[Optional[str], Optional[str]]:
        return None, json.dumps(self.shares)

    def to_json(self) -> Dict[str, float]:
        return dict(self.shares)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def parse_answer_value(raw: Any) -> AnswerValue:
    """Convert a raw payload value into its variant.

    Args:
        raw: A string, a list of strings, or a mapping of strings to numbers

    Returns:
        The matching AnswerValue

    Raises:
        MalformedAnswerError: If the value has none of the three shapes
    """
    if isinstance(raw, AnswerValue):
        return raw
    if isinstance(raw, str):
        return TextAnswer(raw)
    if isinstance(raw, (list, tuple)):
        if not all(isinstance(item, str) for item in raw):
            raise MalformedAnswerError("Choice lists may only contain strings")
        return ChoiceListAnswer(tuple(raw))
    if isinstance(raw, dict):
        if not all(isinstance(key, str) and _is_number(share) for key, share in raw.items()):
            raise MalformedAnswerError("Percentage splits map option values to numbers")
        return PercentageSplitAnswer({key: float(share) for key, share in raw.items()})
    raise MalformedAnswerError(f"Unsupported answer type: {type(raw).__name__}")


def from_storage(answer_value: Optional[str], answer_values: Optional[str]) -> AnswerValue:
    """Rebuild an answer from its stored column pair.

    Raises:
        MalformedAnswerError: If neither column is set, the JSON is invalid,
            or the decoded value is not a list or share mapping
    """
    if answer_value is not None:
        return TextAnswer(answer_value)
    if answer_values is None:
        raise MalformedAnswerError("Answer row holds no value")

    try:
        decoded = json.loads(answer_values)
    except (TypeError, ValueError) as e:
        raise MalformedAnswerError(f"Invalid answer JSON: {e}") from e

    if not isinstance(decoded, (list, dict)):
        raise MalformedAnswerError("Complex answers must be a list or an object")
    return parse_answer_value(decoded)
