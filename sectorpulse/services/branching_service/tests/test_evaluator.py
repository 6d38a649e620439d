"""Tests for branching rule evaluation."""
import pytest

from sectorpulse.shared.models import (
    BranchingAction,
    BranchingCondition,
    BranchingRule,
    ConditionOperator,
    Pillar,
    Question,
    QuestionType,
    Section,
    Sector,
    Survey,
    SurveyDefinition,
    TextAnswer,
)
from sectorpulse.services.branching_service import (
    evaluate_branching_rules,
    is_question_visible,
    is_section_visible,
    visible_question_ids,
)


def make_rule(
    source,
    operator,
    value,
    action,
    target_section=None,
    target_question=None,
    explanation=None,
    rule_id="rule-1",
):
    return BranchingRule(
        id=rule_id,
        source_question_id=source,
        condition=BranchingCondition(ConditionOperator(operator), value),
        action=BranchingAction(action),
        target_section_id=target_section,
        target_question_id=target_question,
        explanation=explanation,
    )


class TestSkipQuestion:
    """Single-choice skip_question rules."""

    @pytest.fixture
    def rules(self):
        return [make_rule("Q1", "equals", "not_applicable", "skip_question",
                          target_question="Q2")]

    def test_matching_answer_skips_question(self, rules):
        result = evaluate_branching_rules(rules, {"Q1": "not_applicable"})

        assert is_question_visible("Q2", result) is False

    def test_other_answer_keeps_question(self, rules):
        result = evaluate_branching_rules(rules, {"Q1": "14ct"})

        assert is_question_visible("Q2", result) is True

    def test_unanswered_source_never_fires(self, rules):
        result = evaluate_branching_rules(rules, {})

        assert result.skipped_question_ids == set()

    def test_negated_rule_on_unanswered_source_never_fires(self):
        rules = [make_rule("Q1", "not_equals", "yes", "skip_question", target_question="Q2")]

        result = evaluate_branching_rules(rules, {"Q9": "anything"})

        assert is_question_visible("Q2", result) is True

    def test_accepts_answer_variants(self, rules):
        result = evaluate_branching_rules(rules, {"Q1": TextAnswer("not_applicable")})

        assert "Q2" in result.skipped_question_ids


class TestMultiChoiceConditions:
    """List answers."""

    @pytest.fixture
    def rules(self):
        return [make_rule("Q1", "includes", "diamonds", "skip_question", target_question="Q3")]

    def test_includes_member(self, rules):
        result = evaluate_branching_rules(rules, {"Q1": ["gold", "diamonds"]})

        assert is_question_visible("Q3", result) is False

    def test_missing_member(self, rules):
        result = evaluate_branching_rules(rules, {"Q1": ["gold"]})

        assert is_question_visible("Q3", result) is True

    def test_equals_with_several_selections_is_false(self):
        rules = [make_rule("Q1", "equals", "gold", "skip_question", target_question="Q3")]

        result = evaluate_branching_rules(rules, {"Q1": ["gold", "silver"]})

        assert is_question_visible("Q3", result) is True

    def test_not_includes(self):
        rules = [make_rule("Q1", "not_includes", "gold", "hide_section", target_section="S2")]

        result = evaluate_branching_rules(rules, {"Q1": ["silver"]})

        assert is_section_visible("S2", result) is False


class TestPercentageSplitConditions:
    """Mapping answers."""

    def test_equals_any_share(self):
        rules = [make_rule("Q1", "equals", "100", "skip_section", target_section="S3")]

        result = evaluate_branching_rules(rules, {"Q1": {"gold": 100, "silver": 0}})

        assert is_section_visible("S3", result) is False

    def test_includes_never_matches(self):
        rules = [make_rule("Q1", "includes", "gold", "skip_section", target_section="S3")]

        result = evaluate_branching_rules(rules, {"Q1": {"gold": 100}})

        assert is_section_visible("S3", result) is True


class TestSectionActions:
    """skip_section, hide_section and show_section."""

    def test_skip_section_records_explanation(self):
        rules = [make_rule("Q1", "equals", "none", "skip_section", target_section="S2",
                           explanation="You hold no stock, so this section was skipped.")]

        result = evaluate_branching_rules(rules, {"Q1": "none"})

        assert "S2" in result.skipped_section_ids
        assert is_section_visible("S2", result) is False
        assert is_section_visible("S1", result) is True
        assert result.explanations["S2"].startswith("You hold no stock")

    def test_hide_and_skip_tracked_separately(self):
        rules = [
            make_rule("Q1", "equals", "a", "hide_section", target_section="S2", rule_id="r1"),
            make_rule("Q1", "equals", "a", "skip_section", target_section="S3", rule_id="r2"),
        ]

        result = evaluate_branching_rules(rules, {"Q1": "a"})

        assert result.hidden_section_ids == {"S2"}
        assert result.skipped_section_ids == {"S3"}

    def test_later_show_overrides_earlier_hide(self):
        rules = [
            make_rule("Q1", "equals", "retail", "hide_section", target_section="S2", rule_id="r1"),
            make_rule("Q2", "includes", "export", "show_section", target_section="S2",
                      rule_id="r2"),
        ]

        result = evaluate_branching_rules(rules, {"Q1": "retail", "Q2": ["export"]})

        assert is_section_visible("S2", result) is True

    def test_show_overrides_both_sets(self):
        rules = [
            make_rule("Q1", "equals", "x", "hide_section", target_section="S2", rule_id="r1"),
            make_rule("Q1", "equals", "x", "skip_section", target_section="S2", rule_id="r2"),
            make_rule("Q1", "equals", "x", "show_section", target_section="S2", rule_id="r3"),
        ]

        result = evaluate_branching_rules(rules, {"Q1": "x"})

        assert result.hidden_section_ids == set()
        assert result.skipped_section_ids == set()

    def test_order_matters(self):
        show = make_rule("Q1", "equals", "x", "show_section", target_section="S2", rule_id="r1")
        hide = make_rule("Q1", "equals", "x", "hide_section", target_section="S2", rule_id="r2")

        result = evaluate_branching_rules([show, hide], {"Q1": "x"})

        assert is_section_visible("S2", result) is False

    def test_show_without_matching_condition_has_no_effect(self):
        rules = [
            make_rule("Q1", "equals", "x", "hide_section", target_section="S2", rule_id="r1"),
            make_rule("Q2", "equals", "y", "show_section", target_section="S2", rule_id="r2"),
        ]

        result = evaluate_branching_rules(rules, {"Q1": "x", "Q2": "n"})

        assert is_section_visible("S2", result) is False


class TestPermissiveRules:
    """Rules with missing or unknown targets degrade to no-ops."""

    def test_missing_target_is_noop(self):
        rules = [
            make_rule("Q1", "equals", "x", "skip_question"),
            make_rule("Q1", "equals", "x", "hide_section", target_question="Q4"),
        ]

        result = evaluate_branching_rules(rules, {"Q1": "x"})

        assert result.to_dict() == {
            "hidden_section_ids": [],
            "skipped_section_ids": [],
            "skipped_question_ids": [],
            "explanations": {},
        }

    def test_malformed_answer_treated_as_unanswered(self):
        rules = [make_rule("Q1", "not_equals", "x", "skip_question", target_question="Q2")]

        result = evaluate_branching_rules(rules, {"Q1": 42})

        assert is_question_visible("Q2", result) is True

    def test_visibility_consistent_with_sets(self):
        rules = [
            make_rule("Q1", "equals", "a", "hide_section", target_section="S1", rule_id="r1"),
            make_rule("Q1", "equals", "a", "skip_section", target_section="S2", rule_id="r2"),
            make_rule("Q1", "equals", "a", "skip_question", target_question="Q5", rule_id="r3"),
        ]

        result = evaluate_branching_rules(rules, {"Q1": "a"})

        for section_id in result.hidden_section_ids | result.skipped_section_ids:
            assert is_section_visible(section_id, result) is False
        for question_id in result.skipped_question_ids:
            assert is_question_visible(question_id, result) is False


class TestVisibleQuestionIds:
    """Questions visible after branching, in display order."""

    def test_excludes_hidden_sections_and_skipped_questions(self):
        def question(question_id, section_id):
            return Question(id=question_id, section_id=section_id,
                            question_text=question_id,
                            question_type=QuestionType.SINGLE_CHOICE)

        definition = SurveyDefinition(
            survey=Survey(id="sv", title="t", sector=Sector.REFINERS, year=2026, quarter=2),
            sections=(
                Section(id="S1", survey_id="sv", title="a", pillar=Pillar.CONTEXT,
                        questions=(question("Q1", "S1"), question("Q2", "S1"))),
                Section(id="S2", survey_id="sv", title="b", pillar=Pillar.PERFORMANCE,
                        questions=(question("Q3", "S2"),)),
            ),
        )
        rules = [
            make_rule("Q1", "equals", "none", "skip_question", target_question="Q2",
                      rule_id="r1"),
            make_rule("Q1", "equals", "none", "hide_section", target_section="S2",
                      rule_id="r2"),
        ]

        result = evaluate_branching_rules(rules, {"Q1": "none"})

        assert visible_question_ids(definition, result) == ["Q1"]
