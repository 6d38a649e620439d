"""Tests for survey definition models."""
from dataclasses import replace

import pytest

from sectorpulse.shared.models import (
    BranchingAction,
    BranchingCondition,
    BranchingRule,
    ConditionOperator,
    Pillar,
    Question,
    QuestionMetadata,
    QuestionOption,
    QuestionType,
    Section,
    Sector,
    Survey,
    SurveyDefinition,
)


def _question(question_id, section_id="s1", options=()):
    return Question(
        id=question_id,
        section_id=section_id,
        question_text=f"Question {question_id}",
        question_type=QuestionType.SINGLE_CHOICE,
        options=tuple(QuestionOption(value, value.upper()) for value in options),
    )


class TestQuestion:
    """Tests for Question."""

    def test_duplicate_option_values_rejected(self):
        with pytest.raises(ValueError):
            _question("q1", options=("a", "a"))

    def test_label_for(self):
        question = _question("q1", options=("a", "b"))

        assert question.label_for("b") == "B"
        assert question.label_for("zzz") == "zzz"

    def test_option_values(self):
        assert _question("q1", options=("a", "b")).option_values == {"a", "b"}


class TestQuestionMetadata:
    """Tests for metadata parsing."""

    def test_recognised_keys(self):
        metadata = QuestionMetadata.from_dict(
            {"max_selections": "3", "total_must_equal_100": True, "colour": "red"}
        )

        assert metadata.max_selections == 3
        assert metadata.total_must_equal_100 is True

    @pytest.mark.parametrize("raw", [None, "many", 0, -2])
    def test_invalid_max_selections_ignored(self, raw):
        assert QuestionMetadata.from_dict({"max_selections": raw}).max_selections is None

    def test_round_trip_omits_defaults(self):
        assert QuestionMetadata().to_dict() == {}


class TestSurvey:
    """Tests for Survey and SurveyDefinition."""

    def test_quarter_validated(self):
        with pytest.raises(ValueError):
            Survey(id="sv", title="t", sector=Sector.RETAILERS, year=2026, quarter=5)

    def test_questions_in_display_order(self):
        survey = Survey(id="sv", title="t", sector=Sector.RETAILERS, year=2026, quarter=1)
        definition = SurveyDefinition(
            survey=survey,
            sections=(
                Section(id="s1", survey_id="sv", title="A", pillar=Pillar.CONTEXT,
                        questions=(_question("q1"), _question("q2"))),
                Section(id="s2", survey_id="sv", title="B", pillar=Pillar.PERFORMANCE,
                        questions=(_question("q3", section_id="s2"),)),
            ),
        )

        assert [q.id for q in definition.questions] == ["q1", "q2", "q3"]
        assert definition.section_for_question("q3").id == "s2"
        assert definition.section_for_question("missing") is None

    def test_size_band_question_is_first_context_band_select(self):
        survey = Survey(id="sv", title="t", sector=Sector.RETAILERS, year=2026, quarter=1)
        band = replace(_question("q2", options=("1-9", "10-49")),
                       question_type=QuestionType.BAND_SELECT)
        later_band = replace(band, id="q3", section_id="s2")
        definition = SurveyDefinition(
            survey=survey,
            sections=(
                Section(id="s2", survey_id="sv", title="B", pillar=Pillar.PERFORMANCE,
                        questions=(later_band,)),
                Section(id="s1", survey_id="sv", title="A", pillar=Pillar.CONTEXT,
                        questions=(_question("q1"), band)),
            ),
        )

        assert definition.size_band_question().id == "q2"
        assert SurveyDefinition(survey=survey).size_band_question() is None

    def test_sector_values(self):
        assert "diamond_dealers" in Sector.values()
        assert len(Sector.values()) == 5


class TestBranchingRule:
    """Tests for rule target resolution."""

    def test_target_depends_on_action(self):
        condition = BranchingCondition(ConditionOperator.EQUALS, "x")
        section_rule = BranchingRule(
            id="r1", source_question_id="q1", condition=condition,
            action=BranchingAction.HIDE_SECTION,
            target_section_id="s2", target_question_id="q9",
        )
        question_rule = BranchingRule(
            id="r2", source_question_id="q1", condition=condition,
            action=BranchingAction.SKIP_QUESTION, target_section_id="s2",
        )

        assert section_rule.target_id == "s2"
        assert question_rule.target_id is None

    def test_condition_from_dict(self):
        condition = BranchingCondition.from_dict({"operator": "includes", "value": "gold"})

        assert condition.operator is ConditionOperator.INCLUDES
        assert condition.value == "gold"
