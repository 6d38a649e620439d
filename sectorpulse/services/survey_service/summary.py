"""Plain-language recap of a respondent's own answers.

Shown to the respondent before they submit, either for one section or for
the whole survey. Question text and option labels come from the stored
definition; only the answers come from the client.
"""
from typing import List, Mapping, Optional

from sectorpulse.shared.models import (
    AnswerValue,
    ChoiceListAnswer,
    PercentageSplitAnswer,
    Question,
    Section,
    SurveyDefinition,
    TextAnswer,
)

SECTION_MAX_TOKENS = 256
FULL_MAX_TOKENS = 1024

SECTION_SYSTEM_PROMPT = (
    "You are a friendly survey assistant for an industry association. Write 2-3 "
    "sentences summarising what the respondent answered in this survey section. "
    "Be conversational and use plain language. Do not use markdown headings. "
    'Address the respondent as "you".'
)

FULL_SYSTEM_PROMPT = (
    "You are a friendly survey assistant for an industry association. Write a "
    "clear, conversational summary of the respondent's complete survey submission. "
    "Structure it with a brief intro, then a short paragraph per section. Use plain "
    "language. Highlight any notable patterns. Keep it under 300 words. Do not use "
    "markdown headings; use bold text for section names instead. Address the "
    'respondent as "you".'
)


def format_answer(question: Question, answer: AnswerValue) -> str:
    """Render an answer with option labels in place of stored values."""
    if isinstance(answer, TextAnswer):
        return question.label_for(answer.value)
    if isinstance(answer, ChoiceListAnswer):
        return ", ".join(question.label_for(value) for value in answer.values)
    if isinstance(answer, PercentageSplitAnswer):
        return ", ".join(
            f"{question.label_for(key)}: {share:g}%"
            for key, share in answer.shares.items()
            if share > 0
        )
    return str(answer.to_json())


def _section_lines(section: Section, answers: Mapping[str, AnswerValue]) -> List[str]:
    return [
        f"- {question.question_text}: {format_answer(question, answers[question.id])}"
        for question in section.questions
        if question.id in answers
    ]


def build_section_prompt(section: Section, answers: Mapping[str, AnswerValue]) -> Optional[str]:
    """Prompt for one section, or None when nothing in it was answered."""
    lines = _section_lines(section, answers)
    if not lines:
        return None
    header = f'Survey section: "{section.title}" ({section.pillar.value})'
    return "\n".join([header, "", "Responses:"] + lines)


def build_full_prompt(
    definition: SurveyDefinition,
    answers: Mapping[str, AnswerValue],
) -> Optional[str]:
    """Prompt for the whole survey, or None when nothing was answered."""
    blocks = []
    for section in definition.sections:
        lines = _section_lines(section, answers)
        if lines:
            blocks.append(
                "\n".join([f'Section: "{section.title}" ({section.pillar.value})'] + lines)
            )
    if not blocks:
        return None

    sector = definition.survey.sector.label
    return "\n\n".join([f"Complete survey submission for the {sector} sector."] + blocks)
