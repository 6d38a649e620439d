"""Survey definition repository.

Stores and loads surveys with their sections, questions and branching
rules. Sort orders are assigned here (dense, 1-based, in the order given)
and rules keep their authored order through ``rule_order``.
"""
import json
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from sectorpulse.shared.database import BaseRepository, ConnectionManager
from sectorpulse.shared.models import (
    BranchingAction,
    BranchingCondition,
    BranchingRule,
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

logger = logging.getLogger(__name__)


class SurveyRepository(BaseRepository[Survey]):
    """Repository for surveys and their static definitions."""

    columns = ("id", "title", "sector", "year", "quarter", "is_active", "created_at")

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, table_name="surveys")

    def _row_to_entity(self, row: tuple) -> Survey:
        return Survey(
            id=row[0],
            title=row[1],
            sector=Sector(row[2]),
            year=row[3],
            quarter=row[4],
            is_active=bool(row[5]),
            created_at=row[6],
        )

    def _entity_to_params(self, entity: Survey) -> Dict[str, Any]:
        return {
            "id": entity.id,
            "title": entity.title,
            "sector": entity.sector.value,
            "year": entity.year,
            "quarter": entity.quarter,
            "is_active": entity.is_active,
            "created_at": entity.created_at,
        }

    @staticmethod
    def normalize_definition(definition: SurveyDefinition) -> SurveyDefinition:
        """Assign dense sort orders and propagate the survey id."""
        survey_id = definition.survey.id
        sections = []
        for section_order, section in enumerate(definition.sections, start=1):
            questions = tuple(
                replace(question, section_id=section.id, sort_order=question_order)
                for question_order, question in enumerate(section.questions, start=1)
            )
            sections.append(replace(
                section,
                survey_id=survey_id,
                sort_order=section_order,
                questions=questions,
            ))

        rules = tuple(
            replace(rule, survey_id=survey_id, rule_order=rule_order)
            for rule_order, rule in enumerate(definition.rules, start=1)
        )
        return SurveyDefinition(survey=definition.survey, sections=tuple(sections), rules=rules)

    def save_definition(self, definition: SurveyDefinition) -> SurveyDefinition:
        """Store a complete survey definition in one transaction.

        Args:
            definition: Survey, sections (in display order) and rules (in
                evaluation order)

        Returns:
            The stored definition with sort orders assigned
        """
        definition = self.normalize_definition(definition)

        with self.connection_manager.transaction() as conn:
            with conn.cursor() as cur:
                self.save(definition.survey, cursor=cur)

                for section in definition.sections:
                    cur.execute(
                        "INSERT INTO survey_sections "
                        "(id, survey_id, title, description, sort_order, pillar) "
                        "VALUES (%s, %s, %s, %s, %s, %s)",
                        (section.id, section.survey_id, section.title,
                         section.description, section.sort_order, section.pillar.value)
                    )
                    for question in section.questions:
                        cur.execute(
                            "INSERT INTO questions "
                            "(id, section_id, question_text, question_type, options, "
                            "is_required, sort_order, metadata) "
                            "VALUES (%s, %s, %s, %s, %s, %s, %s, %s)",
                            (
                                question.id,
                                question.section_id,
                                question.question_text,
                                question.question_type.value,
                                json.dumps([option.to_dict() for option in question.options]),
                                question.is_required,
                                question.sort_order,
                                json.dumps(question.metadata.to_dict()),
                            )
                        )

                for rule in definition.rules:
                    cur.execute(
                        "INSERT INTO branching_rules "
                        "(id, survey_id, rule_order, source_question_id, condition, action, "
                        "target_section_id, target_question_id, explanation) "
                        "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)",
                        (
                            rule.id,
                            rule.survey_id,
                            rule.rule_order,
                            rule.source_question_id,
                            json.dumps(rule.condition.to_dict()),
                            rule.action.value,
                            rule.target_section_id,
                            rule.target_question_id,
                            rule.explanation,
                        )
                    )

        logger.info(
            "SURVEY_DEFINITION_SAVED",
            extra={
                "survey_id": definition.survey.id,
                "sector": definition.survey.sector.value,
                "sections": len(definition.sections),
                "questions": len(definition.questions),
                "rules": len(definition.rules),
            }
        )
        return definition

    def find_active_by_sector(self, sector: Sector) -> Optional[Survey]:
        """Newest active survey for a sector, if any."""
        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {self.select_columns} FROM surveys "
                    "WHERE sector = %s AND is_active = %s "
                    "ORDER BY year DESC, quarter DESC LIMIT 1",
                    (sector.value, True)
                )
                row = cur.fetchone()

        return self._row_to_entity(row) if row else None

    @staticmethod
    def _load_json(value: Any, default: Any) -> Any:
        if value is None:
            return default
        if isinstance(value, str):
            return json.loads(value)
        return value

    def _load(self, cur, survey_id: str) -> Optional[SurveyDefinition]:
        cur.execute(
            f"SELECT {self.select_columns} FROM surveys WHERE id = %s",
            (survey_id,)
        )
        row = cur.fetchone()
        if row is None:
            return None
        survey = self._row_to_entity(row)

        cur.execute(
            "SELECT q.id, q.section_id, q.question_text, q.question_type, q.options, "
            "q.is_required, q.sort_order, q.metadata "
            "FROM questions q JOIN survey_sections ss ON ss.id = q.section_id "
            "WHERE ss.survey_id = %s ORDER BY ss.sort_order, q.sort_order",
            (survey_id,)
        )
        questions_by_section: Dict[str, List[Question]] = {}
        for q in cur.fetchall():
            question = Question(
                id=q[0],
                section_id=q[1],
                question_text=q[2],
                question_type=QuestionType(q[3]),
                options=tuple(
                    QuestionOption.from_dict(option) for option in self._load_json(q[4], [])
                ),
                is_required=bool(q[5]),
                sort_order=q[6],
                metadata=QuestionMetadata.from_dict(self._load_json(q[7], {})),
            )
            questions_by_section.setdefault(question.section_id, []).append(question)

        cur.execute(
            "SELECT id, survey_id, title, description, sort_order, pillar "
            "FROM survey_sections WHERE survey_id = %s ORDER BY sort_order",
            (survey_id,)
        )
        sections = tuple(
            Section(
                id=s[0],
                survey_id=s[1],
                title=s[2],
                description=s[3],
                sort_order=s[4],
                pillar=Pillar(s[5]),
                questions=tuple(questions_by_section.get(s[0], [])),
            )
            for s in cur.fetchall()
        )

        cur.execute(
            "SELECT id, survey_id, rule_order, source_question_id, condition, action, "
            "target_section_id, target_question_id, explanation "
            "FROM branching_rules WHERE survey_id = %s ORDER BY rule_order",
            (survey_id,)
        )
        rules = tuple(
            BranchingRule(
                id=r[0],
                survey_id=r[1],
                rule_order=r[2],
                source_question_id=r[3],
                condition=BranchingCondition.from_dict(self._load_json(r[4], {})),
                action=BranchingAction(r[5]),
                target_section_id=r[6],
                target_question_id=r[7],
                explanation=r[8],
            )
            for r in cur.fetchall()
        )

        return SurveyDefinition(survey=survey, sections=sections, rules=rules)

    def load_definition(self, survey_id: str, cursor=None) -> Optional[SurveyDefinition]:
        """Load a survey with sections, questions and rules in order.

        Returns:
            SurveyDefinition, or None if the survey does not exist
        """
        if cursor is not None:
            return self._load(cursor, survey_id)

        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                return self._load(cur, survey_id)

    def get_active_definition(self, sector: Sector) -> Optional[SurveyDefinition]:
        """Definition of the newest active survey for a sector."""
        survey = self.find_active_by_sector(sector)
        if survey is None:
            return None
        return self.load_definition(survey.id)
