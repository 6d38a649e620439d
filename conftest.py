"""Shared pytest fixtures.

SQL paths run against an in-memory SQLite database that speaks the same
``%s`` placeholder style as psycopg2, so repositories, the aggregation
engine and the Flask handlers are exercised without a PostgreSQL server.
"""
import itertools
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta

import pytest

from sectorpulse.shared.database import (
    ConnectionManager,
    DatabaseConfig,
    create_schema,
    set_connection_manager,
)
from sectorpulse.shared.models import (
    Answer,
    BranchingAction,
    BranchingCondition,
    BranchingRule,
    ConditionOperator,
    PREFER_NOT_TO_ANSWER,
    Pillar,
    Question,
    QuestionMetadata,
    QuestionOption,
    QuestionType,
    Section,
    Sector,
    Submission,
    Survey,
    SurveyDefinition,
    parse_answer_value,
)
from sectorpulse.shared.utils import hash_receipt_code
from sectorpulse.services.analytics_service.tasks import celery_app
from sectorpulse.services.survey_service.submission_repository import SubmissionRepository
from sectorpulse.services.survey_service.survey_repository import SurveyRepository

sqlite3.register_adapter(datetime, lambda value: value.isoformat())
sqlite3.register_converter("TIMESTAMP", lambda raw: datetime.fromisoformat(raw.decode()))


class SQLiteCursor:
    """psycopg2-style cursor over a sqlite3 cursor."""

    def __init__(self, cursor: sqlite3.Cursor):
        self._cursor = cursor

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self._cursor.close()
        return False

    def execute(self, query, params=None):
        self._cursor.execute(query.replace("%s", "?"), tuple(params or ()))

    def fetchone(self):
        return self._cursor.fetchone()

    def fetchall(self):
        return self._cursor.fetchall()

    @property
    def rowcount(self):
        return self._cursor.rowcount


class SQLiteConnection:
    """psycopg2-style connection over a shared sqlite3 connection."""

    def __init__(self, connection: sqlite3.Connection):
        self._connection = connection

    def cursor(self):
        return SQLiteCursor(self._connection.cursor())

    def commit(self):
        self._connection.commit()

    def rollback(self):
        self._connection.rollback()


class SQLiteConnectionManager(ConnectionManager):
    """ConnectionManager backed by one in-memory SQLite connection."""

    def __init__(self):
        super().__init__(DatabaseConfig(host="sqlite", database=":memory:"))
        self._sqlite = None

    def initialize(self) -> None:
        if self._initialized:
            return
        self._sqlite = sqlite3.connect(
            ":memory:",
            check_same_thread=False,
            detect_types=sqlite3.PARSE_DECLTYPES,
        )
        self._sqlite.execute("PRAGMA foreign_keys = ON")
        self._initialized = True

    @contextmanager
    def get_connection(self):
        if not self._initialized:
            self.initialize()
        yield SQLiteConnection(self._sqlite)

    def integrity_errors(self):
        return (sqlite3.IntegrityError,)

    def close(self) -> None:
        if self._sqlite is not None:
            self._sqlite.close()
        self._sqlite = None
        self._initialized = False


@pytest.fixture(autouse=True)
def clear_k_threshold(monkeypatch):
    """Tests run with the default threshold unless they set one."""
    monkeypatch.delenv("K_ANONYMITY_THRESHOLD", raising=False)


@pytest.fixture(autouse=True)
def clear_llm_settings(monkeypatch):
    """Handlers build no LLM client unless a test injects one."""
    for name in ("LLM_PROVIDER", "LLM_MODEL", "LLM_API_KEY", "ANTHROPIC_API_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def eager_celery():
    """Run queued cache refreshes inline."""
    previous = celery_app.conf.task_always_eager
    celery_app.conf.task_always_eager = True
    yield
    celery_app.conf.task_always_eager = previous


@pytest.fixture
def db():
    """Fresh in-memory database with the full schema."""
    manager = SQLiteConnectionManager()
    create_schema(manager)
    set_connection_manager(manager)
    yield manager
    set_connection_manager(None)
    manager.close()


def build_retail_definition(survey_id="survey-retail-2026q3", is_active=True):
    """Retailer survey used across the test suite.

    Sections: context (employee size band, store count, sales channels),
    performance (revenue trend, metal mix), online (online share), outlook
    (free text). Not selling online skips the online section.
    """
    survey = Survey(
        id=survey_id,
        title="Retailers Q3 2026",
        sector=Sector.RETAILERS,
        year=2026,
        quarter=3,
        is_active=is_active,
        created_at=datetime(2026, 7, 1, 9, 0, 0),
    )

    def options(*values):
        return tuple(QuestionOption(value=v, label=v.title()) for v in values)

    sections = (
        Section(
            id=f"{survey_id}-context",
            survey_id=survey_id,
            title="Business context",
            pillar=Pillar.CONTEXT,
            questions=(
                Question(
                    id=f"{survey_id}-size",
                    section_id=f"{survey_id}-context",
                    question_text="How many people do you employ?",
                    question_type=QuestionType.BAND_SELECT,
                    options=options("1-9", "10-49", "50+") + (
                        QuestionOption(value=PREFER_NOT_TO_ANSWER, label="Prefer not to answer"),
                    ),
                    is_required=True,
                ),
                Question(
                    id=f"{survey_id}-stores",
                    section_id=f"{survey_id}-context",
                    question_text="How many stores do you operate?",
                    question_type=QuestionType.SINGLE_CHOICE,
                    options=options("1", "2-5", "6+"),
                    is_required=True,
                ),
                Question(
                    id=f"{survey_id}-channels",
                    section_id=f"{survey_id}-context",
                    question_text="Which sales channels do you use?",
                    question_type=QuestionType.MULTI_CHOICE,
                    options=options("store", "online", "wholesale"),
                    is_required=True,
                    metadata=QuestionMetadata(max_selections=2),
                ),
            ),
        ),
        Section(
            id=f"{survey_id}-performance",
            survey_id=survey_id,
            title="Performance",
            pillar=Pillar.PERFORMANCE,
            questions=(
                Question(
                    id=f"{survey_id}-revenue",
                    section_id=f"{survey_id}-performance",
                    question_text="How did revenue change versus last quarter?",
                    question_type=QuestionType.SINGLE_CHOICE,
                    options=options("up", "flat", "down"),
                    is_required=True,
                ),
                Question(
                    id=f"{survey_id}-mix",
                    section_id=f"{survey_id}-performance",
                    question_text="What share of sales came from each metal?",
                    question_type=QuestionType.PERCENTAGE_SPLIT,
                    options=options("gold", "platinum", "silver"),
                    metadata=QuestionMetadata(total_must_equal_100=True),
                ),
            ),
        ),
        Section(
            id=f"{survey_id}-online",
            survey_id=survey_id,
            title="Online sales",
            pillar=Pillar.MIX_VOLUMES,
            questions=(
                Question(
                    id=f"{survey_id}-online-share",
                    section_id=f"{survey_id}-online",
                    question_text="What share of revenue is online?",
                    question_type=QuestionType.BAND_SELECT,
                    options=options("0-10", "10-50", "50+"),
                    is_required=True,
                ),
            ),
        ),
        Section(
            id=f"{survey_id}-outlook",
            survey_id=survey_id,
            title="Outlook",
            pillar=Pillar.CONSTRAINTS_OUTLOOK,
            questions=(
                Question(
                    id=f"{survey_id}-outlook-notes",
                    section_id=f"{survey_id}-outlook",
                    question_text="Anything else we should know?",
                    question_type=QuestionType.FREE_TEXT,
                ),
            ),
        ),
    )

    rules = (
        BranchingRule(
            id=f"{survey_id}-rule-online",
            source_question_id=f"{survey_id}-channels",
            condition=BranchingCondition(ConditionOperator.NOT_INCLUDES, "online"),
            action=BranchingAction.SKIP_SECTION,
            target_section_id=f"{survey_id}-online",
            explanation="Online questions only apply to online sellers.",
        ),
    )

    return SurveyDefinition(survey=survey, sections=sections, rules=rules)


@pytest.fixture
def retail_definition():
    """Unsaved retailer survey definition."""
    return build_retail_definition()


@pytest.fixture
def saved_survey(db):
    """Retailer survey stored in the test database."""
    return SurveyRepository(db).save_definition(build_retail_definition())


@pytest.fixture
def store_submission(db):
    """Factory storing a submission directly, without validation.

    Usage:
        store_submission(definition, {"q1": "14ct"}, size_band="10-49")
    """
    repository = SubmissionRepository(db)
    counter = itertools.count(1)

    def _store(definition, answers, size_band="10-49", receipt_code=None):
        n = next(counter)
        survey = definition.survey
        submission_id = f"sub-{survey.id}-{n}"
        submitted_at = datetime(2026, 8, 1, 12, 0, 0) + timedelta(minutes=n)
        submission = Submission(
            id=submission_id,
            survey_id=survey.id,
            sector=survey.sector.value,
            year=survey.year,
            quarter=survey.quarter,
            size_band=size_band,
            submitted_at=submitted_at,
            answers=tuple(
                Answer(
                    id=f"{submission_id}-{question_id}",
                    submission_id=submission_id,
                    question_id=question_id,
                    value=parse_answer_value(raw),
                    created_at=submitted_at,
                )
                for question_id, raw in answers.items()
            ),
        )
        code = receipt_code or f"PULSE-{survey.year}Q{survey.quarter}-TEST-{n:04d}"
        return repository.create(submission, hash_receipt_code(code))

    return _store


@pytest.fixture
def build_definition():
    """Builder for retailer definitions with a custom id or active flag."""
    return build_retail_definition
