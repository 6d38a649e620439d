"""Relational schema for surveys, raw submissions and the aggregate cache.

The DDL sticks to portable column types (JSON payloads are stored as TEXT)
so the same statements run on PostgreSQL in production and on SQLite in
the test suite.
"""
import logging
from typing import Tuple

from .connection import ConnectionManager

logger = logging.getLogger(__name__)


SCHEMA_STATEMENTS: Tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS surveys (
        id VARCHAR(64) PRIMARY KEY,
        title TEXT NOT NULL,
        sector VARCHAR(64) NOT NULL,
        year INTEGER NOT NULL,
        quarter INTEGER NOT NULL CHECK (quarter BETWEEN 1 AND 4),
        is_active BOOLEAN NOT NULL,
        created_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS survey_sections (
        id VARCHAR(64) PRIMARY KEY,
        survey_id VARCHAR(64) NOT NULL REFERENCES surveys (id),
        title TEXT NOT NULL,
        description TEXT,
        sort_order INTEGER NOT NULL,
        pillar VARCHAR(32) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS questions (
        id VARCHAR(64) PRIMARY KEY,
        section_id VARCHAR(64) NOT NULL REFERENCES survey_sections (id),
        question_text TEXT NOT NULL,
        question_type VARCHAR(32) NOT NULL,
        options TEXT,
        is_required BOOLEAN NOT NULL,
        sort_order INTEGER NOT NULL,
        metadata TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS branching_rules (
        id VARCHAR(64) PRIMARY KEY,
        survey_id VARCHAR(64) NOT NULL REFERENCES surveys (id),
        rule_order INTEGER NOT NULL,
        source_question_id VARCHAR(64) NOT NULL,
        condition TEXT NOT NULL,
        action VARCHAR(32) NOT NULL,
        target_section_id VARCHAR(64),
        target_question_id VARCHAR(64),
        explanation TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS submissions (
        id VARCHAR(64) PRIMARY KEY,
        survey_id VARCHAR(64) NOT NULL REFERENCES surveys (id),
        sector VARCHAR(64) NOT NULL,
        year INTEGER NOT NULL,
        quarter INTEGER NOT NULL,
        size_band VARCHAR(64) NOT NULL,
        submitted_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS answers (
        id VARCHAR(64) PRIMARY KEY,
        submission_id VARCHAR(64) NOT NULL REFERENCES submissions (id),
        question_id VARCHAR(64) NOT NULL,
        answer_value TEXT,
        answer_values TEXT,
        created_at TIMESTAMP NOT NULL,
        CHECK (answer_value IS NULL OR answer_values IS NULL)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS receipt_codes (
        id VARCHAR(64) PRIMARY KEY,
        code_hash VARCHAR(64) NOT NULL UNIQUE,
        submission_id VARCHAR(64) NOT NULL UNIQUE REFERENCES submissions (id),
        created_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS aggregates_cache (
        cache_key VARCHAR(255) PRIMARY KEY,
        key_scheme VARCHAR(16) NOT NULL,
        year INTEGER NOT NULL,
        quarter INTEGER NOT NULL,
        sector VARCHAR(64) NOT NULL,
        question_id VARCHAR(64) NOT NULL,
        size_band VARCHAR(64),
        dimensions TEXT NOT NULL,
        result TEXT NOT NULL,
        response_count INTEGER NOT NULL,
        computed_at TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS admin_audit_log (
        entry_id VARCHAR(64) PRIMARY KEY,
        performed_at TIMESTAMP NOT NULL,
        action VARCHAR(64) NOT NULL,
        actor_id VARCHAR(128) NOT NULL,
        details TEXT NOT NULL,
        previous_hash VARCHAR(64) NOT NULL,
        entry_hash VARCHAR(64) NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sections_survey ON survey_sections (survey_id, sort_order)",
    "CREATE INDEX IF NOT EXISTS idx_questions_section ON questions (section_id, sort_order)",
    "CREATE INDEX IF NOT EXISTS idx_rules_survey ON branching_rules (survey_id, rule_order)",
    "CREATE INDEX IF NOT EXISTS idx_submissions_dimensions "
    "ON submissions (survey_id, sector, year, quarter, size_band)",
    "CREATE INDEX IF NOT EXISTS idx_answers_question ON answers (question_id, submission_id)",
    "CREATE INDEX IF NOT EXISTS idx_cache_dimensions "
    "ON aggregates_cache (year, quarter, sector, size_band)",
)


def create_schema(connection_manager: ConnectionManager) -> int:
    """Create all tables and indexes that do not exist yet.

    Args:
        connection_manager: Database connection manager

    Returns:
        Number of statements executed
    """
    with connection_manager.transaction() as conn:
        with conn.cursor() as cur:
            for statement in SCHEMA_STATEMENTS:
                cur.execute(statement)

    logger.info(
        "SCHEMA_CREATED",
        extra={"statement_count": len(SCHEMA_STATEMENTS)}
    )
    return len(SCHEMA_STATEMENTS)
