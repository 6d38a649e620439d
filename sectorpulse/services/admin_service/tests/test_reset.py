"""Tests for the data reset."""
from unittest.mock import MagicMock

import pytest

from sectorpulse.shared.models import Sector
from sectorpulse.services.admin_service.reset import (
    RESET_CONFIRMATION,
    DataResetService,
    ResetConfirmationError,
)
from sectorpulse.services.analytics_service.aggregation import AggregationEngine
from sectorpulse.services.analytics_service.cache_keys import build_cache_key
from sectorpulse.services.analytics_service.cache_repository import CacheRepository
from sectorpulse.services.audit_service import AuditAction, AuditRepository
from sectorpulse.services.survey_service.submission_repository import SubmissionRepository
from sectorpulse.services.survey_service.survey_repository import SurveyRepository

SID = "survey-retail-2026q3"


def table_count(db, table):
    with db.get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT COUNT(*) FROM {table}")
            return cur.fetchone()[0]


@pytest.fixture
def filled(db, saved_survey, store_submission):
    """Three submissions with answers and a refreshed cache."""
    for trend in ("up", "flat", "down"):
        store_submission(saved_survey, {f"{SID}-revenue": trend, f"{SID}-stores": "1"})
    AggregationEngine(db).refresh_cache_for_submission(SID, "retailers", 2026, 3, "10-49")
    return saved_survey


class TestReset:
    """Tests for DataResetService.reset."""

    def test_removes_submission_data(self, db, filled):
        cache_rows = CacheRepository(db).count()

        deleted = DataResetService(db).reset(RESET_CONFIRMATION, actor_id="admin-1")

        assert deleted == {
            "answers": 6,
            "receipt_codes": 3,
            "submissions": 3,
            "aggregates_cache": cache_rows,
        }
        for table in ("answers", "receipt_codes", "submissions", "aggregates_cache"):
            assert table_count(db, table) == 0

    def test_definitions_untouched(self, db, filled):
        DataResetService(db).reset(RESET_CONFIRMATION, actor_id="admin-1")

        definition = SurveyRepository(db).get_active_definition(Sector.RETAILERS)
        assert definition is not None
        assert len(definition.questions) == 7
        assert len(definition.rules) == 1

    def test_aggregation_after_reset_is_empty(self, db, filled):
        DataResetService(db).reset(RESET_CONFIRMATION, actor_id="admin-1")

        aggregation = AggregationEngine(db).compute_aggregation(
            f"{SID}-revenue", SID, "retailers", 2026, 3
        )
        assert aggregation.response_count == 0
        assert CacheRepository(db).read(
            build_cache_key(2026, 3, "retailers", f"{SID}-revenue")
        ) is None

    def test_audit_entry_written(self, db, filled):
        deleted = DataResetService(db).reset(RESET_CONFIRMATION, actor_id="admin-1")

        entries = AuditRepository(db).query(action=AuditAction.DATABASE_RESET)
        assert len(entries) == 1
        assert entries[0].actor_id == "admin-1"
        assert entries[0].details == {"deleted": deleted}

    @pytest.mark.parametrize("phrase", ["", "delete all survey data", "DELETE ALL SURVEY DATA "])
    def test_wrong_phrase_leaves_data(self, db, filled, phrase):
        with pytest.raises(ResetConfirmationError):
            DataResetService(db).reset(phrase, actor_id="admin-1")

        assert SubmissionRepository(db).count() == 3
        assert AuditRepository(db).query() == []

    def test_failure_rolls_back_everything(self, db, filled):
        audit_logger = MagicMock()
        audit_logger.log.side_effect = RuntimeError("audit store down")

        with pytest.raises(RuntimeError):
            DataResetService(db, audit_logger=audit_logger).reset(
                RESET_CONFIRMATION, actor_id="admin-1"
            )

        assert SubmissionRepository(db).count() == 3
        assert table_count(db, "answers") == 6
        assert CacheRepository(db).count() > 0
