"""Tests for the submission repository."""
from dataclasses import replace
from datetime import datetime

import pytest

from sectorpulse.shared.database import DuplicateError
from sectorpulse.shared.models import Answer, Submission, TextAnswer
from sectorpulse.shared.utils import hash_receipt_code
from sectorpulse.services.survey_service.submission_repository import (
    SubmissionRepository,
    SurveyNotActiveError,
)
from sectorpulse.services.survey_service.survey_repository import SurveyRepository

SID = "survey-retail-2026q3"


def row_count(db, table):
    with db.get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(f"SELECT COUNT(*) FROM {table}")
            return cur.fetchone()[0]


def make_submission(survey_id=SID, answers=None):
    return Submission(
        id="sub-1",
        survey_id=survey_id,
        sector="retailers",
        year=2026,
        quarter=3,
        size_band="10-49",
        submitted_at=datetime(2026, 8, 1, 12, 0, 0),
        answers=answers if answers is not None else (
            Answer(
                id="ans-1",
                submission_id="sub-1",
                question_id=f"{SID}-revenue",
                value=TextAnswer("up"),
            ),
        ),
    )


class TestCreate:
    """Tests for atomic submission storage."""

    def test_stores_submission_answers_and_receipt(self, db, saved_survey):
        repo = SubmissionRepository(db)

        repo.create(make_submission(), hash_receipt_code("PULSE-2026Q3-AAAA-BBBB"))

        assert row_count(db, "submissions") == 1
        assert row_count(db, "answers") == 1
        assert row_count(db, "receipt_codes") == 1

    def test_plaintext_code_never_stored(self, db, saved_survey):
        code = "PULSE-2026Q3-AAAA-BBBB"
        SubmissionRepository(db).create(make_submission(), hash_receipt_code(code))

        with db.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT code_hash FROM receipt_codes")
                stored = cur.fetchone()[0]

        assert stored == hash_receipt_code(code)
        assert code not in stored

    def test_retired_survey_rejected(self, db, build_definition):
        SurveyRepository(db).save_definition(build_definition(is_active=False))

        with pytest.raises(SurveyNotActiveError):
            SubmissionRepository(db).create(make_submission(), hash_receipt_code("X"))

        assert row_count(db, "submissions") == 0

    def test_failure_rolls_back_every_row(self, db, saved_survey):
        repo = SubmissionRepository(db)
        duplicate = Answer(
            id="ans-1",
            submission_id="sub-1",
            question_id=f"{SID}-stores",
            value=TextAnswer("1"),
        )
        submission = make_submission(answers=make_submission().answers + (duplicate,))

        with pytest.raises(DuplicateError):
            repo.create(submission, hash_receipt_code("PULSE-2026Q3-AAAA-BBBB"))

        assert row_count(db, "submissions") == 0
        assert row_count(db, "answers") == 0
        assert row_count(db, "receipt_codes") == 0

    def test_receipt_hash_taken(self, db, saved_survey):
        repo = SubmissionRepository(db)
        code_hash = hash_receipt_code("PULSE-2026Q3-AAAA-BBBB")
        repo.create(make_submission(), code_hash)
        second = replace(make_submission(answers=()), id="sub-2")

        with pytest.raises(DuplicateError):
            repo.create(second, code_hash)

        assert row_count(db, "submissions") == 1
        assert repo.find_by_receipt_hash(code_hash).id == "sub-1"


class TestLookups:
    """Tests for receipt lookup and live counts."""

    def test_find_by_receipt_hash(self, db, saved_survey, store_submission):
        stored = store_submission(saved_survey, {f"{SID}-revenue": "up"},
                                  receipt_code="PULSE-2026Q3-ABCD-EFGH")

        found = SubmissionRepository(db).find_by_receipt_hash(
            hash_receipt_code("PULSE-2026Q3-ABCD-EFGH")
        )

        assert found.id == stored.id
        assert found.dimensions == stored.dimensions
        assert found.answers == ()

    def test_unknown_receipt(self, db, saved_survey):
        assert SubmissionRepository(db).find_by_receipt_hash(hash_receipt_code("nope")) is None

    def test_counts(self, db, saved_survey, store_submission):
        store_submission(saved_survey, {}, size_band="1-9")
        store_submission(saved_survey, {}, size_band="10-49")
        store_submission(saved_survey, {}, size_band="10-49")
        repo = SubmissionRepository(db)

        assert repo.count() == 3
        assert repo.count(2026, 3, "retailers", "10-49") == 2
        assert repo.count(2025) == 0
        assert repo.counts_by_sector(2026, 3) == {"retailers": 3}
        assert repo.quarterly_trend(sector="retailers") == [{"year": 2026, "quarter": 3, "count": 3}]
        assert repo.size_band_distribution(2026, 3, "retailers") == {"1-9": 1, "10-49": 2}

    def test_breakdowns_apply_every_filter(self, db, saved_survey, store_submission):
        store_submission(saved_survey, {}, size_band="1-9")
        store_submission(saved_survey, {}, size_band="10-49")
        repo = SubmissionRepository(db)

        assert repo.counts_by_sector(2026, 3, "retailers", "1-9") == {"retailers": 1}
        assert repo.counts_by_sector(sector="refiners") == {}
        assert repo.quarterly_trend(2026, 3, "retailers", "10-49") == [
            {"year": 2026, "quarter": 3, "count": 1}
        ]
        assert repo.quarterly_trend(year=2025) == []
        assert repo.size_band_distribution(2026, 3, "retailers", "1-9") == {"1-9": 1}

    def test_delete_all_counts_per_table(self, db, saved_survey, store_submission):
        store_submission(saved_survey, {f"{SID}-revenue": "up", f"{SID}-stores": "1"})
        repo = SubmissionRepository(db)

        with db.transaction() as conn:
            with conn.cursor() as cur:
                deleted = repo.delete_all(cur)

        assert deleted == {"answers": 2, "receipt_codes": 1, "submissions": 1}
        assert list(deleted) == ["answers", "receipt_codes", "submissions"]
        assert repo.count() == 0
