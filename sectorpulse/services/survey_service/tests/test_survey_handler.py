"""Tests for Survey Service HTTP handler."""
import re
from unittest.mock import MagicMock

import pytest

from sectorpulse.shared.database import DuplicateError
from sectorpulse.shared.utils import hash_receipt_code
from sectorpulse.services.analytics_service.cache_keys import build_cache_key
from sectorpulse.services.analytics_service.cache_repository import CacheRepository
from sectorpulse.services.survey_service.config import SurveyConfig
from sectorpulse.services.survey_service.handler import SurveyHandler, app, set_handler
from sectorpulse.services.survey_service.submission_repository import SubmissionRepository

SID = "survey-retail-2026q3"
RECEIPT_PATTERN = re.compile(r"^PULSE-2026Q3-[A-Z2-9]{4}-[A-Z2-9]{4}$")


def q(name):
    return f"{SID}-{name}"


def payload(**overrides):
    body = {
        "survey_id": SID,
        "sector": "retailers",
        "size_band": "10-49",
        "answers": {
            q("size"): "10-49",
            q("stores"): "2-5",
            q("channels"): ["store"],
            q("revenue"): "up",
            q("online-share"): "50+",
        },
    }
    body.update(overrides)
    return body


@pytest.fixture
def client():
    """Flask test client."""
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


@pytest.fixture
def dispatcher():
    mock = MagicMock()
    mock.dispatch.return_value = "task-1"
    return mock


@pytest.fixture
def handler(db, saved_survey, dispatcher):
    """Handler wired to the test database."""
    h = SurveyHandler(connection_manager=db, dispatcher=dispatcher, config=SurveyConfig())
    set_handler(h)
    yield h
    set_handler(None)


class TestHealthEndpoints:
    """Tests for /health and /ready."""

    def test_health_returns_200(self, client, handler):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.get_json()["service"] == "survey-service"

    def test_ready_checks_database(self, client, handler):
        response = client.get("/ready")

        assert response.status_code == 200
        assert response.get_json()["status"] == "ready"


class TestGetSurvey:
    """Tests for GET /surveys/<sector>."""

    def test_returns_ordered_definition(self, client, handler):
        response = client.get("/surveys/retailers")

        assert response.status_code == 200
        data = response.get_json()
        assert data["id"] == SID
        assert [s["sort_order"] for s in data["sections"]] == [1, 2, 3, 4]
        assert data["sections"][0]["questions"][0]["id"] == q("size")
        assert data["branching_rules"][0]["action"] == "skip_section"

    def test_invalid_sector(self, client, handler):
        assert client.get("/surveys/bakers").status_code == 400

    def test_no_active_survey(self, client, handler):
        assert client.get("/surveys/refiners").status_code == 404


class TestSubmit:
    """Tests for POST /submissions."""

    def test_returns_receipt_once(self, client, handler, db):
        response = client.post("/submissions", json=payload())

        assert response.status_code == 201
        data = response.get_json()
        assert RECEIPT_PATTERN.match(data["receipt_code"])
        assert data["submitted_at"].endswith("Z")

        found = SubmissionRepository(db).find_by_receipt_hash(
            hash_receipt_code(data["receipt_code"])
        )
        assert found.id == data["submission_id"]
        assert found.size_band == "10-49"

    def test_hidden_answers_not_stored(self, client, handler, db):
        client.post("/submissions", json=payload())

        with db.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT question_id FROM answers ORDER BY question_id")
                stored = [row[0] for row in cur.fetchall()]

        assert q("online-share") not in stored
        assert sorted(stored) == sorted([q("size"), q("stores"), q("channels"), q("revenue")])

    def test_refresh_dispatched_after_commit(self, client, handler, dispatcher, db):
        def check_committed(submission):
            assert SubmissionRepository(db).count() == 1
            return "task-1"

        dispatcher.dispatch.side_effect = check_committed

        response = client.post("/submissions", json=payload())

        assert response.status_code == 201
        dispatcher.dispatch.assert_called_once()
        submission = dispatcher.dispatch.call_args[0][0]
        assert submission.sector == "retailers"
        assert (submission.year, submission.quarter) == (2026, 3)

    def test_enqueue_failure_does_not_fail_submission(self, client, handler, dispatcher):
        dispatcher.dispatch.return_value = None

        response = client.post("/submissions", json=payload())

        assert response.status_code == 201

    def test_invalid_answers_rejected(self, client, handler, dispatcher):
        body = payload()
        body["answers"][q("revenue")] = "sideways"

        response = client.post("/submissions", json=body)

        assert response.status_code == 400
        details = response.get_json()["details"]
        assert details[0]["field"] == f"answers.{q('revenue')}"
        dispatcher.dispatch.assert_not_called()

    @pytest.mark.parametrize("size_band", ["37", "prefer_not_to_answer", "1-9"])
    def test_size_band_must_match_size_question(self, client, handler, dispatcher, size_band):
        response = client.post("/submissions", json=payload(size_band=size_band))

        assert response.status_code == 400
        fields = [detail["field"] for detail in response.get_json()["details"]]
        assert fields == ["size_band"]
        dispatcher.dispatch.assert_not_called()

    def test_sector_mismatch(self, client, handler):
        response = client.post("/submissions", json=payload(sector="refiners"))

        assert response.status_code == 400

    def test_unknown_survey(self, client, handler):
        response = client.post("/submissions", json=payload(survey_id="nope"))

        assert response.status_code == 404

    def test_empty_body(self, client, handler):
        response = client.post("/submissions", data="", content_type="application/json")

        assert response.status_code == 400

    def test_receipt_collision_retried(self, client, handler, db, monkeypatch):
        codes = iter([
            "PULSE-2026Q3-AAAA-AAAA", "PULSE-2026Q3-AAAA-AAAA", "PULSE-2026Q3-BBBB-BBBB",
        ])
        monkeypatch.setattr(
            "sectorpulse.services.survey_service.handler.generate_receipt_code",
            lambda *args: next(codes),
        )

        first = client.post("/submissions", json=payload())
        second = client.post("/submissions", json=payload())

        assert first.get_json()["receipt_code"] == "PULSE-2026Q3-AAAA-AAAA"
        assert second.status_code == 201
        assert second.get_json()["receipt_code"] == "PULSE-2026Q3-BBBB-BBBB"
        assert SubmissionRepository(db).count() == 2

    def test_repeated_collisions_fail(self, client, handler, dispatcher):
        handler.submission_repository = MagicMock()
        handler.submission_repository.create.side_effect = DuplicateError("taken")

        response = client.post("/submissions", json=payload())

        assert response.status_code == 500
        assert handler.submission_repository.create.call_count == 3
        dispatcher.dispatch.assert_not_called()

    def test_unexpected_error_is_generic(self, client, handler):
        handler.submission_repository = MagicMock()
        handler.submission_repository.create.side_effect = RuntimeError("disk on fire")

        response = client.post("/submissions", json=payload())

        assert response.status_code == 500
        assert response.get_json() == {"error": "Failed to store submission"}


class TestSubmitWithBackgroundRefresh:
    """Submission followed by an eager Celery cache refresh."""

    def test_cache_rows_written_for_both_slices(self, client, db, saved_survey):
        set_handler(SurveyHandler(connection_manager=db))
        try:
            response = client.post("/submissions", json=payload())
        finally:
            set_handler(None)

        assert response.status_code == 201
        cache = CacheRepository(db)
        sector_wide = cache.read(build_cache_key(2026, 3, "retailers", q("revenue")))
        band = cache.read(build_cache_key(2026, 3, "retailers", q("revenue"), "10-49"))
        assert sector_wide.result == {"up": 1}
        assert sector_wide.response_count == 1
        assert band.response_count == 1
