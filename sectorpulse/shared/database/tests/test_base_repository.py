"""Tests for the base repository operations."""
from datetime import datetime

import pytest

from sectorpulse.shared.models import Sector, Survey
from sectorpulse.services.survey_service.survey_repository import SurveyRepository


def make_survey(survey_id, day=1, **overrides):
    fields = dict(
        id=survey_id,
        title=f"Survey {survey_id}",
        sector=Sector.REFINERS,
        year=2026,
        quarter=1,
        created_at=datetime(2026, 1, day, 9, 0, 0),
    )
    fields.update(overrides)
    return Survey(**fields)


@pytest.fixture
def repository(db):
    return SurveyRepository(db)


class TestBaseRepository:
    """Tests for save, lookup, listing and delete."""

    def test_save_and_find_by_key(self, repository):
        repository.save(make_survey("s1"))

        found = repository.find_by_key("s1")

        assert found == make_survey("s1")
        assert repository.find_by_key("missing") is None

    def test_save_updates_existing_row(self, repository):
        repository.save(make_survey("s1"))
        repository.save(make_survey("s1", title="Renamed", is_active=False))

        found = repository.find_by_key("s1")

        assert found.title == "Renamed"
        assert found.is_active is False
        assert repository.count() == 1

    def test_find_all_newest_first(self, repository):
        for day, survey_id in enumerate(["a", "b", "c"], start=1):
            repository.save(make_survey(survey_id, day=day))

        assert [s.id for s in repository.find_all()] == ["c", "b", "a"]
        assert [s.id for s in repository.find_all(limit=1, offset=1)] == ["b"]

    def test_delete(self, repository):
        repository.save(make_survey("s1"))

        assert repository.delete("s1") is True
        assert repository.delete("s1") is False
        assert repository.count() == 0
