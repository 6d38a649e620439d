"""Tests for the k-anonymity guard."""
import pytest
from unittest.mock import patch

from sectorpulse.services.analytics_service.config import DEFAULT_K_ANONYMITY_THRESHOLD
from sectorpulse.services.analytics_service.k_anonymity import (
    KAnonymityEnforcer,
    SUPPRESSION_MESSAGE,
    check_k_anonymity,
    get_threshold,
)


@pytest.fixture(autouse=True)
def clear_threshold(monkeypatch):
    monkeypatch.delenv("K_ANONYMITY_THRESHOLD", raising=False)


class TestThreshold:
    """Tests for threshold configuration."""

    def test_default_is_five(self):
        assert DEFAULT_K_ANONYMITY_THRESHOLD == 5
        assert get_threshold() == 5

    def test_configured_value(self, monkeypatch):
        monkeypatch.setenv("K_ANONYMITY_THRESHOLD", "10")

        assert get_threshold() == 10

    @pytest.mark.parametrize("raw", ["abc", "0", "-3", "", "2.5"])
    def test_invalid_values_fall_back_to_default(self, monkeypatch, raw):
        monkeypatch.setenv("K_ANONYMITY_THRESHOLD", raw)

        assert get_threshold() == 5

    def test_read_on_every_check(self, monkeypatch):
        enforcer = KAnonymityEnforcer()

        assert enforcer.check("x", 6).suppressed is False

        monkeypatch.setenv("K_ANONYMITY_THRESHOLD", "7")

        assert enforcer.check("x", 6).suppressed is True

    def test_fixed_threshold_ignores_environment(self, monkeypatch):
        monkeypatch.setenv("K_ANONYMITY_THRESHOLD", "50")

        assert KAnonymityEnforcer(k_threshold=3).check("x", 3).suppressed is False

    def test_invalid_fixed_threshold_uses_default(self):
        assert KAnonymityEnforcer(k_threshold=0).k_threshold == 5


class TestCheck:
    """Tests for suppression decisions."""

    @pytest.mark.parametrize("count", [0, 1, 2, 3, 4])
    def test_below_threshold_suppressed(self, count):
        result = check_k_anonymity({"14ct": count}, count)

        assert result.suppressed is True
        assert result.data is None
        assert result.response_count == count
        assert result.message == SUPPRESSION_MESSAGE

    @pytest.mark.parametrize("count", [5, 6, 100])
    def test_at_or_above_threshold_passes_unchanged(self, count):
        payload = {"14ct": 4, "18ct": 1}

        result = check_k_anonymity(payload, count)

        assert result.suppressed is False
        assert result.data is payload
        assert result.message is None

    def test_to_dict(self):
        assert check_k_anonymity([1], 2).to_dict() == {
            "data": None,
            "suppressed": True,
            "response_count": 2,
            "message": "Insufficient responses to preserve anonymity.",
        }

    def test_suppression_is_logged_without_payload(self):
        with patch("sectorpulse.services.analytics_service.k_anonymity.logger") as log:
            check_k_anonymity({"secret": 1}, 1)

        event, = log.info.call_args[0]
        assert event == "K_ANONYMITY_SUPPRESSED"
        assert "secret" not in str(log.info.call_args)
