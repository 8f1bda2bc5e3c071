"""
Configuration Tests

Settings are read from RECON_* environment variables; a malformed value
raises ValueError naming the variable.
"""

import logging
from datetime import timedelta
from decimal import Decimal

import pytest

from core.config import get_log_settings, load_settings
from reconciliation.models import ReconciliationSettings

RECON_VARS = [
    "RECON_AMOUNT_TOLERANCE",
    "RECON_DATE_TOLERANCE_HOURS",
    "RECON_CONFIDENCE_THRESHOLD",
    "RECON_AUTO_RESOLVE",
    "RECON_REQUIRE_MANUAL_APPROVAL",
    "RECON_MAX_THREADS",
    "RECON_MATERIAL_THRESHOLD",
    "RECON_LOG_LEVEL",
    "RECON_LOG_JSON",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in RECON_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadSettings:
    """Environment-driven ReconciliationSettings."""

    def test_defaults(self, clean_env):
        settings = load_settings()

        assert settings.amount_tolerance == Decimal("0.01")
        assert settings.date_tolerance == timedelta(days=1)
        assert settings.confidence_threshold == 0.8
        assert settings.auto_resolve_minor_discrepancies is True
        assert settings.require_manual_approval is False
        assert settings.max_processing_threads == 5
        assert settings.material_amount_threshold == Decimal("10000")

    def test_overrides(self, clean_env):
        clean_env.setenv("RECON_AMOUNT_TOLERANCE", "0.50")
        clean_env.setenv("RECON_DATE_TOLERANCE_HOURS", "72")
        clean_env.setenv("RECON_AUTO_RESOLVE", "no")
        clean_env.setenv("RECON_MAX_THREADS", "2")

        settings = load_settings()

        assert settings.amount_tolerance == Decimal("0.50")
        assert settings.date_tolerance == timedelta(days=3)
        assert settings.auto_resolve_minor_discrepancies is False
        assert settings.max_processing_threads == 2

    @pytest.mark.parametrize("name,value", [
        ("RECON_AMOUNT_TOLERANCE", "one cent"),
        ("RECON_CONFIDENCE_THRESHOLD", "high"),
        ("RECON_MAX_THREADS", "2.5"),
        ("RECON_AUTO_RESOLVE", "maybe"),
    ])
    def test_malformed_value_names_variable(self, clean_env, name, value):
        clean_env.setenv(name, value)

        with pytest.raises(ValueError, match=name):
            load_settings()

    def test_out_of_range_value_rejected(self, clean_env):
        clean_env.setenv("RECON_CONFIDENCE_THRESHOLD", "1.5")

        with pytest.raises(ValueError):
            load_settings()


class TestSettingsModel:
    """Validation on the settings model itself."""

    def test_negative_date_tolerance(self):
        with pytest.raises(ValueError):
            ReconciliationSettings(date_tolerance=timedelta(hours=-1))

    def test_assignment_is_validated(self):
        settings = ReconciliationSettings()
        with pytest.raises(ValueError):
            settings.max_processing_threads = 0

    def test_float_amounts_go_through_str(self):
        assert ReconciliationSettings(amount_tolerance=0.1).amount_tolerance == Decimal("0.1")

    def test_fingerprint_tracks_values(self):
        a = ReconciliationSettings()
        b = ReconciliationSettings(amount_tolerance=Decimal("0.02"))
        assert a.fingerprint() != b.fingerprint()
        assert a.fingerprint() == ReconciliationSettings().fingerprint()


class TestLogSettings:
    """Logging options."""

    def test_defaults(self, clean_env):
        assert get_log_settings() == (logging.INFO, False)

    def test_overrides(self, clean_env):
        clean_env.setenv("RECON_LOG_LEVEL", "debug")
        clean_env.setenv("RECON_LOG_JSON", "true")
        assert get_log_settings() == (logging.DEBUG, True)

    def test_unknown_level_falls_back_to_info(self, clean_env):
        clean_env.setenv("RECON_LOG_LEVEL", "chatty")
        assert get_log_settings()[0] == logging.INFO
