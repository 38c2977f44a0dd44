"""Unit tests for configuration module."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from upi_payment_verifier.config import Settings, get_settings


class TestSettings:
    """Test suite for Settings class."""

    def test_default_settings(self) -> None:
        """Test that default settings are properly initialized."""
        settings = Settings()

        assert settings.expected_receiver_token == "hrejuh"
        assert settings.min_amount == Decimal("1")
        assert settings.max_amount == Decimal("100000")
        assert settings.max_payment_age_seconds == 3600
        assert settings.poll_interval_seconds == 2.0
        assert settings.poll_max_attempts == 150
        assert settings.status_mode == "poll"
        assert settings.log_level == "INFO"
        assert settings.debug is False
        assert settings.max_retries == 3

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test loading settings from environment variables."""
        monkeypatch.setenv("UPI_VERIFIER_EXPECTED_RECEIVER_TOKEN", "shopname")
        monkeypatch.setenv("UPI_VERIFIER_POLL_MAX_ATTEMPTS", "10")
        monkeypatch.setenv("UPI_VERIFIER_MAX_AMOUNT", "5000.50")
        monkeypatch.setenv("UPI_VERIFIER_DEBUG", "true")

        # Clear the cache to ensure fresh settings
        get_settings.cache_clear()

        settings = get_settings()

        assert settings.expected_receiver_token == "shopname"
        assert settings.poll_max_attempts == 10
        assert settings.max_amount == Decimal("5000.50")
        assert settings.debug is True

        # Clean up
        get_settings.cache_clear()

    def test_get_settings_returns_cached_instance(self) -> None:
        """Test that get_settings returns the same cached instance."""
        get_settings.cache_clear()

        settings1 = get_settings()
        settings2 = get_settings()

        assert settings1 is settings2

        # Clean up
        get_settings.cache_clear()

    def test_push_status_mode_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that both delivery modes are accepted."""
        monkeypatch.setenv("UPI_VERIFIER_STATUS_MODE", "push")

        assert Settings().status_mode == "push"

    @pytest.mark.parametrize(
        ("name", "value"),
        [
            ("UPI_VERIFIER_STATUS_MODE", "realtime"),
            ("UPI_VERIFIER_POLL_INTERVAL_SECONDS", "0"),
            ("UPI_VERIFIER_POLL_MAX_ATTEMPTS", "0"),
            ("UPI_VERIFIER_MATCH_CLOCK_SKEW_SECONDS", "-1"),
        ],
    )
    def test_invalid_bridge_and_matching_values_are_rejected(
        self, monkeypatch: pytest.MonkeyPatch, name: str, value: str
    ) -> None:
        """Test that unusable bridge and matching settings fail at load."""
        monkeypatch.setenv(name, value)

        with pytest.raises(ValidationError):
            Settings()

    def test_default_clock_skew(self) -> None:
        """Test the default clock skew allowance for order matching."""
        assert Settings().match_clock_skew_seconds == 60
