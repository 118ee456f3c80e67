"""
Unit Tests for Configuration Settings

Tests the settings loading, validation, environment overrides and the
lazy singleton.
"""

import pytest

from authguard.core.config.settings import (
    LoggingSettings,
    LoginSettings,
    OTPSettings,
    Settings,
    get_settings,
    load_settings,
    reload_settings,
)
from authguard.core.exceptions import ConfigurationError


@pytest.mark.unit
class TestSettingsDefaults:
    """Test default values of each section."""

    def test_settings_has_every_section(self):
        """Test that Settings aggregates all configuration sections."""
        settings = load_settings()

        for section in ("redis", "circuit_breaker", "fallback", "rate_limit", "login", "session", "otp", "logging"):
            assert hasattr(settings, section)

    def test_login_defaults(self):
        login = LoginSettings()
        assert login.LOGIN_MAX_FAILURES == 5
        assert login.LOGIN_ATTEMPT_WINDOW == 900
        assert login.LOGIN_LOCKOUT_BASE_DURATION == 900.0
        assert login.LOGIN_LOCKOUT_MAX_DURATION == 3600.0
        assert login.LOGIN_CLEAR_LOCKOUT_ON_PASSWORD_RESET is False

    def test_session_and_otp_defaults(self):
        """Test the session and OTP lifetimes ship with the documented values."""
        settings = load_settings()
        assert settings.session.SESSION_MAX_IDLE == 86400
        assert settings.session.SESSION_REMEMBER_ME_IDLE == 604800
        assert settings.otp.OTP_DIGITS == 6
        assert settings.otp.OTP_TTL == 300
        assert settings.otp.OTP_MAX_ATTEMPTS == 3

    def test_redis_defaults_are_fail_fast(self):
        settings = load_settings()
        assert settings.redis.REDIS_OPERATION_TIMEOUT == 0.5
        assert settings.redis.REDIS_HEALTH_FAILURE_THRESHOLD == 3
        assert settings.redis.REDIS_HEALTH_SUCCESS_THRESHOLD == 2


@pytest.mark.unit
class TestSettingsOverrides:
    """Test environment and explicit overrides."""

    def test_environment_variable_lands_in_section(self, monkeypatch):
        monkeypatch.setenv("LOGIN_MAX_FAILURES", "10")
        monkeypatch.setenv("OTP_DIGITS", "8")

        settings = load_settings()

        assert settings.login.LOGIN_MAX_FAILURES == 10
        assert settings.otp.OTP_DIGITS == 8

    def test_explicit_section_wins(self):
        settings = load_settings(otp=OTPSettings(OTP_TTL=60))
        assert settings.otp.OTP_TTL == 60

    def test_log_level_is_normalized(self):
        assert LoggingSettings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"


@pytest.mark.unit
class TestSettingsValidation:
    """Test that misconfiguration fails at load time."""

    def test_out_of_range_value_raises_configuration_error(self, monkeypatch):
        monkeypatch.setenv("OTP_DIGITS", "2")
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings()
        assert exc_info.value.details["original_error"] == "ValidationError"

    def test_cross_field_check_raises_configuration_error(self, monkeypatch):
        monkeypatch.setenv("SESSION_MAX_IDLE", "7200")
        monkeypatch.setenv("SESSION_ABSOLUTE_LIFETIME", "3600")
        with pytest.raises(ConfigurationError):
            load_settings()

    def test_lockout_cap_below_base_raises_configuration_error(self, monkeypatch):
        monkeypatch.setenv("LOGIN_LOCKOUT_BASE_DURATION", "600")
        monkeypatch.setenv("LOGIN_LOCKOUT_MAX_DURATION", "60")
        with pytest.raises(ConfigurationError):
            load_settings()

    @pytest.mark.parametrize("variable", ["SESSION_RETENTION", "OTP_RETENTION"])
    def test_zero_retention_rejected(self, monkeypatch, variable):
        """Test that dead records always linger long enough to report their state."""
        monkeypatch.setenv(variable, "0")
        with pytest.raises(ConfigurationError):
            load_settings()

    def test_unknown_log_level_rejected(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "LOUD")
        with pytest.raises(ConfigurationError):
            load_settings()


@pytest.mark.unit
class TestSettingsSingleton:
    def test_get_settings_returns_same_instance(self):
        assert get_settings() is get_settings()

    def test_reload_settings_rebuilds(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("OTP_MAX_PER_HOUR", "7")

        reloaded = reload_settings()

        assert reloaded is not first
        assert reloaded.otp.OTP_MAX_PER_HOUR == 7
        assert get_settings() is reloaded

        monkeypatch.delenv("OTP_MAX_PER_HOUR")
        reload_settings()

    def test_settings_class_is_pydantic_settings(self):
        assert isinstance(load_settings(), Settings)
