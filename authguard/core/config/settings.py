#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
authentication-resilience core. All tunables (Redis transport, circuit
breaker, fallback store, rate limits, lockouts, sessions, OTPs, logging)
are centralized here and read once at startup.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Cross-field checks surface as ConfigurationError, never at request time
- Easy testing with explicit section overrides

Author: System Architect
Date: 2025-12-05
"""

from typing import Literal

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from authguard.core.exceptions.base import ConfigurationError

_SECTION_CONFIG = SettingsConfigDict(
    env_prefix="",
    env_file=".env",
    env_file_encoding="utf-8",
    case_sensitive=True,
    extra="ignore",
)


class RedisSettings(BaseSettings):
    """
    Redis configuration for the shared cache.

    STAGE-0.1: Redis connection configuration

    Architectural Decision: Short operation timeout, unbounded reconnects
    - Operation timeout: 0.5s (a slow Redis counts as a down Redis)
    - Liveness probe every 5s, flips health after 3 failures / 2 successes
    - Reconnect backoff: 1s doubling, capped at 30s, retried forever
    """

    REDIS_URL: str | None = Field(default=None, description="Full Redis URL (overrides host/port/db)")
    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, ge=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")

    REDIS_MAX_CONNECTIONS: int = Field(default=50, gt=0, description="Maximum pooled connections")
    REDIS_SOCKET_TIMEOUT: float = Field(default=5.0, gt=0, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(default=5.0, gt=0, description="Connect timeout in seconds")
    REDIS_OPERATION_TIMEOUT: float = Field(
        default=0.5, gt=0, description="Bound on every primary cache call before it counts as a failure"
    )

    REDIS_HEALTH_CHECK_INTERVAL: float = Field(default=5.0, gt=0, description="Liveness probe interval in seconds")
    REDIS_HEALTH_FAILURE_THRESHOLD: int = Field(default=3, ge=1, description="Consecutive failed probes before unhealthy")
    REDIS_HEALTH_SUCCESS_THRESHOLD: int = Field(default=2, ge=1, description="Consecutive good probes before healthy")

    REDIS_RECONNECT_BASE_DELAY: float = Field(default=1.0, gt=0, description="First reconnect delay in seconds")
    REDIS_RECONNECT_MULTIPLIER: float = Field(default=2.0, ge=1, description="Reconnect delay growth factor")
    REDIS_RECONNECT_MAX_DELAY: float = Field(default=30.0, gt=0, description="Reconnect delay cap in seconds")

    @model_validator(mode="after")
    def validate_reconnect_bounds(self):
        """Reconnect cap must not undercut the base delay."""
        if self.REDIS_RECONNECT_MAX_DELAY < self.REDIS_RECONNECT_BASE_DELAY:
            raise ValueError("REDIS_RECONNECT_MAX_DELAY must be >= REDIS_RECONNECT_BASE_DELAY")
        return self

    model_config = _SECTION_CONFIG


class CircuitBreakerSettings(BaseSettings):
    """
    Circuit breaker configuration for the cache facade.

    STAGE-CB: Circuit breaker thresholds

    Architectural Decision: In-process breaker with a sliding failure window
    - Each process decides for itself whether Redis is usable
    - Failed probes double the cool-down up to CB_COOLDOWN_MAX
    """

    CB_FAILURE_THRESHOLD: int = Field(default=5, ge=1, description="Failures within the window before opening")
    CB_FAILURE_WINDOW: float = Field(default=30.0, gt=0, description="Sliding failure window in seconds")
    CB_COOLDOWN: float = Field(default=10.0, gt=0, description="Initial open-state cool-down in seconds")
    CB_COOLDOWN_MAX: float = Field(default=300.0, gt=0, description="Cool-down cap in seconds")

    @model_validator(mode="after")
    def validate_cooldown_bounds(self):
        """Cool-down cap must not undercut the initial cool-down."""
        if self.CB_COOLDOWN_MAX < self.CB_COOLDOWN:
            raise ValueError("CB_COOLDOWN_MAX must be >= CB_COOLDOWN")
        return self

    model_config = _SECTION_CONFIG


class FallbackSettings(BaseSettings):
    """
    In-memory fallback store configuration.

    STAGE-FB: Fallback store sizing
    """

    FALLBACK_SWEEP_INTERVAL: float = Field(default=60.0, gt=0, description="Expired-entry sweep interval in seconds")
    FALLBACK_MAX_ENTRIES: int | None = Field(
        default=100_000, ge=1, description="Entry bound (None = unbounded); least recently used evicted first"
    )

    model_config = _SECTION_CONFIG


class RateLimitSettings(BaseSettings):
    """
    Rate limiting configuration.

    STAGE-3: Emergency mode tuning
    """

    RATE_LIMIT_EMERGENCY_FACTOR: float = Field(
        default=2.0, ge=1.0, description="Default divisor applied to every limit in emergency mode"
    )
    RATE_LIMIT_EMERGENCY_MAX_DURATION: int = Field(
        default=3600, gt=0, description="Longest emergency mode duration in seconds"
    )

    model_config = _SECTION_CONFIG


class LoginSettings(BaseSettings):
    """
    Login throttling and lockout configuration.

    STAGE-LS: Lockout policy

    Architectural Decision: Two independent guards
    - Per-account lockout catches targeted brute force
    - Per-source rate limit catches spraying across many accounts
    """

    LOGIN_MAX_FAILURES: int = Field(default=5, ge=1, description="Failures before the account is locked")
    LOGIN_ATTEMPT_WINDOW: int = Field(default=900, gt=0, description="Failure counter lifetime in seconds")
    LOGIN_LOCKOUT_BASE_DURATION: float = Field(default=900.0, gt=0, description="First lockout duration in seconds")
    LOGIN_LOCKOUT_MULTIPLIER: float = Field(default=2.0, ge=1, description="Lockout growth per prior lock")
    LOGIN_LOCKOUT_MAX_DURATION: float = Field(default=3600.0, gt=0, description="Lockout cap in seconds")
    LOGIN_LOCK_HISTORY_TTL: int = Field(default=86400, gt=0, description="How long prior locks count toward escalation")

    LOGIN_SOURCE_MAX_ATTEMPTS: int = Field(default=20, ge=1, description="Failed attempts per source address per window")
    LOGIN_SOURCE_WINDOW: int = Field(default=3600, gt=0, description="Per-source guard window in seconds")

    LOGIN_CAPTCHA_THRESHOLD: int = Field(default=3, ge=1, description="Failures before a captcha is requested")
    LOGIN_PROGRESSIVE_DELAY_BASE: float = Field(default=1.0, ge=0, description="First progressive delay hint in seconds")
    LOGIN_PROGRESSIVE_DELAY_MAX: float = Field(default=10.0, ge=0, description="Progressive delay hint cap in seconds")

    LOGIN_RISK_RAPID_THRESHOLD: int = Field(
        default=5, ge=1, description="Source failures in the guard window that count as rapid attempts"
    )
    LOGIN_RISK_VOLUME_THRESHOLD: int = Field(
        default=10, ge=1, description="Source failures in the guard window that count as high volume"
    )

    LOGIN_CLEAR_LOCKOUT_ON_PASSWORD_RESET: bool = Field(
        default=False, description="Whether a password reset lifts active lockouts for the account"
    )

    @model_validator(mode="after")
    def validate_lockout_bounds(self):
        """Caps must not undercut their bases."""
        if self.LOGIN_LOCKOUT_MAX_DURATION < self.LOGIN_LOCKOUT_BASE_DURATION:
            raise ValueError("LOGIN_LOCKOUT_MAX_DURATION must be >= LOGIN_LOCKOUT_BASE_DURATION")
        if self.LOGIN_PROGRESSIVE_DELAY_MAX < self.LOGIN_PROGRESSIVE_DELAY_BASE:
            raise ValueError("LOGIN_PROGRESSIVE_DELAY_MAX must be >= LOGIN_PROGRESSIVE_DELAY_BASE")
        if self.LOGIN_RISK_VOLUME_THRESHOLD < self.LOGIN_RISK_RAPID_THRESHOLD:
            raise ValueError("LOGIN_RISK_VOLUME_THRESHOLD must be >= LOGIN_RISK_RAPID_THRESHOLD")
        return self

    model_config = _SECTION_CONFIG


class SessionSettings(BaseSettings):
    """
    Session lifetime configuration.

    STAGE-SS: Sliding and absolute expiry
    """

    SESSION_MAX_IDLE: int = Field(default=86400, gt=0, description="Sliding idle timeout in seconds (24 hours)")
    SESSION_REMEMBER_ME_IDLE: int = Field(default=604800, gt=0, description="Idle timeout for remember-me (7 days)")
    SESSION_ABSOLUTE_LIFETIME: int = Field(default=2592000, gt=0, description="Hard cap from creation (30 days)")
    SESSION_RETENTION: int = Field(
        default=3600, ge=1, description="How long expired/revoked records linger to report their state"
    )

    @model_validator(mode="after")
    def validate_lifetimes(self):
        """Absolute lifetime bounds both idle timeouts."""
        if self.SESSION_ABSOLUTE_LIFETIME < self.SESSION_MAX_IDLE:
            raise ValueError("SESSION_ABSOLUTE_LIFETIME must be >= SESSION_MAX_IDLE")
        if self.SESSION_REMEMBER_ME_IDLE < self.SESSION_MAX_IDLE:
            raise ValueError("SESSION_REMEMBER_ME_IDLE must be >= SESSION_MAX_IDLE")
        return self

    model_config = _SECTION_CONFIG


class OTPSettings(BaseSettings):
    """
    One-time code configuration.

    STAGE-OTP: Code shape and throttles
    """

    OTP_DIGITS: int = Field(default=6, ge=4, le=10, description="Code length")
    OTP_TTL: int = Field(default=300, gt=0, description="Code validity in seconds (5 minutes)")
    OTP_MAX_ATTEMPTS: int = Field(default=3, ge=1, description="Verification attempts per code")
    OTP_MAX_PER_HOUR: int = Field(default=3, ge=1, description="Codes generated per destination per hour")
    OTP_RESEND_WINDOW: int = Field(default=120, gt=0, description="Minimum spacing between resends in seconds")
    OTP_RETENTION: int = Field(
        default=300, ge=1, description="How long consumed/expired records linger to report their state"
    )

    model_config = _SECTION_CONFIG


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration

    Architectural Decision: structlog for production-grade logging
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = _SECTION_CONFIG


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Usage:
        from authguard.core.config.settings import get_settings

        settings = get_settings()
        redis_host = settings.redis.REDIS_HOST
        max_failures = settings.login.LOGIN_MAX_FAILURES

    Each section reads its own upper-case environment variables, so
    ``LOGIN_MAX_FAILURES=10`` in the environment or ``.env`` lands in
    ``settings.login``.
    """

    redis: RedisSettings = Field(default_factory=RedisSettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    fallback: FallbackSettings = Field(default_factory=FallbackSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    login: LoginSettings = Field(default_factory=LoginSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    otp: OTPSettings = Field(default_factory=OTPSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = _SECTION_CONFIG


def load_settings(**sections) -> Settings:
    """
    Build a validated Settings instance.

    STAGE-0.2: Settings validation

    Args:
        **sections: Optional pre-built section objects (e.g. ``login=LoginSettings(...)``)

    Returns:
        Settings: Fully validated settings

    Raises:
        ConfigurationError: If any field or cross-field check fails
    """
    try:
        return Settings(**sections)
    except ValidationError as e:
        raise ConfigurationError.from_exception(
            e, message="Invalid authguard configuration", errors=e.error_count()
        ) from e


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    STAGE-0.3: Settings initialization

    Returns:
        Settings: Global settings instance

    Architectural Decision: Lazy singleton
    - Built on first use, so importing this module never reads the environment
    - Invalid configuration raises ConfigurationError at that first use
    """
    global _settings

    if _settings is None:
        _settings = load_settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = load_settings()
    return _settings
