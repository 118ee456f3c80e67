"""
Configuration package: settings sections and shared constants.
"""

from authguard.core.config.constants import BackendName, CircuitState, ResultCode
from authguard.core.config.settings import (
    CircuitBreakerSettings,
    FallbackSettings,
    LoggingSettings,
    LoginSettings,
    OTPSettings,
    RateLimitSettings,
    RedisSettings,
    SessionSettings,
    Settings,
    get_settings,
    load_settings,
    reload_settings,
)

__all__ = [
    "BackendName",
    "CircuitState",
    "ResultCode",
    "Settings",
    "RedisSettings",
    "CircuitBreakerSettings",
    "FallbackSettings",
    "RateLimitSettings",
    "LoginSettings",
    "SessionSettings",
    "OTPSettings",
    "LoggingSettings",
    "get_settings",
    "load_settings",
    "reload_settings",
]
