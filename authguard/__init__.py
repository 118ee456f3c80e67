"""
authguard - resilient authentication core

Login throttling, sessions, one-time codes and rate limits on top of a
Redis cache that degrades to process memory when Redis is unavailable.
"""

from authguard.context import AuthContext
from authguard.core.config import ResultCode, Settings, get_settings, load_settings
from authguard.rate_limiting import RateLimiter, RateLimitResult
from authguard.security import LoginSecurity, OTPManager, SessionManager

__version__ = "1.0.0"

__all__ = [
    "AuthContext",
    "LoginSecurity",
    "OTPManager",
    "RateLimiter",
    "RateLimitResult",
    "ResultCode",
    "SessionManager",
    "Settings",
    "get_settings",
    "load_settings",
]
