"""
Security layer: login throttling, sessions and one-time codes.
"""

from authguard.security.login_security import LoginSecurity
from authguard.security.models import (
    LoginAttemptRecord,
    LoginAttemptResult,
    LoginAttemptStats,
    OTPGenerateResult,
    OTPRecord,
    OTPVerifyResult,
    Session,
    SessionResult,
)
from authguard.security.otp_manager import OTPManager
from authguard.security.session_manager import SessionManager

__all__ = [
    "LoginSecurity",
    "SessionManager",
    "OTPManager",
    "LoginAttemptRecord",
    "LoginAttemptResult",
    "LoginAttemptStats",
    "Session",
    "SessionResult",
    "OTPRecord",
    "OTPGenerateResult",
    "OTPVerifyResult",
]
