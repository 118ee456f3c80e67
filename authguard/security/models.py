"""
Result and Record Models for the Security Layer

Every public security operation returns one of these pydantic models. They
carry a ResultCode plus the remaining attempts/time a client needs for
backoff, and never say which cache backend served the call.

Records (LoginAttemptRecord, Session, OTPRecord) are also the serialized
shape stored in the cache (orjson over ``model_dump(mode="json")``).
"""

from typing import Any

import orjson
from pydantic import BaseModel, Field

from authguard.core.config.constants import ResultCode


class _Model(BaseModel):
    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def to_json(self) -> str:
        return orjson.dumps(self.to_dict()).decode()

    @classmethod
    def from_json(cls, raw: str):
        return cls.model_validate(orjson.loads(raw))


# ============================================================================
# Login
# ============================================================================


class LoginAttemptRecord(_Model):
    """Throttling state for one (account, source) pair."""

    account: str
    source: str
    failure_count: int = 0
    locked_until: float | None = None
    last_failure_at: float | None = None
    lock_count: int = 0


class LoginAttemptResult(_Model):
    """
    Outcome of before_attempt / on_failure.

    ``allowed`` says whether the next login attempt may proceed.
    """

    allowed: bool
    code: ResultCode
    attempts_remaining: int = 0
    retry_after_seconds: int | None = None
    captcha_required: bool = False
    delay_seconds: float = 0.0
    risk_score: int = 0
    risk_hints: list[str] = Field(default_factory=list)


class LoginAttemptStats(_Model):
    """Operator view of an (account, source) pair and of its source."""

    account_failures: int = 0
    source_failures: int = 0
    locked: bool = False
    source_blocked: bool = False
    captcha_required: bool = False
    delay_seconds: float = 0.0


# ============================================================================
# Sessions
# ============================================================================


class Session(_Model):
    """A login session. ``session_id`` is the bearer secret."""

    session_id: str
    user_id: str
    device_info: dict[str, Any] | None = None
    remember_me: bool = False
    idle_seconds: int
    created_at: float
    last_activity_at: float
    expires_at: float
    absolute_expires_at: float
    revoked: bool = False
    revoked_at: float | None = None


class SessionResult(_Model):
    """Outcome of validate()."""

    valid: bool
    code: ResultCode
    session: Session | None = None
    expires_in_seconds: int | None = None


# ============================================================================
# One-time codes
# ============================================================================


class OTPRecord(_Model):
    """
    The single active one-time code for a destination (digest only).

    ``verified_at`` and ``attempts_remaining`` live in their own counters
    and are only filled in by OTPManager.get_record().
    """

    record_id: str
    code_digest: str
    created_at: float
    expires_at: float
    max_attempts: int
    verified_at: float | None = None
    attempts_remaining: int | None = None


class OTPGenerateResult(_Model):
    """
    Outcome of generate()/resend().

    ``otp`` is the plaintext code for the delivery channel; it is only set
    when ``allowed`` is True.
    """

    allowed: bool
    code: ResultCode
    otp: str | None = Field(default=None, repr=False)
    expires_at: float | None = None
    expires_in_seconds: int | None = None
    retry_after_seconds: int | None = None


class OTPVerifyResult(_Model):
    """Outcome of verify()."""

    valid: bool
    code: ResultCode
    attempts_remaining: int = 0
    verified_at: float | None = None
