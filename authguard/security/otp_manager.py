"""
OTP Manager

Numeric one-time codes for phone/email verification. Delivery is an
external collaborator: generate() returns the plaintext code once and only
its salted digest is stored.

Cache layout (dest = sha256 of the destination):
    otp:{dest}                    OTPRecord JSON, TTL = OTP_TTL + OTP_RETENTION
    otp:attempts:{record_id}      failed verification counter
    otp:consumed:{record_id}      SET NX marker holding verified_at; first writer wins

A fresh generate() overwrites otp:{dest}, so the previous code (and its
counters, which are keyed by record id) stops mattering at once.

Verification order: NOT_FOUND, ALREADY_CONSUMED, EXPIRED, EXHAUSTED, then
the comparison. A mismatch consumes an attempt atomically; the last one
reports EXHAUSTED.
"""

import hashlib
import hmac
import math
import secrets
import time
from collections.abc import Callable

from authguard.core.config.constants import (
    REDIS_KEY_OTP,
    REDIS_KEY_OTP_ATTEMPTS,
    REDIS_KEY_OTP_CONSUMED,
    SCOPE_OTP_GENERATE,
    SCOPE_OTP_RESEND,
    ResultCode,
)
from authguard.core.config.settings import OTPSettings
from authguard.core.logging.logger import get_logger
from authguard.infrastructure.cache.cache_facade import CacheFacade
from authguard.infrastructure.monitoring.metrics_collector import MetricsCollector
from authguard.rate_limiting.rate_limiter import RateLimiter, hash_subject
from authguard.security.models import OTPGenerateResult, OTPRecord, OTPVerifyResult

logger = get_logger(__name__)

GENERATE_WINDOW_SECONDS = 3600


def digest_code(record_id: str, code: str) -> str:
    """Salted digest of a code; the record id is the salt."""
    return hashlib.sha256(f"{record_id}:{code}".encode("utf-8")).hexdigest()


class OTPManager:
    def __init__(
        self,
        cache: CacheFacade,
        rate_limiter: RateLimiter,
        settings: OTPSettings,
        metrics: MetricsCollector,
        clock: Callable[[], float] = time.time,
    ):
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._settings = settings
        self._metrics = metrics
        self._clock = clock

    @staticmethod
    def _record_key(destination: str) -> str:
        return f"{REDIS_KEY_OTP}:{hash_subject(destination)}"

    @staticmethod
    def _attempts_key(record_id: str) -> str:
        return f"{REDIS_KEY_OTP_ATTEMPTS}:{record_id}"

    @staticmethod
    def _consumed_key(record_id: str) -> str:
        return f"{REDIS_KEY_OTP_CONSUMED}:{record_id}"

    def _new_code(self) -> str:
        digits = self._settings.OTP_DIGITS
        return f"{secrets.randbelow(10 ** digits):0{digits}d}"

    def _record_ttl(self, record: OTPRecord, now: float) -> int:
        return max(1, math.ceil(record.expires_at - now) + self._settings.OTP_RETENTION)

    async def _load(self, destination: str) -> OTPRecord | None:
        raw = await self._cache.get(self._record_key(destination))
        return OTPRecord.from_json(raw) if raw is not None else None

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    async def generate(self, destination: str) -> OTPGenerateResult:
        """
        Issue a new code for ``destination``, replacing any earlier one.

        Guarded by OTP_MAX_PER_HOUR per destination.
        """
        guard = await self._rate_limiter.check_and_increment(
            SCOPE_OTP_GENERATE, destination, self._settings.OTP_MAX_PER_HOUR, GENERATE_WINDOW_SECONDS
        )
        if not guard.allowed:
            self._metrics.record_otp_event("rate_limited")
            return OTPGenerateResult(
                allowed=False,
                code=ResultCode.RATE_LIMITED,
                retry_after_seconds=guard.reset_after_seconds,
            )

        now = self._clock()
        code = self._new_code()
        record_id = secrets.token_hex(16)
        record = OTPRecord(
            record_id=record_id,
            code_digest=digest_code(record_id, code),
            created_at=now,
            expires_at=now + self._settings.OTP_TTL,
            max_attempts=self._settings.OTP_MAX_ATTEMPTS,
        )

        previous = await self._load(destination)
        await self._cache.set(self._record_key(destination), record.to_json(), ttl=self._record_ttl(record, now))
        if previous is not None:
            await self._cache.delete(
                self._attempts_key(previous.record_id), self._consumed_key(previous.record_id)
            )

        self._metrics.record_otp_event("generated")
        logger.info(
            "OTP generated",
            stage="OTP.1",
            destination=hash_subject(destination),
            replaced=previous is not None,
            ttl_seconds=self._settings.OTP_TTL,
        )
        return OTPGenerateResult(
            allowed=True,
            code=ResultCode.OK,
            otp=code,
            expires_at=record.expires_at,
            expires_in_seconds=self._settings.OTP_TTL,
        )

    async def resend(self, destination: str) -> OTPGenerateResult:
        """
        Issue a replacement code, at most once per OTP_RESEND_WINDOW.

        The resend window is its own limiter; the hourly generation cap
        still applies on top of it.
        """
        guard = await self._rate_limiter.check_and_increment(
            SCOPE_OTP_RESEND, destination, 1, self._settings.OTP_RESEND_WINDOW
        )
        if not guard.allowed:
            self._metrics.record_otp_event("resend_throttled")
            return OTPGenerateResult(
                allowed=False,
                code=ResultCode.RATE_LIMITED,
                retry_after_seconds=guard.reset_after_seconds,
            )

        result = await self.generate(destination)
        if result.allowed:
            self._metrics.record_otp_event("resent")
        return result

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    async def verify(self, destination: str, code: str) -> OTPVerifyResult:
        """
        Check a submitted code.

        Returns:
            OTPVerifyResult: OK exactly once per record; MISMATCH with
            attempts left; or NOT_FOUND / ALREADY_CONSUMED / EXPIRED / EXHAUSTED
        """
        now = self._clock()
        record = await self._load(destination)

        if record is None:
            return self._verified(OTPVerifyResult(valid=False, code=ResultCode.NOT_FOUND))

        consumed_key = self._consumed_key(record.record_id)
        attempts_key = self._attempts_key(record.record_id)

        verified_at = await self._cache.get(consumed_key)
        if verified_at is not None:
            return self._verified(
                OTPVerifyResult(valid=False, code=ResultCode.ALREADY_CONSUMED, verified_at=float(verified_at))
            )

        if now >= record.expires_at:
            return self._verified(OTPVerifyResult(valid=False, code=ResultCode.EXPIRED))

        raw_used = await self._cache.get(attempts_key)
        used = int(raw_used) if raw_used is not None else 0
        if used >= record.max_attempts:
            return self._verified(OTPVerifyResult(valid=False, code=ResultCode.EXHAUSTED))

        ttl = self._record_ttl(record, now)

        if hmac.compare_digest(digest_code(record.record_id, code), record.code_digest):
            won = await self._cache.set(consumed_key, repr(now), ttl=ttl, nx=True)
            if not won:
                return self._verified(OTPVerifyResult(valid=False, code=ResultCode.ALREADY_CONSUMED))
            logger.info("OTP verified", stage="OTP.2", destination=hash_subject(destination))
            return self._verified(
                OTPVerifyResult(
                    valid=True,
                    code=ResultCode.OK,
                    attempts_remaining=record.max_attempts - used,
                    verified_at=now,
                )
            )

        used = await self._cache.incr(attempts_key, ttl=ttl)
        remaining = max(0, record.max_attempts - used)
        logger.info(
            "OTP mismatch",
            stage="OTP.2",
            destination=hash_subject(destination),
            attempts_remaining=remaining,
        )
        if remaining > 0:
            return self._verified(
                OTPVerifyResult(valid=False, code=ResultCode.MISMATCH, attempts_remaining=remaining)
            )
        return self._verified(OTPVerifyResult(valid=False, code=ResultCode.EXHAUSTED))

    async def get_record(self, destination: str) -> OTPRecord | None:
        """Active record for ``destination`` with its verification state filled in."""
        record = await self._load(destination)
        if record is None:
            return None

        verified_at = await self._cache.get(self._consumed_key(record.record_id))
        raw_used = await self._cache.get(self._attempts_key(record.record_id))
        used = int(raw_used) if raw_used is not None else 0

        record.verified_at = float(verified_at) if verified_at is not None else None
        record.attempts_remaining = max(0, record.max_attempts - used)
        return record

    def _verified(self, result: OTPVerifyResult) -> OTPVerifyResult:
        self._metrics.record_otp_event(f"verify:{result.code.value}")
        return result
