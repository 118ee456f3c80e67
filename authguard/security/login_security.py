"""
Login Security: lockouts, per-source throttling and attempt hints

Two guards compose:
- Per-account lockout, keyed by (account, source): ``LOGIN_MAX_FAILURES``
  failures inside ``LOGIN_ATTEMPT_WINDOW`` lock the pair. The lock duration
  grows with how many times the pair was locked recently (BackoffPolicy,
  capped at ``LOGIN_LOCKOUT_MAX_DURATION``).
- Per-source rate limit: every failure from a source consumes one unit of
  a coarse RateLimiter guard, catching spraying across many accounts.

before_attempt() also returns advisory risk hints: failure volume from the
source and known attack-tool or scripted user agents raise a risk score.
They never block on their own.

Cache layout (subject = sha256 of "account|source"):
    login:failures:{subject}     counter, TTL = attempt window
    login:lock:{subject}         {"locked_until", "lock_count"}, TTL = lock duration
    login:lock_count:{subject}   counter, TTL = lock history
    login:last_failure:{subject} timestamp, TTL = attempt window
    login:sources:{account}      set of sources with state, for password reset

STAGE-LS: Login Security
------------------------
LS.1: Before attempt
LS.2: Failure recorded
LS.3: Lockout applied
LS.4: Success reset
LS.5: Password reset
LS.6: Risk hints
"""

import math
import re
import time
from collections.abc import Callable

import orjson

from authguard.core.config.constants import (
    REDIS_KEY_LOGIN_FAILURES,
    REDIS_KEY_LOGIN_LAST_FAILURE,
    REDIS_KEY_LOGIN_LOCK,
    REDIS_KEY_LOGIN_LOCK_COUNT,
    REDIS_KEY_LOGIN_SOURCES,
    SCOPE_LOGIN_SOURCE,
    ResultCode,
)
from authguard.core.config.settings import LoginSettings
from authguard.core.logging.logger import get_logger
from authguard.core.resilience.backoff import BackoffPolicy
from authguard.infrastructure.cache.cache_facade import CacheFacade
from authguard.infrastructure.monitoring.metrics_collector import MetricsCollector
from authguard.rate_limiting.rate_limiter import RateLimiter, RateLimitResult, hash_subject
from authguard.security.models import LoginAttemptRecord, LoginAttemptResult, LoginAttemptStats

logger = get_logger(__name__)

HOSTILE_USER_AGENT = re.compile(r"bot|crawler|scanner|sqlmap|nikto|nmap", re.IGNORECASE)
SCRIPTED_USER_AGENT = re.compile(r"curl|wget|python|java|node", re.IGNORECASE)


def lockout_policy(settings: LoginSettings) -> BackoffPolicy:
    """Lock duration for the n-th lock (0-based) of a subject."""
    return BackoffPolicy(
        base_delay=settings.LOGIN_LOCKOUT_BASE_DURATION,
        multiplier=settings.LOGIN_LOCKOUT_MULTIPLIER,
        max_delay=settings.LOGIN_LOCKOUT_MAX_DURATION,
    )


class LoginSecurity:
    """
    Login throttling for route handlers.

    Usage:
        check = await login_security.before_attempt(email, ip)
        if not check.allowed:
            return reject(check)          # LOCKED / RATE_LIMITED + retry_after_seconds
        if password_ok:
            await login_security.on_success(email, ip)
        else:
            result = await login_security.on_failure(email, ip)
    """

    def __init__(
        self,
        cache: CacheFacade,
        rate_limiter: RateLimiter,
        settings: LoginSettings,
        metrics: MetricsCollector,
        clock: Callable[[], float] = time.time,
    ):
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._settings = settings
        self._metrics = metrics
        self._clock = clock
        self._lockout = lockout_policy(settings)

    # -------------------------------------------------------------------------
    # Keys and hints
    # -------------------------------------------------------------------------

    @staticmethod
    def _subject(account: str, source: str) -> str:
        return hash_subject(f"{account}|{source}")

    def _keys(self, account: str, source: str) -> dict[str, str]:
        subject = self._subject(account, source)
        return {
            "failures": f"{REDIS_KEY_LOGIN_FAILURES}:{subject}",
            "lock": f"{REDIS_KEY_LOGIN_LOCK}:{subject}",
            "lock_count": f"{REDIS_KEY_LOGIN_LOCK_COUNT}:{subject}",
            "last_failure": f"{REDIS_KEY_LOGIN_LAST_FAILURE}:{subject}",
        }

    @staticmethod
    def _sources_key(account: str) -> str:
        return f"{REDIS_KEY_LOGIN_SOURCES}:{hash_subject(account)}"

    def progressive_delay(self, failures: int) -> float:
        """Suggested client delay: ``base * 2**(failures - 1)``, capped."""
        if failures <= 0:
            return 0.0
        exponent = min(failures - 1, 32)
        return min(
            self._settings.LOGIN_PROGRESSIVE_DELAY_BASE * (2 ** exponent),
            self._settings.LOGIN_PROGRESSIVE_DELAY_MAX,
        )

    def _hints(self, failures: int) -> dict:
        return {
            "attempts_remaining": max(0, self._settings.LOGIN_MAX_FAILURES - failures),
            "captcha_required": failures >= self._settings.LOGIN_CAPTCHA_THRESHOLD,
            "delay_seconds": self.progressive_delay(failures),
        }

    def assess_risk(self, source_failures: int, user_agent: str | None = None) -> dict:
        """
        Score how suspicious an attempt looks.

        STAGE-LS.6: Risk hints

        A scripted client only counts once some other signal is present.
        """
        score = 0
        hints: list[str] = []

        if source_failures > self._settings.LOGIN_RISK_VOLUME_THRESHOLD:
            hints.append("high_attempt_volume")
            score += 3
        if source_failures > self._settings.LOGIN_RISK_RAPID_THRESHOLD:
            hints.append("rapid_attempts")
            score += 2
        if user_agent and HOSTILE_USER_AGENT.search(user_agent):
            hints.append("malicious_user_agent")
            score += 5
        if user_agent and score > 0 and SCRIPTED_USER_AGENT.search(user_agent):
            hints.append("automated_tool")
            score += 2

        return {"risk_score": score, "risk_hints": hints}

    async def _source_guard(self, source: str) -> RateLimitResult:
        return await self._rate_limiter.peek(
            SCOPE_LOGIN_SOURCE,
            source,
            self._settings.LOGIN_SOURCE_MAX_ATTEMPTS,
            self._settings.LOGIN_SOURCE_WINDOW,
        )

    async def _active_lock(self, lock_key: str, now: float) -> float | None:
        raw = await self._cache.get(lock_key)
        if raw is None:
            return None
        locked_until = float(orjson.loads(raw)["locked_until"])
        return locked_until if locked_until > now else None

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def before_attempt(
        self, account: str, source: str, user_agent: str | None = None
    ) -> LoginAttemptResult:
        """
        Decide whether a login attempt may proceed.

        STAGE-LS.1: Before attempt

        Order: per-source guard (RATE_LIMITED), then lockout (LOCKED).
        Every outcome carries the risk hints for the source.
        """
        source_guard = await self._source_guard(source)
        risk = self.assess_risk(source_guard.limit - source_guard.remaining, user_agent)
        if risk["risk_score"]:
            logger.warning(
                "Suspicious login pattern",
                stage="LS.6",
                subject=self._subject(account, source),
                **risk,
            )

        if not source_guard.allowed:
            self._metrics.record_login_event("blocked")
            return LoginAttemptResult(
                allowed=False,
                code=ResultCode.RATE_LIMITED,
                retry_after_seconds=source_guard.reset_after_seconds,
                **risk,
            )

        now = self._clock()
        keys = self._keys(account, source)

        locked_until = await self._active_lock(keys["lock"], now)
        if locked_until is not None:
            self._metrics.record_login_event("blocked")
            return LoginAttemptResult(
                allowed=False,
                code=ResultCode.LOCKED,
                retry_after_seconds=max(1, math.ceil(locked_until - now)),
                **risk,
            )

        raw = await self._cache.get(keys["failures"])
        failures = int(raw) if raw is not None else 0
        return LoginAttemptResult(allowed=True, code=ResultCode.OK, **self._hints(failures), **risk)

    async def on_failure(self, account: str, source: str) -> LoginAttemptResult:
        """
        Record a failed login.

        STAGE-LS.2: Failure recorded

        Returns:
            LoginAttemptResult: LOCKED when this failure triggered a lock,
            RATE_LIMITED when the source guard is now exhausted, else OK
            with the remaining attempts.
        """
        now = self._clock()
        keys = self._keys(account, source)

        source_guard = await self._rate_limiter.check_and_increment(
            SCOPE_LOGIN_SOURCE,
            source,
            self._settings.LOGIN_SOURCE_MAX_ATTEMPTS,
            self._settings.LOGIN_SOURCE_WINDOW,
        )

        failures = await self._cache.incr(keys["failures"], ttl=self._settings.LOGIN_ATTEMPT_WINDOW)
        await self._cache.set(keys["last_failure"], repr(now), ttl=self._settings.LOGIN_ATTEMPT_WINDOW)
        await self._cache.sadd(
            self._sources_key(account),
            source,
            ttl=max(self._settings.LOGIN_LOCK_HISTORY_TTL, self._settings.LOGIN_ATTEMPT_WINDOW),
        )
        self._metrics.record_login_event("failure")

        if failures == self._settings.LOGIN_MAX_FAILURES:
            return await self._lock(keys, now, failures)
        if failures > self._settings.LOGIN_MAX_FAILURES:
            # Raced past the threshold; the caller that crossed it owns the lock
            return await self._already_locked(keys["lock"], now)

        logger.info(
            "Login failure recorded",
            stage="LS.2",
            subject=self._subject(account, source),
            failures=failures,
            threshold=self._settings.LOGIN_MAX_FAILURES,
        )

        if not source_guard.allowed:
            return LoginAttemptResult(
                allowed=False,
                code=ResultCode.RATE_LIMITED,
                retry_after_seconds=source_guard.reset_after_seconds,
                **self._hints(failures),
            )
        return LoginAttemptResult(allowed=True, code=ResultCode.OK, **self._hints(failures))

    async def _lock(self, keys: dict[str, str], now: float, failures: int) -> LoginAttemptResult:
        """
        STAGE-LS.3: Lockout applied

        The failure counter restarts so the next lock cycle needs a full
        threshold of new failures.
        """
        lock_count = await self._cache.incr(keys["lock_count"], ttl=self._settings.LOGIN_LOCK_HISTORY_TTL)
        duration = self._lockout.delay_for(lock_count - 1)
        locked_until = now + duration

        await self._cache.set(
            keys["lock"],
            orjson.dumps({"locked_until": locked_until, "lock_count": lock_count}).decode(),
            ttl=max(1, math.ceil(duration)),
        )
        await self._cache.delete(keys["failures"])
        self._metrics.record_login_event("lockout")

        logger.warning(
            "Login locked",
            stage="LS.3",
            failures=failures,
            lock_count=lock_count,
            duration_seconds=duration,
        )
        return LoginAttemptResult(
            allowed=False,
            code=ResultCode.LOCKED,
            retry_after_seconds=max(1, math.ceil(duration)),
            captcha_required=True,
        )

    async def _already_locked(self, lock_key: str, now: float) -> LoginAttemptResult:
        locked_until = await self._active_lock(lock_key, now)
        if locked_until is not None:
            retry_after = max(1, math.ceil(locked_until - now))
        else:
            retry_after = max(1, math.ceil(self._lockout.delay_for(0)))
        return LoginAttemptResult(
            allowed=False,
            code=ResultCode.LOCKED,
            retry_after_seconds=retry_after,
            captcha_required=True,
        )

    async def on_success(self, account: str, source: str) -> None:
        """
        Zero the failure count and lift any lock in one multi-key delete.

        STAGE-LS.4: Success reset

        Lock history is kept, so a pair that keeps getting locked still
        escalates until the history expires.
        """
        keys = self._keys(account, source)
        await self._cache.delete(keys["failures"], keys["lock"], keys["last_failure"])
        self._metrics.record_login_event("success")
        logger.debug("Login success reset", stage="LS.4", subject=self._subject(account, source))

    async def get_record(self, account: str, source: str) -> LoginAttemptRecord:
        keys = self._keys(account, source)
        now = self._clock()

        failures = await self._cache.get(keys["failures"])
        lock_count = await self._cache.get(keys["lock_count"])
        last_failure = await self._cache.get(keys["last_failure"])

        return LoginAttemptRecord(
            account=account,
            source=source,
            failure_count=int(failures) if failures is not None else 0,
            locked_until=await self._active_lock(keys["lock"], now),
            last_failure_at=float(last_failure) if last_failure is not None else None,
            lock_count=int(lock_count) if lock_count is not None else 0,
        )

    async def get_stats(self, account: str, source: str) -> LoginAttemptStats:
        """Counters and flags for operators; never consumes an attempt."""
        source_guard = await self._source_guard(source)
        record = await self.get_record(account, source)
        hints = self._hints(record.failure_count)

        return LoginAttemptStats(
            account_failures=record.failure_count,
            source_failures=source_guard.limit - source_guard.remaining,
            locked=record.locked_until is not None,
            source_blocked=not source_guard.allowed,
            captcha_required=hints["captcha_required"],
            delay_seconds=hints["delay_seconds"],
        )

    async def on_password_reset(self, account: str) -> int:
        """
        Optionally lift lockouts after a password reset.

        STAGE-LS.5: Password reset

        Controlled by LOGIN_CLEAR_LOCKOUT_ON_PASSWORD_RESET.

        Returns:
            int: Number of sources whose state was cleared (0 when disabled)
        """
        if not self._settings.LOGIN_CLEAR_LOCKOUT_ON_PASSWORD_RESET:
            logger.info("Password reset leaves lockouts in place", stage="LS.5")
            return 0

        sources = await self._cache.smembers(self._sources_key(account))
        if not sources:
            return 0

        doomed: list[str] = []
        for source in sources:
            keys = self._keys(account, source)
            doomed.extend((keys["failures"], keys["lock"], keys["last_failure"]))
        await self._cache.delete(*doomed)

        logger.info("Lockouts cleared after password reset", stage="LS.5", sources=len(sources))
        return len(sources)
