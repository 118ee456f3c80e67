"""
Unit Tests for LoginSecurity

Tests the per-(account, source) lockout lifecycle, escalation with lock
history, attempt hints, the per-source guard and password-reset handling.
"""

import asyncio

import pytest

from authguard.core.config.constants import ResultCode
from authguard.security.login_security import LoginSecurity

ACCOUNT = "alice@example.com"
SOURCE = "203.0.113.7"


async def fail(login_security, times, account=ACCOUNT, source=SOURCE):
    return [await login_security.on_failure(account, source) for _ in range(times)]


@pytest.mark.unit
class TestLoginHints:
    @pytest.mark.asyncio
    async def test_fresh_pair_is_allowed(self, login_security):
        result = await login_security.before_attempt(ACCOUNT, SOURCE)

        assert result.allowed
        assert result.code == ResultCode.OK
        assert result.attempts_remaining == 5
        assert result.captcha_required is False
        assert result.delay_seconds == 0.0

    @pytest.mark.asyncio
    async def test_failures_count_down_with_hints(self, login_security):
        results = await fail(login_security, 4)

        assert [r.code for r in results] == [ResultCode.OK] * 4
        assert [r.attempts_remaining for r in results] == [4, 3, 2, 1]
        assert [r.captcha_required for r in results] == [False, False, True, True]
        assert [r.delay_seconds for r in results] == [1.0, 2.0, 4.0, 8.0]

    def test_progressive_delay_is_capped(self, login_security):
        assert login_security.progressive_delay(0) == 0.0
        assert login_security.progressive_delay(5) == 10.0
        assert login_security.progressive_delay(500) == 10.0


@pytest.mark.unit
class TestLockout:
    @pytest.mark.asyncio
    async def test_threshold_failure_locks(self, login_security):
        results = await fail(login_security, 5)

        assert results[-1].code == ResultCode.LOCKED
        assert results[-1].retry_after_seconds == 900
        assert results[-1].captcha_required is True

        check = await login_security.before_attempt(ACCOUNT, SOURCE)
        assert not check.allowed
        assert check.code == ResultCode.LOCKED
        assert check.retry_after_seconds == 900

    @pytest.mark.asyncio
    async def test_lock_expires(self, login_security, clock):
        await fail(login_security, 5)

        clock.advance(899)
        check = await login_security.before_attempt(ACCOUNT, SOURCE)
        assert check.code == ResultCode.LOCKED
        assert check.retry_after_seconds == 1

        clock.advance(1)
        check = await login_security.before_attempt(ACCOUNT, SOURCE)
        assert check.allowed
        assert check.attempts_remaining == 5

    @pytest.mark.asyncio
    async def test_lock_duration_escalates_and_caps(self, login_security, clock):
        durations = []
        for _ in range(4):
            results = await fail(login_security, 5)
            durations.append(results[-1].retry_after_seconds)
            clock.advance(results[-1].retry_after_seconds)

        assert durations == [900, 1800, 3600, 3600]

    @pytest.mark.asyncio
    async def test_success_clears_failures_and_lock(self, login_security):
        await fail(login_security, 5)

        await login_security.on_success(ACCOUNT, SOURCE)

        check = await login_security.before_attempt(ACCOUNT, SOURCE)
        assert check.allowed
        assert check.attempts_remaining == 5
        record = await login_security.get_record(ACCOUNT, SOURCE)
        assert record.failure_count == 0
        assert record.locked_until is None

    @pytest.mark.asyncio
    async def test_success_keeps_lock_history(self, login_security):
        await fail(login_security, 5)
        await login_security.on_success(ACCOUNT, SOURCE)

        results = await fail(login_security, 5)
        assert results[-1].retry_after_seconds == 1800

    @pytest.mark.asyncio
    async def test_failures_expire_with_window(self, login_security, clock):
        await fail(login_security, 4)
        clock.advance(900)

        result = await login_security.on_failure(ACCOUNT, SOURCE)
        assert result.code == ResultCode.OK
        assert result.attempts_remaining == 4

    @pytest.mark.asyncio
    async def test_lockout_is_per_source(self, login_security):
        await fail(login_security, 5, source="198.51.100.1")

        assert (await login_security.before_attempt(ACCOUNT, "198.51.100.1")).code == ResultCode.LOCKED
        assert (await login_security.before_attempt(ACCOUNT, "198.51.100.2")).allowed

    @pytest.mark.asyncio
    async def test_concurrent_failures_lock_once(self, login_security):
        results = await asyncio.gather(*(login_security.on_failure(ACCOUNT, SOURCE) for _ in range(8)))

        assert sum(r.code == ResultCode.LOCKED for r in results) >= 1
        record = await login_security.get_record(ACCOUNT, SOURCE)
        assert record.lock_count == 1
        assert (await login_security.before_attempt(ACCOUNT, SOURCE)).code == ResultCode.LOCKED

    @pytest.mark.asyncio
    async def test_get_record(self, login_security, clock):
        await fail(login_security, 2)
        record = await login_security.get_record(ACCOUNT, SOURCE)

        assert record.account == ACCOUNT
        assert record.failure_count == 2
        assert record.last_failure_at == clock()
        assert record.lock_count == 0


@pytest.mark.unit
class TestSourceGuard:
    @pytest.mark.asyncio
    async def test_spraying_across_accounts_is_blocked(self, login_security):
        for n in range(20):
            await login_security.on_failure(f"user{n}@example.com", SOURCE)

        check = await login_security.before_attempt("victim@example.com", SOURCE)
        assert not check.allowed
        assert check.code == ResultCode.RATE_LIMITED
        assert check.retry_after_seconds == 3600

        result = await login_security.on_failure("victim@example.com", SOURCE)
        assert result.code == ResultCode.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_other_sources_unaffected(self, login_security):
        for n in range(20):
            await login_security.on_failure(f"user{n}@example.com", SOURCE)
        assert (await login_security.before_attempt("victim@example.com", "192.0.2.50")).allowed


@pytest.mark.unit
class TestRiskHints:
    @pytest.mark.asyncio
    async def test_quiet_source_has_no_hints(self, login_security):
        result = await login_security.before_attempt(ACCOUNT, SOURCE, user_agent="Mozilla/5.0 (X11; Linux x86_64)")
        assert result.risk_score == 0
        assert result.risk_hints == []

    @pytest.mark.asyncio
    async def test_rapid_attempts_from_source(self, login_security):
        for n in range(6):
            await login_security.on_failure(f"user{n}@example.com", SOURCE)

        result = await login_security.before_attempt(ACCOUNT, SOURCE)
        assert result.allowed
        assert result.risk_hints == ["rapid_attempts"]
        assert result.risk_score == 2

    @pytest.mark.asyncio
    async def test_high_volume_from_source(self, login_security):
        for n in range(11):
            await login_security.on_failure(f"user{n}@example.com", SOURCE)

        result = await login_security.before_attempt(ACCOUNT, SOURCE)
        assert result.allowed
        assert result.risk_hints == ["high_attempt_volume", "rapid_attempts"]
        assert result.risk_score == 5

    @pytest.mark.asyncio
    async def test_attack_tool_user_agent(self, login_security):
        result = await login_security.before_attempt(ACCOUNT, SOURCE, user_agent="sqlmap/1.7.2#stable")
        assert result.allowed
        assert result.risk_hints == ["malicious_user_agent"]
        assert result.risk_score == 5

    @pytest.mark.asyncio
    async def test_scripted_client_alone_is_not_flagged(self, login_security):
        result = await login_security.before_attempt(ACCOUNT, SOURCE, user_agent="python-requests/2.31.0")
        assert result.risk_hints == []

    @pytest.mark.asyncio
    async def test_scripted_client_adds_to_other_signals(self, login_security):
        for n in range(6):
            await login_security.on_failure(f"user{n}@example.com", SOURCE)

        result = await login_security.before_attempt(ACCOUNT, SOURCE, user_agent="curl/8.4.0")
        assert result.risk_hints == ["rapid_attempts", "automated_tool"]
        assert result.risk_score == 4

    @pytest.mark.asyncio
    async def test_hints_ride_along_when_rate_limited(self, login_security):
        for n in range(20):
            await login_security.on_failure(f"user{n}@example.com", SOURCE)

        result = await login_security.before_attempt(ACCOUNT, SOURCE)
        assert result.code == ResultCode.RATE_LIMITED
        assert "high_attempt_volume" in result.risk_hints


@pytest.mark.unit
class TestLoginStats:
    @pytest.mark.asyncio
    async def test_stats_reflect_counters(self, login_security):
        await fail(login_security, 3)
        await login_security.on_failure("other@example.com", SOURCE)

        stats = await login_security.get_stats(ACCOUNT, SOURCE)

        assert stats.account_failures == 3
        assert stats.source_failures == 4
        assert stats.locked is False
        assert stats.source_blocked is False
        assert stats.captcha_required is True
        assert stats.delay_seconds == 4.0

    @pytest.mark.asyncio
    async def test_stats_after_lock(self, login_security):
        await fail(login_security, 5)

        stats = await login_security.get_stats(ACCOUNT, SOURCE)
        assert stats.locked is True
        assert stats.account_failures == 0

    @pytest.mark.asyncio
    async def test_stats_do_not_consume(self, login_security):
        await login_security.get_stats(ACCOUNT, SOURCE)
        stats = await login_security.get_stats(ACCOUNT, SOURCE)

        assert stats.source_failures == 0
        assert stats.to_dict()["source_blocked"] is False


@pytest.mark.unit
class TestPasswordReset:
    @pytest.mark.asyncio
    async def test_default_keeps_lockouts(self, login_security):
        await fail(login_security, 5)

        assert await login_security.on_password_reset(ACCOUNT) == 0
        assert (await login_security.before_attempt(ACCOUNT, SOURCE)).code == ResultCode.LOCKED

    @pytest.mark.asyncio
    async def test_opt_in_clears_every_source(self, cache, rate_limiter, settings, metrics, clock):
        login_settings = settings.login.model_copy(update={"LOGIN_CLEAR_LOCKOUT_ON_PASSWORD_RESET": True})
        login_security = LoginSecurity(cache, rate_limiter, login_settings, metrics, clock=clock)

        await fail(login_security, 5, source="198.51.100.1")
        await fail(login_security, 5, source="198.51.100.2")

        assert await login_security.on_password_reset(ACCOUNT) == 2
        assert (await login_security.before_attempt(ACCOUNT, "198.51.100.1")).allowed
        assert (await login_security.before_attempt(ACCOUNT, "198.51.100.2")).allowed


@pytest.mark.unit
class TestLoginDuringOutage:
    @pytest.mark.asyncio
    async def test_lockout_enforced_from_fallback(self, login_security, primary):
        primary.down = True

        results = await fail(login_security, 5)

        assert results[-1].code == ResultCode.LOCKED
        assert (await login_security.before_attempt(ACCOUNT, SOURCE)).code == ResultCode.LOCKED
