"""
Unit Tests for SessionManager

Tests session creation, sliding and absolute expiry, revocation (single,
all-but-current), logout and active-session listing.

Settings under test: idle 1800s, remember-me idle 7200s, absolute 10800s,
retention 600s (1s for the minimum-retention cases).
"""

import asyncio

import pytest

from authguard.core.config.constants import ResultCode
from authguard.security.models import Session
from authguard.security.session_manager import SessionManager

USER = "user-42"


@pytest.mark.unit
class TestSessionCreate:
    @pytest.mark.asyncio
    async def test_create_and_validate(self, session_manager, clock):
        session = await session_manager.create(USER, device_info={"ua": "Firefox", "ip": "198.51.100.4"})

        assert session.user_id == USER
        assert session.expires_at == clock() + 1800
        assert session.absolute_expires_at == clock() + 10800

        result = await session_manager.validate(session.session_id)
        assert result.valid
        assert result.code == ResultCode.OK
        assert result.expires_in_seconds == 1800
        assert result.session.device_info == {"ua": "Firefox", "ip": "198.51.100.4"}

    @pytest.mark.asyncio
    async def test_ids_are_unique_and_long(self, session_manager):
        ids = {(await session_manager.create(USER)).session_id for _ in range(50)}
        assert len(ids) == 50
        assert all(len(session_id) >= 32 for session_id in ids)

    @pytest.mark.asyncio
    async def test_remember_me_uses_longer_idle(self, session_manager, clock):
        session = await session_manager.create(USER, remember_me=True)
        assert session.idle_seconds == 7200
        assert session.expires_at == clock() + 7200


@pytest.mark.unit
class TestSessionExpiry:
    @pytest.mark.asyncio
    async def test_validation_slides_expiry(self, session_manager, clock):
        session = await session_manager.create(USER)

        clock.advance(1000)
        assert (await session_manager.validate(session.session_id)).valid

        clock.advance(1799)
        result = await session_manager.validate(session.session_id)
        assert result.valid
        assert result.session.expires_at == clock() + 1800

    @pytest.mark.asyncio
    async def test_idle_session_expires(self, session_manager, clock):
        session = await session_manager.create(USER)

        clock.advance(1800)
        result = await session_manager.validate(session.session_id)
        assert not result.valid
        assert result.code == ResultCode.EXPIRED

    @pytest.mark.asyncio
    async def test_expired_record_disappears_after_retention(self, session_manager, clock):
        session = await session_manager.create(USER)

        clock.advance(1800 + 600)
        assert (await session_manager.validate(session.session_id)).code == ResultCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_absolute_lifetime_caps_sliding(self, session_manager, clock):
        session = await session_manager.create(USER, remember_me=True)
        start = clock()

        clock.advance(7000)
        result = await session_manager.validate(session.session_id)
        assert result.valid
        assert result.session.expires_at == start + 10800

        clock.advance(3800)
        assert (await session_manager.validate(session.session_id)).code == ResultCode.EXPIRED

    @pytest.mark.asyncio
    async def test_validate_without_touch_does_not_slide(self, session_manager, clock):
        session = await session_manager.create(USER)

        clock.advance(1000)
        assert (await session_manager.validate(session.session_id, touch=False)).valid
        clock.advance(800)
        assert (await session_manager.validate(session.session_id)).code == ResultCode.EXPIRED

    @pytest.mark.asyncio
    async def test_unknown_session(self, session_manager):
        result = await session_manager.validate("does-not-exist")
        assert result.code == ResultCode.NOT_FOUND
        assert result.session is None


@pytest.mark.unit
class TestSessionRevocation:
    @pytest.mark.asyncio
    async def test_revoke(self, session_manager, clock):
        session = await session_manager.create(USER)

        assert await session_manager.revoke(session.session_id) is True
        assert (await session_manager.validate(session.session_id)).code == ResultCode.REVOKED

        clock.advance(1799)
        assert (await session_manager.validate(session.session_id)).code == ResultCode.REVOKED

        clock.advance(1 + 600)
        assert (await session_manager.validate(session.session_id)).code == ResultCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_stale_touch_cannot_undo_revoke(self, session_manager, primary):
        session = await session_manager.create(USER)
        session_key = f"session:{session.session_id}"
        store_set = primary.set
        revoke_written = asyncio.Event()

        async def touch_lands_after_revoke(key, value, ttl=None, nx=False):
            if key != session_key:
                return await store_set(key, value, ttl=ttl, nx=nx)
            if Session.from_json(value).revoked:
                written = await store_set(key, value, ttl=ttl, nx=nx)
                revoke_written.set()
                return written
            await revoke_written.wait()
            return await store_set(key, value, ttl=ttl, nx=nx)

        primary.set = touch_lands_after_revoke

        _, revoked = await asyncio.gather(
            session_manager.validate(session.session_id), session_manager.revoke(session.session_id)
        )

        assert revoked is True
        result = await session_manager.validate(session.session_id)
        assert not result.valid
        assert result.code == ResultCode.REVOKED

    @pytest.mark.asyncio
    async def test_revoke_unknown_returns_false(self, session_manager):
        assert await session_manager.revoke("nope") is False

    @pytest.mark.asyncio
    async def test_revoke_all_except_current(self, session_manager):
        current = await session_manager.create(USER)
        others = [await session_manager.create(USER) for _ in range(2)]
        unrelated = await session_manager.create("someone-else")

        assert await session_manager.revoke_all(USER, except_session_id=current.session_id) == 2

        assert (await session_manager.validate(current.session_id)).valid
        for other in others:
            assert (await session_manager.validate(other.session_id)).code == ResultCode.REVOKED
        assert (await session_manager.validate(unrelated.session_id)).valid

    @pytest.mark.asyncio
    async def test_destroy(self, session_manager):
        session = await session_manager.create(USER)

        assert await session_manager.destroy(session.session_id) is True
        assert (await session_manager.validate(session.session_id)).code == ResultCode.NOT_FOUND
        assert await session_manager.destroy(session.session_id) is False
        assert await session_manager.list_active(USER) == []


@pytest.mark.unit
class TestSessionMinimumRetention:
    @pytest.fixture
    def short_retention(self, cache, settings, metrics, clock):
        session_settings = settings.session.model_copy(update={"SESSION_RETENTION": 1})
        return SessionManager(cache, session_settings, metrics, clock=clock)

    @pytest.mark.asyncio
    async def test_revoked_session_reports_revoked(self, short_retention, clock):
        session = await short_retention.create(USER)
        await short_retention.revoke(session.session_id)

        assert (await short_retention.validate(session.session_id)).code == ResultCode.REVOKED
        clock.advance(1000)
        assert (await short_retention.validate(session.session_id)).code == ResultCode.REVOKED

    @pytest.mark.asyncio
    async def test_idle_session_reports_expired(self, short_retention, clock):
        session = await short_retention.create(USER)

        clock.advance(1800)
        assert (await short_retention.validate(session.session_id)).code == ResultCode.EXPIRED


@pytest.mark.unit
class TestSessionListing:
    @pytest.mark.asyncio
    async def test_list_active_oldest_first(self, session_manager, clock):
        first = await session_manager.create(USER)
        clock.advance(10)
        second = await session_manager.create(USER)

        active = await session_manager.list_active(USER)
        assert [s.session_id for s in active] == [first.session_id, second.session_id]

    @pytest.mark.asyncio
    async def test_list_active_prunes_dead_sessions(self, session_manager, clock):
        stale = await session_manager.create(USER)
        clock.advance(1000)
        fresh = await session_manager.create(USER)
        revoked = await session_manager.create(USER)
        await session_manager.revoke(revoked.session_id)

        clock.advance(900)

        active = await session_manager.list_active(USER)
        assert [s.session_id for s in active] == [fresh.session_id]
        assert (await session_manager.validate(stale.session_id)).code == ResultCode.EXPIRED


@pytest.mark.unit
class TestSessionsDuringOutage:
    @pytest.mark.asyncio
    async def test_sessions_work_from_fallback(self, session_manager, primary):
        primary.down = True

        session = await session_manager.create(USER)
        assert (await session_manager.validate(session.session_id)).valid
        assert await session_manager.revoke(session.session_id) is True
        assert (await session_manager.validate(session.session_id)).code == ResultCode.REVOKED
