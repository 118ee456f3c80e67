"""
Session Manager

Opaque, unguessable session ids with sliding expiry bounded by an absolute
lifetime.

Lifecycle:
    create   -> record stored, id indexed under the user
    validate -> NOT_FOUND / REVOKED / EXPIRED / OK (OK slides expires_at)
    revoke   -> record flagged and a revoked marker written; the marker lives
                to the absolute lifetime so no stale touch can undo it
    destroy  -> record and index entry removed (logout)

Expired records also linger for SESSION_RETENTION past expires_at, so a
late validation says EXPIRED rather than NOT_FOUND.

Concurrent validations of one session may race on the touch write. Every
writer computes ``min(now + idle, absolute_expires_at)``, so last-write-wins
is harmless for expiry. A touch that loaded the record before a revoke can
still write it back unflagged, so validate also consults the revoked marker,
which no touch ever rewrites.

STAGE-SS: Session Manager
-------------------------
SS.1: Create
SS.2: Validate
SS.3: Revoke
SS.4: Destroy
SS.5: List active
"""

import math
import secrets
import time
from collections.abc import Callable
from typing import Any

from authguard.core.config.constants import (
    REDIS_KEY_SESSION,
    REDIS_KEY_SESSION_REVOKED,
    REDIS_KEY_USER_SESSIONS,
    ResultCode,
)
from authguard.core.config.settings import SessionSettings
from authguard.core.logging.logger import get_logger
from authguard.infrastructure.cache.cache_facade import CacheFacade
from authguard.infrastructure.monitoring.metrics_collector import MetricsCollector
from authguard.security.models import Session, SessionResult

logger = get_logger(__name__)


class SessionManager:
    def __init__(
        self,
        cache: CacheFacade,
        settings: SessionSettings,
        metrics: MetricsCollector,
        clock: Callable[[], float] = time.time,
    ):
        self._cache = cache
        self._settings = settings
        self._metrics = metrics
        self._clock = clock

    @staticmethod
    def _session_key(session_id: str) -> str:
        return f"{REDIS_KEY_SESSION}:{session_id}"

    @staticmethod
    def _revoked_key(session_id: str) -> str:
        return f"{REDIS_KEY_SESSION_REVOKED}:{session_id}"

    @staticmethod
    def _index_key(user_id: str) -> str:
        return f"{REDIS_KEY_USER_SESSIONS}:{user_id}"

    @property
    def _index_ttl(self) -> int:
        # Outlives every session it can list
        return self._settings.SESSION_ABSOLUTE_LIFETIME + self._settings.SESSION_RETENTION

    def _storage_ttl(self, session: Session, now: float) -> int:
        return max(1, math.ceil(session.expires_at - now) + self._settings.SESSION_RETENTION)

    def _revoked_ttl(self, session: Session, now: float) -> int:
        # No touch can push a record past the absolute lifetime
        return max(1, math.ceil(session.absolute_expires_at - now) + self._settings.SESSION_RETENTION)

    async def _save(self, session: Session, ttl: int) -> None:
        await self._cache.set(self._session_key(session.session_id), session.to_json(), ttl=ttl)

    async def _load(self, session_id: str) -> Session | None:
        raw = await self._cache.get(self._session_key(session_id))
        return Session.from_json(raw) if raw is not None else None

    @staticmethod
    def _expired(session: Session, now: float) -> bool:
        return now >= session.expires_at or now >= session.absolute_expires_at

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def create(
        self, user_id: str, device_info: dict[str, Any] | None = None, remember_me: bool = False
    ) -> Session:
        """
        Start a session.

        STAGE-SS.1: Create

        Args:
            user_id: Opaque user identifier from the identity store
            device_info: User agent, IP, device name... for device management
            remember_me: Use the longer SESSION_REMEMBER_ME_IDLE timeout

        Returns:
            Session: Includes ``session_id`` and ``expires_at``
        """
        now = self._clock()
        idle = self._settings.SESSION_REMEMBER_ME_IDLE if remember_me else self._settings.SESSION_MAX_IDLE
        absolute = now + self._settings.SESSION_ABSOLUTE_LIFETIME

        session = Session(
            session_id=secrets.token_urlsafe(32),
            user_id=user_id,
            device_info=device_info,
            remember_me=remember_me,
            idle_seconds=idle,
            created_at=now,
            last_activity_at=now,
            expires_at=min(now + idle, absolute),
            absolute_expires_at=absolute,
        )

        await self._save(session, self._storage_ttl(session, now))
        await self._cache.sadd(self._index_key(user_id), session.session_id, ttl=self._index_ttl)

        self._metrics.record_session_event("created")
        logger.info("Session created", stage="SS.1", user_id=user_id, remember_me=remember_me)
        return session

    async def validate(self, session_id: str, touch: bool = True) -> SessionResult:
        """
        Check a session and optionally slide its expiry.

        STAGE-SS.2: Validate

        Order of checks: NOT_FOUND, REVOKED, EXPIRED.
        """
        now = self._clock()
        session = await self._load(session_id)

        if session is None:
            result = SessionResult(valid=False, code=ResultCode.NOT_FOUND)
        elif session.revoked or await self._cache.get(self._revoked_key(session_id)) is not None:
            result = SessionResult(valid=False, code=ResultCode.REVOKED)
        elif self._expired(session, now):
            result = SessionResult(valid=False, code=ResultCode.EXPIRED)
        else:
            if touch:
                session.last_activity_at = now
                session.expires_at = min(now + session.idle_seconds, session.absolute_expires_at)
                await self._save(session, self._storage_ttl(session, now))
            result = SessionResult(
                valid=True,
                code=ResultCode.OK,
                session=session,
                expires_in_seconds=max(0, math.ceil(session.expires_at - now)),
            )

        self._metrics.record_session_event(f"validate:{result.code.value}")
        return result

    async def revoke(self, session_id: str) -> bool:
        """
        Flag a session revoked.

        STAGE-SS.3: Revoke

        Returns:
            bool: False if the session did not exist
        """
        session = await self._load(session_id)
        if session is None:
            return False

        await self._revoke_loaded(session)
        logger.info("Session revoked", stage="SS.3", user_id=session.user_id)
        return True

    async def _revoke_loaded(self, session: Session) -> None:
        now = self._clock()
        if not session.revoked:
            session.revoked = True
            session.revoked_at = now

        await self._cache.set(self._revoked_key(session.session_id), repr(now), ttl=self._revoked_ttl(session, now))
        await self._save(session, self._storage_ttl(session, now))
        await self._cache.srem(self._index_key(session.user_id), session.session_id)
        self._metrics.record_session_event("revoked")

    async def revoke_all(self, user_id: str, except_session_id: str | None = None) -> int:
        """
        Revoke every session of a user, optionally sparing the current one.

        Returns:
            int: Number of sessions revoked
        """
        index_key = self._index_key(user_id)
        revoked = 0

        for session_id in await self._cache.smembers(index_key):
            if session_id == except_session_id:
                continue
            session = await self._load(session_id)
            if session is None:
                await self._cache.srem(index_key, session_id)
                continue
            await self._revoke_loaded(session)
            revoked += 1

        logger.info(
            "User sessions revoked",
            stage="SS.3",
            user_id=user_id,
            revoked=revoked,
            kept_current=except_session_id is not None,
        )
        return revoked

    async def destroy(self, session_id: str) -> bool:
        """
        Remove a session outright (logout).

        STAGE-SS.4: Destroy
        """
        session = await self._load(session_id)
        removed = await self._cache.delete(self._session_key(session_id))
        if session is not None:
            await self._cache.srem(self._index_key(session.user_id), session_id)
            self._metrics.record_session_event("destroyed")
            logger.info("Session destroyed", stage="SS.4", user_id=session.user_id)
        return bool(removed)

    async def list_active(self, user_id: str) -> list[Session]:
        """
        Enumerate a user's valid sessions, oldest first.

        STAGE-SS.5: List active

        Index entries pointing at missing, revoked or expired records are pruned.
        """
        now = self._clock()
        index_key = self._index_key(user_id)
        active: list[Session] = []
        stale: list[str] = []

        for session_id in await self._cache.smembers(index_key):
            session = await self._load(session_id)
            if session is None or session.revoked or self._expired(session, now):
                stale.append(session_id)
            else:
                active.append(session)

        if stale:
            await self._cache.srem(index_key, *stale)
            logger.debug("Pruned stale session index entries", stage="SS.5", user_id=user_id, pruned=len(stale))

        return sorted(active, key=lambda s: s.created_at)
