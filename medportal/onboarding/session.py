"""
Session Gateway - Persists onboarding progress to an expiring remote session.

The gateway keeps a client-side copy of the last session it saw so that
time-to-expiry can be derived locally. Backend failures surface as
PersistenceError; callers decide whether to warn or stay silent.
"""

import asyncio
from typing import Dict, Any, Optional, Callable, Set, Awaitable, TypeVar
from datetime import datetime, timedelta

from medportal.backend.base import SessionBackend
from medportal.config.constants import SESSION_TTL_HOURS
from medportal.onboarding.states import OnboardingStep, Session, SessionStatus
from medportal.infra.exceptions import BackendError, PersistenceError, SessionClosedError
from medportal.infra.logger import get_logger, AsyncLogContext
from medportal.infra.utils import utc_now, to_iso


logger = get_logger(__name__)

T = TypeVar("T")


def _step_value(step: Any) -> str:
    return step.value if isinstance(step, OnboardingStep) else str(step)


class SessionGateway:
    """
    Save, load, abandon, extend and recover the identity's onboarding session.
    """

    def __init__(
        self,
        backend: SessionBackend,
        ttl_hours: float = SESSION_TTL_HOURS,
        clock: Callable[[], datetime] = utc_now
    ):
        self.backend = backend
        self.ttl = timedelta(hours=ttl_hours)
        self._clock = clock
        self._current: Optional[Session] = None
        self._closed: Set[str] = set()
        self._lock = asyncio.Lock()

    @property
    def current(self) -> Optional[Session]:
        """Client-side copy of the active (or expired) session."""
        return self._current

    @property
    def session_id(self) -> Optional[str]:
        return self._current.session_id if self._current else None

    def is_closed(self, session_id: Optional[str]) -> bool:
        return session_id is not None and session_id in self._closed

    async def _call(
        self,
        operation: str,
        session_id: Optional[str],
        call: Callable[[], Awaitable[T]]
    ) -> T:
        async with AsyncLogContext(logger, f"session {operation}", session_id=session_id):
            try:
                return await call()
            except PersistenceError:
                raise
            except BackendError as e:
                raise PersistenceError(
                    message=e.message,
                    session_id=session_id,
                    operation=operation,
                    status=e.status
                ) from e

    async def save(self, snapshot: Dict[str, Any]) -> Optional[str]:
        """
        Upsert the current progress and slide the expiry window.

        Saves are serialized, so a save issued while the first write of a new
        session is in flight lands on that session instead of creating another.
        A snapshot without an id never reuses an expired session: that record
        stays untouched for recover().

        Args:
            snapshot: Store snapshot (session_id may be None for a new session)

        Returns:
            The session id assigned by the backend, or None when the snapshot
            targets a closed session

        Raises:
            PersistenceError: If the backend write fails or assigns no id
        """
        async with self._lock:
            session_id = snapshot.get("session_id")
            if not session_id and self._current is not None and not self.is_expired():
                session_id = self._current.session_id

            if self.is_closed(session_id):
                logger.warning(f"Ignoring save for closed session {session_id}")
                return None

            now = self._clock()
            created_at = now
            if session_id and self._current and self._current.session_id == session_id:
                created_at = self._current.created_at

            record = {
                "session_id": session_id,
                "current_step": _step_value(snapshot.get("current_step", OnboardingStep.WELCOME)),
                "answers": dict(snapshot.get("answers") or {}),
                "completed_steps": [_step_value(s) for s in snapshot.get("completed_steps") or []],
                "skipped_steps": [_step_value(s) for s in snapshot.get("skipped_steps") or []],
                "path": [_step_value(s) for s in snapshot.get("path") or []],
                "status": SessionStatus.ACTIVE.value,
                "created_at": to_iso(created_at),
                "updated_at": to_iso(now),
                "expires_at": to_iso(now + self.ttl)
            }

            stored = await self._call("save", session_id, lambda: self.backend.upsert(record))

            merged = dict(record)
            if stored:
                merged.update({k: v for k, v in stored.items() if v is not None})
            stored_id = merged.get("session_id")
            if not stored_id:
                raise PersistenceError(
                    "Session backend did not assign a session id",
                    operation="save"
                )

            if self.is_closed(stored_id):
                # Abandoned while the write was in flight.
                logger.warning(f"Session {stored_id} closed during save, removing stale write")
                await self._call("delete", stored_id, lambda: self.backend.delete(stored_id))
                return None

            self._current = Session.from_dict(merged)

            logger.debug(f"Saved session {stored_id} at step {record['current_step']}")
            return stored_id

    async def load(self) -> Optional[Session]:
        """
        Fetch the latest resumable session for the identity.

        Returns:
            The session, or None if none exists or it has expired. An expired
            session is kept so is_expired() and recover() can see it.

        Raises:
            PersistenceError: If the backend read fails
        """
        record = await self._call("load", None, self.backend.fetch_latest)

        if not record:
            self._current = None
            return None

        session = Session.from_dict(record)

        if self.is_closed(session.session_id) or not session.is_active():
            logger.debug(f"Latest session {session.session_id} is closed, not resuming")
            return None

        self._current = session

        if session.status == SessionStatus.EXPIRED or session.is_expired(self._clock()):
            session.status = SessionStatus.EXPIRED
            logger.info(f"Session {session.session_id} has expired")
            return None

        return session

    async def abandon(self, session_id: Optional[str] = None) -> bool:
        """
        Delete the session and reject any later write to it.

        Args:
            session_id: Session to delete (defaults to the current one)

        Returns:
            True if a session was deleted
        """
        if session_id:
            # Saves queued behind the lock are rejected from here on.
            self._closed.add(session_id)

        async with self._lock:
            session_id = session_id or self.session_id
            if not session_id:
                return False

            self._closed.add(session_id)
            if self._current and self._current.session_id == session_id:
                self._current = None

            deleted = await self._call(
                "abandon", session_id, lambda: self.backend.delete(session_id)
            )
            logger.info(f"Abandoned session {session_id}")
            return bool(deleted)

    def time_until_expiry(self) -> Optional[int]:
        """Seconds left before the current session expires (None without one)."""
        if self._current is None or not self._current.is_active():
            return None
        return self._current.seconds_until_expiry(self._clock())

    def is_expired(self) -> bool:
        """A session exists and its expiry has passed."""
        if self._current is None:
            return False
        if self._current.status == SessionStatus.EXPIRED:
            return True
        return self.time_until_expiry() == 0

    async def extend(self, session_id: Optional[str] = None) -> bool:
        """
        Slide the expiry window without changing stored answers.

        Raises:
            SessionClosedError: If the session was abandoned or completed
            PersistenceError: If the backend call fails
        """
        session_id = session_id or self.session_id
        if not session_id:
            return False
        if self.is_closed(session_id):
            raise SessionClosedError(session_id, "extend")

        expires_at = self._clock() + self.ttl
        ok = await self._call("extend", session_id, lambda: self.backend.touch(session_id, expires_at))

        if ok and self._current and self._current.session_id == session_id:
            self._current.expires_at = expires_at
            self._current.status = SessionStatus.ACTIVE

        return bool(ok)

    async def recover(self, session_id: Optional[str] = None) -> Optional[Session]:
        """
        Re-open an expired session with a fresh TTL.

        Args:
            session_id: Session to recover (defaults to the current one)

        Returns:
            The recovered session with its stored answers, or None

        Raises:
            SessionClosedError: If the session was abandoned or completed
            PersistenceError: If the backend call fails
        """
        session_id = session_id or self.session_id
        if not session_id:
            return None
        if self.is_closed(session_id):
            raise SessionClosedError(session_id, "recover")

        expires_at = self._clock() + self.ttl
        record = await self._call(
            "recover", session_id, lambda: self.backend.revive(session_id, expires_at)
        )
        if not record:
            logger.warning(f"Session {session_id} could not be recovered")
            return None

        session = Session.from_dict(record)
        session.status = SessionStatus.ACTIVE
        if session.expires_at <= self._clock():
            session.expires_at = expires_at

        self._current = session
        logger.info(f"Recovered session {session_id}")
        return session

    def close(self) -> None:
        """Forget the in-memory copy."""
        self._current = None
