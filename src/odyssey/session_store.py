"""Session persistence with lazy expiry on every read."""

from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

from .audit import AuditTrail, EventType
from .errors import DuplicateSessionError, SessionNotFoundError
from .models import Session, now_ms
from .store import SESSIONS_KEY, DurableStore

logger = logging.getLogger(__name__)

R = TypeVar("R")


class SessionBook:
    """Read-modify-write access to the sessions collection.

    Every read flips active sessions past ``expiresAt`` to expired and
    persists that before returning, so no caller observes a stale status.
    """

    def __init__(
        self,
        store: DurableStore,
        audit: Optional[AuditTrail] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.audit = audit
        self.clock = clock

    def _load(self) -> list[Session]:
        return self.store.load(SESSIONS_KEY, Session.from_dict)

    def _expire(
        self,
        sessions: list[Session],
        now: int,
        only: Optional[Session] = None,
    ) -> list[Session]:
        candidates = sessions if only is None else [only]
        flipped = [s for s in candidates if s.expire_if_due(now)]
        if flipped:
            self.store.save(SESSIONS_KEY, sessions)
            for session in flipped:
                logger.info("Session expired: %s (agent %s)", session.id, session.agent_id)
                if self.audit:
                    self.audit.log(
                        EventType.SESSION_EXPIRED,
                        session_id=session.id,
                        agent_id=session.agent_id,
                        details={"expires_at": session.expires_at, "checked_at": now},
                    )
        return flipped

    def list_sessions(self, agent_id: Optional[str] = None, now: Optional[int] = None) -> list[Session]:
        now = self.clock() if now is None else now
        with self.store.transaction():
            sessions = self._load()
            self._expire(sessions, now)
        if agent_id is not None:
            sessions = [s for s in sessions if s.agent_id == agent_id]
        return sessions

    def get(self, session_id: str, now: Optional[int] = None) -> Session:
        session, _ = self.mutate(session_id, lambda s: None, now=now)
        return session

    def find(self, session_id: str, now: Optional[int] = None) -> Optional[Session]:
        try:
            return self.get(session_id, now=now)
        except SessionNotFoundError:
            return None

    def sweep_expired(self, now: Optional[int] = None) -> int:
        """Expire every due session; returns how many flipped."""
        now = self.clock() if now is None else now
        with self.store.transaction():
            return len(self._expire(self._load(), now))

    def add(self, session: Session) -> Session:
        with self.store.transaction():
            sessions = self._load()
            if any(s.id == session.id for s in sessions):
                raise DuplicateSessionError(f"Session already exists: {session.id}")
            if session.status.is_live:
                for s in sessions:
                    if (
                        s.status.is_live
                        and s.agent_id == session.agent_id
                        and s.session_key == session.session_key
                    ):
                        raise DuplicateSessionError(
                            f"Agent {session.agent_id} already has a {s.status.value} session "
                            f"for key {session.session_key}: {s.id}"
                        )
            sessions.append(session)
            self.store.save(SESSIONS_KEY, sessions)
        return session

    def mutate(
        self,
        session_id: str,
        change: Callable[[Session], R],
        now: Optional[int] = None,
    ) -> tuple[Session, R]:
        """Apply ``change`` to one session in a single critical section.

        Expiry is applied and persisted first; the change then sees the
        current status. The collection is saved again only if the change
        altered the session, so plain reads never rewrite the document.
        """
        now = self.clock() if now is None else now
        with self.store.transaction():
            sessions = self._load()
            target = next((s for s in sessions if s.id == session_id), None)
            if target is None:
                raise SessionNotFoundError(f"Session not found: {session_id}")
            self._expire(sessions, now, only=target)
            before = target.to_dict()
            result = change(target)
            if target.to_dict() != before:
                self.store.save(SESSIONS_KEY, sessions)
        return target, result

    def mutate_many(
        self,
        select: Callable[[Session], bool],
        change: Callable[[Session], None],
        now: Optional[int] = None,
    ) -> list[Session]:
        now = self.clock() if now is None else now
        with self.store.transaction():
            sessions = self._load()
            self._expire(sessions, now)
            selected = [s for s in sessions if select(s)]
            for session in selected:
                change(session)
            if selected:
                self.store.save(SESSIONS_KEY, sessions)
        return selected
