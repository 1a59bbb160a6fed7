"""
Session lifecycle manager.

Owns the live-session table: creation under a concurrency cap, lazy and
periodic expiry, additive application merges with completion scoring, and
transcript appends.

A session is live while status is active/paused and now < expires_at.
Completing, erroring or expiring removes it from the table.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Callable, Optional, Protocol

from pydantic import ValidationError

from ..core.config import get_settings
from ..core.errors import CapacityExceeded, InvalidPatch, SessionNotFound
from ..models.application import merge_application
from ..models.session import (
    ConversationEntry,
    EntryRole,
    Session,
    SessionStatus,
    utcnow,
)
from .completion import with_completion

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class SessionStore(Protocol):
    """Keyed map of live sessions. Swap for a shared store when scaling out."""

    def get(self, session_id: str) -> Optional[Session]: ...
    def put(self, session: Session) -> None: ...
    def remove(self, session_id: str) -> bool: ...
    def values(self) -> list[Session]: ...
    def __len__(self) -> int: ...


class InMemorySessionStore:
    def __init__(self):
        self._sessions: dict[str, Session] = {}

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def put(self, session: Session) -> None:
        self._sessions[session.id] = session

    def remove(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def values(self) -> list[Session]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)


class SessionManager:
    def __init__(
        self,
        store: Optional[SessionStore] = None,
        timeout_ms: Optional[int] = None,
        max_sessions: Optional[int] = None,
        cleanup_interval_ms: Optional[int] = None,
        clock: Clock = utcnow,
    ):
        settings = get_settings()
        self.store = store if store is not None else InMemorySessionStore()
        self.timeout = timedelta(
            milliseconds=timeout_ms if timeout_ms is not None else settings.session_timeout_ms
        )
        self.max_sessions = (
            max_sessions if max_sessions is not None else settings.max_concurrent_sessions
        )
        self.cleanup_interval = (
            cleanup_interval_ms if cleanup_interval_ms is not None
            else settings.session_cleanup_interval_ms
        ) / 1000
        self._clock = clock
        self._cleanup_task: Optional[asyncio.Task] = None

    # ── Lifecycle ────────────────────────────────────────────────────

    def create_session(self, user_id: Optional[str] = None) -> Session:
        """
        Create a session with an empty application.
        Raises CapacityExceeded (table untouched) at the concurrency cap.
        """
        if len(self.store) >= self.max_sessions:
            self.cleanup_expired_sessions()
        if len(self.store) >= self.max_sessions:
            logger.warning("Session refused: %d/%d live", len(self.store), self.max_sessions)
            raise CapacityExceeded(self.max_sessions)

        now = self._clock()
        session = Session(
            id=str(uuid.uuid4()),
            agent_id=str(uuid.uuid4()),
            user_id=user_id,
            created_at=now,
            last_activity=now,
            expires_at=now + self.timeout,
        )
        session.data = with_completion(session.data)
        self.store.put(session)
        logger.info("Session created: %s (live=%d)", session.id, len(self.store))
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        """Returns the session and records activity. Expired sessions are evicted and miss."""
        session = self.store.get(session_id)
        if session is None:
            return None

        now = self._clock()
        if session.is_expired(now):
            self.store.remove(session_id)
            logger.info("Session expired on read: %s", session_id)
            return None

        session.last_activity = now
        return session

    def peek_session(self, session_id: str) -> Optional[Session]:
        """Read without touching activity or evicting."""
        return self.store.get(session_id)

    def require_session(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def update_session_data(self, session_id: str, patch: dict) -> Session:
        """
        Deep-merge patch into the session's application and rescore.
        Raises InvalidPatch if the merged application fails validation;
        the session is left as it was.
        """
        session = self.require_session(session_id)
        try:
            merged = merge_application(session.data, patch)
        except ValidationError as e:
            raise InvalidPatch(str(e)) from e

        session.data = with_completion(merged)
        logger.debug(
            "Session %s data updated (overall=%d%%)",
            session_id, session.data.completion_status.overall,
        )
        return session

    def set_fields(self, session_id: str, section: str, values: dict) -> Session:
        """
        Assign values to one application section as given, None included, and
        rescore. For authoritative writers whose resets must clear fields;
        extraction and API patches go through update_session_data.
        """
        session = self.require_session(session_id)
        current = getattr(session.data, section)
        try:
            updated = type(current).model_validate({**current.model_dump(), **values})
        except ValidationError as e:
            raise InvalidPatch(str(e)) from e

        session.data = with_completion(session.data.model_copy(update={section: updated}))
        return session

    def update_status(self, session_id: str, status: SessionStatus) -> Session:
        session = self.require_session(session_id)
        session.status = status
        if not session.is_live:
            self.store.remove(session_id)
            logger.info("Session %s %s", session_id, status.value)
        return session

    def complete_session(self, session_id: str, status: SessionStatus = SessionStatus.COMPLETED) -> bool:
        """Mark final status and drop from the live table. False if already gone."""
        session = self.store.get(session_id)
        if session is None:
            return False
        session.status = status
        session.last_activity = self._clock()
        self.store.remove(session_id)
        logger.info("Session %s %s", session_id, status.value)
        return True

    def delete_session(self, session_id: str) -> bool:
        removed = self.store.remove(session_id)
        if removed:
            logger.info("Session deleted: %s", session_id)
        return removed

    def extend_session(self, session_id: str, additional_ms: Optional[int] = None) -> Session:
        session = self.require_session(session_id)
        extra = timedelta(milliseconds=additional_ms) if additional_ms else self.timeout
        session.expires_at = self._clock() + extra
        return session

    # ── Transcript ───────────────────────────────────────────────────

    def add_conversation_item(
        self,
        session_id: str,
        role: EntryRole,
        content: str,
        metadata: Optional[dict] = None,
    ) -> ConversationEntry:
        session = self.require_session(session_id)
        entry = ConversationEntry(
            role=EntryRole(role),
            content=content,
            metadata=metadata or {},
            timestamp=self._clock(),
        )
        session.conversation_history.append(entry)
        return entry

    # ── Queries ──────────────────────────────────────────────────────

    def active_count(self) -> int:
        return len(self.store)

    def list_sessions(self) -> list[Session]:
        now = self._clock()
        return [s for s in self.store.values() if not s.is_expired(now)]

    # ── Expiry sweep ─────────────────────────────────────────────────

    def cleanup_expired_sessions(self) -> int:
        now = self._clock()
        expired = [s.id for s in self.store.values() if s.is_expired(now)]
        for session_id in expired:
            self.store.remove(session_id)
        if expired:
            logger.info("Cleaned up %d expired sessions", len(expired))
        return len(expired)

    async def run_cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.cleanup_expired_sessions()
            except Exception as e:
                logger.exception("Session cleanup failed: %s", e)

    def start_cleanup(self) -> None:
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self.run_cleanup_loop())

    async def stop_cleanup(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None


@lru_cache
def get_session_manager() -> SessionManager:
    return SessionManager()
