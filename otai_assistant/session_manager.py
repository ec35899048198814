"""Active-session tracking, idle expiry and archival.

Expiry is evaluated lazily: a session idle for longer than IDLE_TIMEOUT is
archived the next time anyone reads it. There is no background timer; the
interactive shell re-reads the active session on every interaction.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable

from otai_assistant.models import ChatSession, Message, new_id, utc_now
from otai_assistant.storage.connection import KeyValueStore
from otai_assistant.storage.session_repository import SessionRepository

logger = logging.getLogger(__name__)

IDLE_TIMEOUT = timedelta(hours=3)
TITLE_MAX_LENGTH = 50
DEFAULT_TITLE = "Ny konversation"


def derive_session_title(messages: list[Message]) -> str:
    """Title from the first non-assistant message, truncated to 50 characters."""
    for message in messages:
        if message.is_assistant:
            continue
        content = message.content.strip()
        if len(content) > TITLE_MAX_LENGTH:
            return content[:TITLE_MAX_LENGTH] + "..."
        return content
    return DEFAULT_TITLE


class SessionManager:
    """Lifecycle rules for a user's active and archived chat sessions."""

    def __init__(self, store: KeyValueStore, clock: Callable[[], datetime] = utc_now):
        self.sessions = SessionRepository(store)
        self.clock = clock

    def is_expired(self, session: ChatSession) -> bool:
        return self.clock() - session.last_activity_at > IDLE_TIMEOUT

    def _archive_expired(self, user_id: str, session: ChatSession) -> None:
        logger.info("Session %s idle since %s, archiving", session.id, session.last_activity_at.isoformat())
        self.archive_session(user_id, session)
        self.clear_active_session(user_id)

    def get_active_session(self, user_id: str) -> ChatSession | None:
        """Get the user's active session, archiving it first if it has gone idle."""
        session = self.sessions.load_active(user_id)
        if session is None:
            return None

        if self.is_expired(session):
            self._archive_expired(user_id, session)
            return None

        return session

    def archive_if_idle(self, user_id: str) -> bool:
        """Archive the active session if it has gone idle. Returns True if it was archived."""
        session = self.sessions.load_active(user_id)
        if session is None or not self.is_expired(session):
            return False
        self._archive_expired(user_id, session)
        return True

    def save_active_session(self, user_id: str, messages: list[Message]) -> ChatSession:
        """Create or update the active session with ``messages``.

        id, created_at and title of a live session are preserved.
        """
        existing = self.get_active_session(user_id)
        now = self.clock()

        if existing:
            session = existing.model_copy(update={
                "messages": list(messages),
                "last_activity_at": max(now, existing.created_at),
            })
        else:
            session = ChatSession(
                id=new_id(),
                user_id=user_id,
                messages=list(messages),
                created_at=now,
                last_activity_at=now,
                title=derive_session_title(messages),
            )

        self.sessions.save_active(session)
        return session

    def archive_session(self, user_id: str, session: ChatSession) -> None:
        """Prepend ``session`` to the user's archive (most-recent-first)."""
        archived = self.sessions.load_archived(user_id)
        if any(s.id == session.id for s in archived):
            logger.warning("Session %s is already archived, skipping", session.id)
            return
        archived.insert(0, session)
        self.sessions.save_archived(user_id, archived)

    def clear_active_session(self, user_id: str) -> None:
        self.sessions.delete_active(user_id)

    def get_archived_sessions(self, user_id: str) -> list[ChatSession]:
        return self.sessions.load_archived(user_id)

    def load_archived_session(self, session_id: str, user_id: str) -> ChatSession | None:
        for session in self.get_archived_sessions(user_id):
            if session.id == session_id:
                return session
        return None

    def delete_archived_session(self, session_id: str, user_id: str) -> None:
        archived = self.sessions.load_archived(user_id)
        remaining = [s for s in archived if s.id != session_id]
        if len(remaining) != len(archived):
            self.sessions.save_archived(user_id, remaining)

    def start_new_conversation(self, user_id: str) -> None:
        """Archive the live session (if it has messages) and free the active slot."""
        current = self.get_active_session(user_id)
        if current and current.messages:
            self.archive_session(user_id, current)
        self.clear_active_session(user_id)

    def resume_archived_session(self, session_id: str, user_id: str) -> ChatSession | None:
        """Continue an archived conversation in a fresh active session.

        The archived copy is left untouched; the current active session is
        archived first.
        """
        archived = self.load_archived_session(session_id, user_id)
        if archived is None:
            return None
        self.start_new_conversation(user_id)
        return self.save_active_session(user_id, archived.messages)
