"""Session repository: the per-user active slot, archives and the legacy message log."""

from pydantic import TypeAdapter

from otai_assistant.models import ChatSession, Message

from .connection import KeyValueStore, read_blob, write_blob
from .schema import ARCHIVED_SESSIONS_KEY, MESSAGES_KEY, active_session_key

_SESSION = TypeAdapter(ChatSession)
_ARCHIVES = TypeAdapter(dict[str, list[ChatSession]])
_MESSAGE_LOG = TypeAdapter(dict[str, list[Message]])


class SessionRepository:
    """Typed load/save of chat sessions. No lifecycle rules live here."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    # Active session (one slot per user)

    def load_active(self, user_id: str) -> ChatSession | None:
        return read_blob(self.store, active_session_key(user_id), _SESSION)

    def save_active(self, session: ChatSession) -> None:
        write_blob(self.store, active_session_key(session.user_id), _SESSION, session)

    def delete_active(self, user_id: str) -> None:
        self.store.delete(active_session_key(user_id))

    # Archived sessions, most-recent-first

    def _load_all_archives(self) -> dict[str, list[ChatSession]]:
        return read_blob(self.store, ARCHIVED_SESSIONS_KEY, _ARCHIVES, default={})

    def load_archived(self, user_id: str) -> list[ChatSession]:
        return self._load_all_archives().get(user_id, [])

    def save_archived(self, user_id: str, sessions: list[ChatSession]) -> None:
        archives = self._load_all_archives()
        archives[user_id] = sessions
        write_blob(self.store, ARCHIVED_SESSIONS_KEY, _ARCHIVES, archives)

    # Legacy message log

    def get_messages(self, user_id: str) -> list[Message]:
        return read_blob(self.store, MESSAGES_KEY, _MESSAGE_LOG, default={}).get(user_id, [])

    def save_message(self, user_id: str, message: Message) -> None:
        log = read_blob(self.store, MESSAGES_KEY, _MESSAGE_LOG, default={})
        log.setdefault(user_id, []).append(message)
        write_blob(self.store, MESSAGES_KEY, _MESSAGE_LOG, log)

    def clear_messages(self, user_id: str) -> None:
        log = read_blob(self.store, MESSAGES_KEY, _MESSAGE_LOG)
        if log is None:
            return
        log.pop(user_id, None)
        write_blob(self.store, MESSAGES_KEY, _MESSAGE_LOG, log)
