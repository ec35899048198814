"""Tests for active-session lifecycle: expiry, titles and archives."""

from otai_assistant.models import ChatSession, Message
from otai_assistant.session_manager import (
    DEFAULT_TITLE,
    IDLE_TIMEOUT,
    SessionManager,
    derive_session_title,
)
from otai_assistant.storage.schema import ARCHIVED_SESSIONS_KEY, active_session_key


def make_session(user_id: str, session_id: str, clock) -> ChatSession:
    now = clock()
    return ChatSession(
        id=session_id,
        user_id=user_id,
        messages=[],
        created_at=now,
        last_activity_at=now,
        title=session_id,
    )


class TestSessionTitle:
    """Tests for derive_session_title."""

    def test_uses_first_user_message(self, user):
        """Title comes from the first message not written by the assistant."""
        messages = [
            Message.from_assistant("Hej! Hur kan jag hjälpa dig?"),
            Message.from_user(user, "  Jag har svårt att minnas mina mediciner  "),
        ]
        assert derive_session_title(messages) == "Jag har svårt att minnas mina mediciner"

    def test_truncates_long_content(self, user):
        content = "a" * 60
        title = derive_session_title([Message.from_user(user, content)])
        assert title == "a" * 50 + "..."

    def test_exactly_fifty_characters_is_not_truncated(self, user):
        content = "b" * 50
        assert derive_session_title([Message.from_user(user, content)]) == content

    def test_system_message_counts_as_non_assistant(self):
        messages = [Message.from_system("Något gick fel")]
        assert derive_session_title(messages) == "Något gick fel"

    def test_fallback_when_only_assistant_messages(self):
        assert derive_session_title([Message.from_assistant("Hej!")]) == DEFAULT_TITLE

    def test_fallback_when_empty(self):
        assert derive_session_title([]) == DEFAULT_TITLE


class TestSaveActiveSession:
    """Tests for save_active_session."""

    def test_creates_session(self, manager, user, clock, make_conversation):
        session = manager.save_active_session(user.id, make_conversation("Hej"))

        assert session.user_id == user.id
        assert session.created_at == clock()
        assert session.last_activity_at == clock()
        assert session.title == "Hej"
        assert manager.get_active_session(user.id) == session

    def test_update_preserves_id_created_at_and_title(self, manager, user, clock, make_conversation):
        first = manager.save_active_session(user.id, make_conversation("Första frågan"))
        clock.advance(minutes=20)

        second = manager.save_active_session(
            user.id, make_conversation("Ny titel?", "Svar", "Mer text")
        )

        assert second.id == first.id
        assert second.created_at == first.created_at
        assert second.title == "Första frågan"
        assert second.last_activity_at == clock()
        assert len(second.messages) == 3

    def test_title_is_frozen_as_messages_are_appended(self, manager, user, clock, make_conversation):
        """Title is set once at creation and never recomputed."""
        messages = make_conversation("Ont i ryggen")
        manager.save_active_session(user.id, messages)
        for i in range(5):
            clock.advance(minutes=1)
            messages.append(Message.from_assistant(f"Svar {i}"))
            messages.append(Message.from_user(user, f"Fråga {i}"))
            session = manager.save_active_session(user.id, messages)
            assert session.title == "Ont i ryggen"

    def test_last_activity_never_before_created_at(self, manager, user, clock, make_conversation):
        manager.save_active_session(user.id, make_conversation("Hej"))
        clock.advance(minutes=30)
        session = manager.save_active_session(user.id, make_conversation("Hej", "Svar"))
        assert session.last_activity_at >= session.created_at

    def test_saving_over_expired_session_starts_a_new_one(self, manager, user, clock, make_conversation):
        """A save after expiry archives the old session and starts a fresh one."""
        old = manager.save_active_session(user.id, make_conversation("Gammal"))
        clock.advance(hours=4)

        new = manager.save_active_session(user.id, make_conversation("Ny"))

        assert new.id != old.id
        assert new.title == "Ny"
        assert [s.id for s in manager.get_archived_sessions(user.id)] == [old.id]


class TestIdleExpiry:
    """Tests for lazy archival on read."""

    def test_session_within_timeout_is_returned(self, manager, user, clock, make_conversation):
        session = manager.save_active_session(user.id, make_conversation("Hej"))
        clock.advance(hours=2, minutes=59)
        assert manager.get_active_session(user.id) == session

    def test_exactly_at_timeout_is_still_active(self, manager, user, clock, make_conversation):
        """Expiry requires strictly more than three hours of idleness."""
        manager.save_active_session(user.id, make_conversation("Hej"))
        clock.now += IDLE_TIMEOUT
        assert manager.get_active_session(user.id) is not None

    def test_expired_session_is_archived_once(self, manager, user, clock, make_conversation):
        """Repeated reads after expiry archive the session exactly once."""
        session = manager.save_active_session(user.id, make_conversation("Hej"))
        clock.advance(hours=3, seconds=1)

        assert manager.get_active_session(user.id) is None
        assert manager.get_active_session(user.id) is None

        archived = manager.get_archived_sessions(user.id)
        assert [s.id for s in archived] == [session.id]

    def test_expiry_deletes_active_slot(self, manager, store, user, clock, make_conversation):
        manager.save_active_session(user.id, make_conversation("Hej"))
        clock.advance(hours=5)
        manager.get_active_session(user.id)
        assert store.get(active_session_key(user.id)) is None

    def test_archive_if_idle(self, manager, user, clock, make_conversation):
        session = manager.save_active_session(user.id, make_conversation("Hej"))
        assert not manager.archive_if_idle(user.id)

        clock.advance(hours=3, seconds=1)

        assert manager.archive_if_idle(user.id)
        assert not manager.archive_if_idle(user.id)
        assert [s.id for s in manager.get_archived_sessions(user.id)] == [session.id]

    def test_archive_if_idle_without_session(self, manager, user):
        assert not manager.archive_if_idle(user.id)

    def test_activity_resets_the_timer(self, manager, user, clock, make_conversation):
        manager.save_active_session(user.id, make_conversation("Hej"))
        clock.advance(hours=2)
        manager.save_active_session(user.id, make_conversation("Hej", "Svar"))
        clock.advance(hours=2)
        assert manager.get_active_session(user.id) is not None

    def test_users_are_independent(self, manager, user, other_user, clock, make_conversation):
        manager.save_active_session(user.id, make_conversation("Anna"))
        clock.advance(hours=2)
        manager.save_active_session(other_user.id, [Message.from_user(other_user, "Erik")])
        clock.advance(hours=2)

        assert manager.get_active_session(user.id) is None
        assert manager.get_active_session(other_user.id) is not None
        assert manager.get_archived_sessions(other_user.id) == []


class TestArchive:
    """Tests for archive ordering and deletion."""

    def test_archive_order_is_most_recent_first(self, manager, user, clock):
        """Archiving A, B, C yields C, B, A."""
        for session_id in ("A", "B", "C"):
            manager.archive_session(user.id, make_session(user.id, session_id, clock))

        assert [s.id for s in manager.get_archived_sessions(user.id)] == ["C", "B", "A"]

    def test_archiving_same_session_twice_keeps_one_copy(self, manager, user, clock):
        session = make_session(user.id, "A", clock)
        manager.archive_session(user.id, session)
        manager.archive_session(user.id, session)
        assert len(manager.get_archived_sessions(user.id)) == 1

    def test_clear_active_does_not_touch_archives(self, manager, user, clock, make_conversation):
        manager.archive_session(user.id, make_session(user.id, "A", clock))
        manager.save_active_session(user.id, make_conversation("Hej"))

        manager.clear_active_session(user.id)

        assert manager.get_active_session(user.id) is None
        assert len(manager.get_archived_sessions(user.id)) == 1

    def test_delete_archived_session(self, manager, user, clock):
        for session_id in ("A", "B"):
            manager.archive_session(user.id, make_session(user.id, session_id, clock))

        manager.delete_archived_session("A", user.id)

        assert [s.id for s in manager.get_archived_sessions(user.id)] == ["B"]

    def test_delete_missing_session_is_noop(self, manager, user, clock):
        """Deleting an unknown session changes nothing."""
        manager.archive_session(user.id, make_session(user.id, "A", clock))
        manager.delete_archived_session("missing", user.id)
        manager.delete_archived_session("A", "no-such-user")
        assert len(manager.get_archived_sessions(user.id)) == 1

    def test_load_archived_session(self, manager, user, clock):
        manager.archive_session(user.id, make_session(user.id, "A", clock))
        assert manager.load_archived_session("A", user.id).id == "A"
        assert manager.load_archived_session("B", user.id) is None

    def test_archives_are_read_fresh(self, store, user, clock):
        writer = SessionManager(store, clock=clock)
        reader = SessionManager(store, clock=clock)
        assert reader.get_archived_sessions(user.id) == []
        writer.archive_session(user.id, make_session(user.id, "A", clock))
        assert len(reader.get_archived_sessions(user.id)) == 1


class TestConversationActions:
    """Tests for new conversation and resuming archived sessions."""

    def test_new_conversation_archives_current(self, manager, user, make_conversation):
        session = manager.save_active_session(user.id, make_conversation("Hej"))

        manager.start_new_conversation(user.id)

        assert manager.get_active_session(user.id) is None
        assert [s.id for s in manager.get_archived_sessions(user.id)] == [session.id]

    def test_new_conversation_without_active_session(self, manager, user):
        manager.start_new_conversation(user.id)
        assert manager.get_archived_sessions(user.id) == []

    def test_new_conversation_after_expiry_archives_once(self, manager, user, clock, make_conversation):
        manager.save_active_session(user.id, make_conversation("Hej"))
        clock.advance(hours=4)
        manager.start_new_conversation(user.id)
        assert len(manager.get_archived_sessions(user.id)) == 1

    def test_resume_copies_messages_into_new_session(self, manager, user, clock, make_conversation):
        """Resuming archives the current session and copies messages into a new one."""
        old = manager.save_active_session(user.id, make_conversation("Gammal fråga", "Gammalt svar"))
        manager.start_new_conversation(user.id)
        current = manager.save_active_session(user.id, make_conversation("Pågående"))

        resumed = manager.resume_archived_session(old.id, user.id)

        assert resumed.id not in (old.id, current.id)
        assert [m.content for m in resumed.messages] == ["Gammal fråga", "Gammalt svar"]
        assert [s.id for s in manager.get_archived_sessions(user.id)] == [current.id, old.id]

    def test_resume_unknown_session(self, manager, user):
        assert manager.resume_archived_session("missing", user.id) is None


class TestStorageCorruption:
    """Malformed persisted data reads as absent."""

    def test_corrupted_active_session(self, manager, store, user):
        store.set(active_session_key(user.id), "{not json")
        assert manager.get_active_session(user.id) is None

    def test_corrupted_archive(self, manager, store, user):
        store.set(ARCHIVED_SESSIONS_KEY, "[1, 2")
        assert manager.get_archived_sessions(user.id) == []

    def test_wrong_shape_archive(self, manager, store, user):
        store.set(ARCHIVED_SESSIONS_KEY, '{"u-anna": [{"id": 1}]}')
        assert manager.get_archived_sessions(user.id) == []

    def test_archiving_over_corrupted_archive_recovers(self, manager, store, user, clock):
        store.set(ARCHIVED_SESSIONS_KEY, "garbage")
        manager.archive_session(user.id, make_session(user.id, "A", clock))
        assert [s.id for s in manager.get_archived_sessions(user.id)] == ["A"]
