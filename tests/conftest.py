"""Shared pytest fixtures."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from otai_assistant.models import Message, User
from otai_assistant.session_manager import SessionManager
from otai_assistant.storage import InMemoryStore

START = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def no_external_services(monkeypatch):
    """Make sure no test talks to OpenAI or EmailJS."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setattr("otai_assistant.referral_delivery.EMAILJS_SERVICE_ID", "")
    monkeypatch.setattr("otai_assistant.referral_delivery.EMAILJS_TEMPLATE_ID", "")
    monkeypatch.setattr("otai_assistant.referral_delivery.EMAILJS_PUBLIC_KEY", "")
    with patch("otai_assistant.conversation.get_client") as mock_client, \
         patch("otai_assistant.referral_delivery.requests.post") as mock_post:
        mock_client.side_effect = AssertionError("OpenAI client used without a mock")
        mock_post.side_effect = AssertionError("EmailJS called without a mock")
        yield


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(store, clock):
    return SessionManager(store, clock=clock)


@pytest.fixture
def user():
    return User(id="u-anna", email="anna@example.se", name="Anna Svensson")


@pytest.fixture
def other_user():
    return User(id="u-erik", email="erik@example.se", name="Erik Berg")


@pytest.fixture
def make_conversation(user):
    """Build an alternating user/assistant transcript from plain strings."""
    def _make(*turns: str) -> list[Message]:
        messages = []
        for i, content in enumerate(turns):
            if i % 2 == 0:
                messages.append(Message.from_user(user, content))
            else:
                messages.append(Message.from_assistant(content))
        return messages
    return _make


@pytest.fixture
def mock_complete():
    """Completion collaborator returning a plain reply unless told otherwise."""
    from otai_assistant.conversation import AssistantReply
    complete = MagicMock(return_value=AssistantReply(text="Berätta mer om din vardag.", escalate=False))
    return complete
