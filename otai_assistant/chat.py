"""Chat orchestration: messages, sessions, escalation and referrals for one user."""

import logging
import threading
from datetime import datetime
from typing import Callable

from otai_assistant import conversation, referral_delivery
from otai_assistant.conversation import AssistantReply
from otai_assistant.errors import CompletionError, ValidationError
from otai_assistant.models import ChatSession, Message, ReferralForm, ReferralStatus, User, utc_now
from otai_assistant.referral_workflow import (
    ALREADY_SENT_MESSAGE,
    Deliver,
    SubmissionOutcome,
    SubmissionStatus,
    submit_referral,
)
from otai_assistant.session_manager import SessionManager
from otai_assistant.state_machine import EscalationTracker, Phase, classify_phase, count_user_messages
from otai_assistant.storage.connection import KeyValueStore
from otai_assistant.storage.referral_repository import ReferralRepository

logger = logging.getLogger(__name__)

Complete = Callable[[list[Message], str, Phase], AssistantReply]

NOT_CONFIGURED_WARNING = (
    "⚠️ AI-tjänsten är inte konfigurerad. Lägg till din API-nyckel i .env-filen "
    "för att aktivera AI-funktionalitet."
)

# A stored referral may be reopened only if it never reached the therapist
RETRYABLE_STATUSES = (ReferralStatus.FAILED, ReferralStatus.SUBMITTED)


class ChatController:
    """Everything the chat view does for a signed-in user.

    Holds the transcript in memory and writes it through to the active
    session after every change.
    """

    def __init__(
        self,
        user: User,
        store: KeyValueStore,
        complete: Complete | None = None,
        deliver: Deliver | None = None,
        is_configured: Callable[[], bool] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.user = user
        self.sessions = SessionManager(store, clock=clock)
        self.referrals = ReferralRepository(store)
        self.complete = complete or conversation.generate_assistant_reply
        self.deliver = deliver or referral_delivery.send_referral
        if is_configured is None:
            # An injected completion function is assumed to be ready
            is_configured = conversation.is_configured if complete is None else (lambda: True)
        self.is_configured = is_configured
        self.escalation = EscalationTracker()
        self.messages: list[Message] = []

    # Session lifecycle

    def load(self) -> list[Message]:
        """Restore the active session, if any."""
        session = self.sessions.get_active_session(self.user.id)
        self.messages = list(session.messages) if session else []
        return self.messages

    def refresh(self) -> bool:
        """Re-check idle expiry. Returns True only if a session was archived just now."""
        if not self.sessions.archive_if_idle(self.user.id):
            return False
        self.messages = []
        return True

    def active_session(self) -> ChatSession | None:
        return self.sessions.get_active_session(self.user.id)

    def new_conversation(self) -> None:
        if self.messages:
            self.sessions.start_new_conversation(self.user.id)
        self.messages = []

    def archived_sessions(self) -> list[ChatSession]:
        return self.sessions.get_archived_sessions(self.user.id)

    def resume_archived(self, session_id: str) -> bool:
        session = self.sessions.resume_archived_session(session_id, self.user.id)
        if session is None:
            return False
        self.messages = list(session.messages)
        return True

    def delete_archived(self, session_id: str) -> None:
        self.sessions.delete_archived_session(session_id, self.user.id)

    def _append(self, message: Message) -> None:
        self.messages.append(message)
        self.sessions.save_active_session(self.user.id, self.messages)

    # Messaging

    @property
    def phase(self) -> Phase:
        """Phase for the next human message."""
        return classify_phase(count_user_messages(self.messages) + 1)

    def send_message(self, text: str) -> Message | None:
        """Send a user message and return the reply (assistant or system) appended.

        Completion failures are turned into system messages; nothing is raised.
        """
        text = text.strip()
        if not text:
            return None

        if not self.is_configured():
            # The user message is dropped; only the warning is shown
            warning = Message.from_system(NOT_CONFIGURED_WARNING)
            self.messages.append(warning)
            return warning

        self.refresh()
        phase = self.phase
        history = list(self.messages)
        self._append(Message.from_user(self.user, text))

        try:
            reply = self.complete(history, text, phase)
        except CompletionError as e:
            error_message = Message.from_system(f"Ursäkta, något gick fel: {e.user_message}")
            self._append(error_message)
            return error_message

        assistant_message = Message.from_assistant(reply.text)
        self._append(assistant_message)
        self.escalation.on_assistant_reply(reply.escalate)
        return assistant_message

    # Referrals

    @property
    def suggest_referral(self) -> bool:
        return self.escalation.suggest_referral

    def open_referral(self, referral_id: str | None = None) -> ReferralForm:
        """Open the referral form.

        With ``referral_id`` a stored failed (or interrupted) referral is
        reopened for a retry; otherwise a new draft is pre-filled with the
        user's details.
        """
        if referral_id is None:
            return self.draft_referral()

        referral = self.referrals.get_referral(referral_id)
        if referral is None or referral.user_id != self.user.id:
            raise ValidationError("Remissen hittades inte.")
        if referral.status not in RETRYABLE_STATUSES:
            raise ValidationError(ALREADY_SENT_MESSAGE)
        self.escalation.open_referral(retry=True)
        return referral

    def draft_referral(self, **fields) -> ReferralForm:
        """Open the form with a new draft built from the user's details and ``fields``.

        ``patient_info`` may be passed as a dict and is merged over the
        user's name and email. Raises pydantic's ValidationError for bad fields,
        in which case the form stays closed.
        """
        patient_info = {"name": self.user.name, "email": self.user.email}
        patient_info.update(fields.pop("patient_info", None) or {})
        referral = ReferralForm.model_validate({
            **fields,
            "patient_info": patient_info,
            "user_id": self.user.id,
            "status": ReferralStatus.DRAFT,
        })
        self.escalation.open_referral()
        return referral

    def retryable_referrals(self) -> list[ReferralForm]:
        """The user's referrals that were not delivered, newest first."""
        return [r for r in self.referral_history() if r.status in RETRYABLE_STATUSES]

    def cancel_referral(self) -> None:
        self.escalation.cancel_referral()

    def submit_referral(self, referral: ReferralForm, cancel: threading.Event | None = None) -> SubmissionOutcome:
        """Submit the open referral and post the outcome into the chat."""
        outcome = submit_referral(
            referral,
            repo=self.referrals,
            deliver=self.deliver,
            conversation=self.messages,
            user_name=self.user.name,
            cancel=cancel,
        )
        if outcome.status == SubmissionStatus.CANCELLED:
            self.escalation.cancel_referral()
        if not outcome.attempted:
            return outcome

        self._append(outcome.message)
        self.escalation.record_submission(outcome.status == SubmissionStatus.SENT)
        return outcome

    def referral_history(self) -> list[ReferralForm]:
        return self.referrals.get_referrals_for_user(self.user.id)
