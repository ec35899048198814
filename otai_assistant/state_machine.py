"""State machines for conversation phase, escalation and referral status."""

import logging
from dataclasses import dataclass
from enum import Enum

from otai_assistant.errors import InvalidTransitionError, ReferralValidationError
from otai_assistant.models import Message, ReferralForm, ReferralStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Conversation phase
# =============================================================================

class Phase(Enum):
    """Coarse conversation progress, used to shape assistant tone and depth."""
    EXPLORATORY = "exploratory"
    DEEPENING = "deepening"
    ADVISORY = "advisory"


# Prompt fragment per phase, embedded in the system prompt
PHASE_GUIDANCE = {
    Phase.EXPLORATORY: (
        "Samtalet har precis börjat. Ställ öppna följdfrågor för att förstå "
        "situationen innan du ger råd."
    ),
    Phase.DEEPENING: (
        "Fördjupa förståelsen: fråga om vardagens aktiviteter, miljö och vad som "
        "redan prövats. Ge gärna ett eller två första förslag."
    ),
    Phase.ADVISORY: (
        "Du har tillräckligt underlag. Ge 2-4 konkreta förslag och överväg om "
        "situationen behöver eskaleras till en legitimerad arbetsterapeut."
    ),
}


def classify_phase(user_message_count: int) -> Phase:
    """Map the number of human messages (including the one being sent) to a phase."""
    if user_message_count < 0:
        raise ValueError(f"user_message_count must be non-negative, got {user_message_count}")
    if user_message_count <= 2:
        return Phase.EXPLORATORY
    if user_message_count <= 5:
        return Phase.DEEPENING
    return Phase.ADVISORY


def count_user_messages(messages: list[Message]) -> int:
    return sum(1 for m in messages if m.is_human)


# =============================================================================
# Escalation
# =============================================================================

class EscalationState(Enum):
    """Escalation workflow states, from the chat view's perspective."""
    NO_ESCALATION = "no_escalation"
    ESCALATION_SUGGESTED = "escalation_suggested"
    REFERRAL_OPEN = "referral_open"
    REFERRAL_SENT = "referral_sent"
    REFERRAL_FAILED = "referral_failed"


ESCALATION_TRANSITIONS = {
    EscalationState.NO_ESCALATION: {
        EscalationState.ESCALATION_SUGGESTED,
        # Reopening a stored referral for retry
        EscalationState.REFERRAL_OPEN,
    },
    EscalationState.ESCALATION_SUGGESTED: {EscalationState.REFERRAL_OPEN},
    EscalationState.REFERRAL_OPEN: {
        EscalationState.ESCALATION_SUGGESTED,
        EscalationState.REFERRAL_SENT,
        EscalationState.REFERRAL_FAILED,
    },
    EscalationState.REFERRAL_SENT: {
        EscalationState.NO_ESCALATION,
        EscalationState.ESCALATION_SUGGESTED,
        EscalationState.REFERRAL_OPEN,
    },
    EscalationState.REFERRAL_FAILED: {
        EscalationState.NO_ESCALATION,
        EscalationState.ESCALATION_SUGGESTED,
        EscalationState.REFERRAL_OPEN,
    },
}

# A new form needs a suggestion; a stored referral can be reopened from any closed state
NEW_REFERRAL_SOURCES = {EscalationState.ESCALATION_SUGGESTED, EscalationState.REFERRAL_FAILED}


@dataclass
class EscalationTracker:
    """Tracks whether the chat should offer a referral."""
    state: EscalationState = EscalationState.NO_ESCALATION

    def _move(self, target: EscalationState) -> None:
        if target == self.state:
            return
        if target not in ESCALATION_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Cannot move escalation from {self.state.value} to {target.value}"
            )
        logger.debug("Escalation %s -> %s", self.state.value, target.value)
        self.state = target

    @property
    def suggest_referral(self) -> bool:
        """Whether the "create referral" affordance should be shown."""
        return self.state == EscalationState.ESCALATION_SUGGESTED

    def on_assistant_reply(self, escalate: bool) -> None:
        if self.state == EscalationState.REFERRAL_OPEN:
            # The form is open; replies do not change the workflow
            return
        if escalate:
            self._move(EscalationState.ESCALATION_SUGGESTED)
        elif self.state in (EscalationState.REFERRAL_SENT, EscalationState.REFERRAL_FAILED):
            self._move(EscalationState.NO_ESCALATION)

    def open_referral(self, retry: bool = False) -> None:
        """Open the form. With ``retry`` a stored referral is being reopened."""
        if not retry and self.state not in NEW_REFERRAL_SOURCES:
            raise InvalidTransitionError(
                f"Cannot open a new referral from {self.state.value}"
            )
        self._move(EscalationState.REFERRAL_OPEN)

    def cancel_referral(self) -> None:
        self._move(EscalationState.ESCALATION_SUGGESTED)

    def record_submission(self, success: bool) -> None:
        if success:
            self._move(EscalationState.REFERRAL_SENT)
        else:
            self._move(EscalationState.REFERRAL_FAILED)


# =============================================================================
# Referral status
# =============================================================================

REFERRAL_TRANSITIONS = {
    ReferralStatus.DRAFT: {ReferralStatus.SUBMITTED},
    ReferralStatus.SUBMITTED: {ReferralStatus.SENT, ReferralStatus.FAILED},
    ReferralStatus.SENT: set(),
    # Retry by resubmission
    ReferralStatus.FAILED: {ReferralStatus.SUBMITTED},
}

CONSENT_REQUIRED_MESSAGE = (
    "Du måste godkänna behandling av personuppgifter för att skicka remissen."
)


def transition_referral(referral: ReferralForm, target: ReferralStatus) -> ReferralForm:
    """Return a copy of ``referral`` moved to ``target``.

    Raises InvalidTransitionError for moves outside the table and
    ReferralValidationError when leaving draft without consent.
    """
    if target not in REFERRAL_TRANSITIONS[referral.status]:
        raise InvalidTransitionError(
            f"Referral {referral.id} cannot move from {referral.status.value} to {target.value}"
        )
    if referral.status == ReferralStatus.DRAFT and not referral.consent_given:
        raise ReferralValidationError([CONSENT_REQUIRED_MESSAGE])
    return referral.model_copy(update={"status": target})
