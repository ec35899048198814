"""Referral submission: draft -> submitted -> sent | failed."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from otai_assistant.models import Message, ReferralForm, ReferralStatus, utc_now
from otai_assistant.referral_delivery import DeliveryResult, UNEXPECTED_ERROR
from otai_assistant.state_machine import CONSENT_REQUIRED_MESSAGE, transition_referral
from otai_assistant.storage.referral_repository import ReferralRepository
from otai_assistant.summarizer import build_conversation_summary

logger = logging.getLogger(__name__)

Deliver = Callable[[ReferralForm], DeliveryResult]

SENT_MESSAGE = (
    "✅ Din remiss har skickats till vårt team av legitimerade arbetsterapeuter. "
    "De kommer att kontakta dig inom kort."
)
FAILED_FALLBACK = "Kunde inte skicka remissen. Den har sparats och kan skickas igen."
ALREADY_SENT_MESSAGE = "Remissen har redan skickats."

# Required text fields: (getter, error message)
REQUIRED_FIELDS = [
    (lambda r: r.patient_info.name, "Namn måste fyllas i."),
    (lambda r: r.patient_info.email, "E-post måste fyllas i."),
    (lambda r: r.patient_info.phone, "Telefonnummer måste fyllas i."),
    (lambda r: r.challenges.primary, "Beskriv din huvudsakliga utmaning."),
    (lambda r: r.challenges.impact, "Beskriv hur utmaningen påverkar din vardag."),
]


class SubmissionStatus(Enum):
    SENT = "sent"
    FAILED = "failed"
    INVALID = "invalid"
    CANCELLED = "cancelled"


@dataclass
class SubmissionOutcome:
    """Result of a submission attempt, for the chat view."""
    status: SubmissionStatus
    referral: ReferralForm
    message: Message | None = None
    errors: list[str] | None = None

    @property
    def attempted(self) -> bool:
        """Whether delivery was attempted (the referral left draft)."""
        return self.status in (SubmissionStatus.SENT, SubmissionStatus.FAILED)


def validate_referral(referral: ReferralForm) -> list[str]:
    """Return the reasons ``referral`` may not leave draft (empty if it may)."""
    errors = [message for getter, message in REQUIRED_FIELDS if not (getter(referral) or "").strip()]
    if not referral.consent_given:
        errors.append(CONSENT_REQUIRED_MESSAGE)
    return errors


def deliver_safely(deliver: Deliver, referral: ReferralForm) -> DeliveryResult:
    """Call the delivery collaborator, normalizing unexpected exceptions to a failure."""
    try:
        return deliver(referral)
    except Exception as e:
        logger.exception("Delivery of referral %s raised %s", referral.id, type(e).__name__)
        return DeliveryResult(success=False, error=UNEXPECTED_ERROR)


def submit_referral(
    referral: ReferralForm,
    repo: ReferralRepository,
    deliver: Deliver,
    conversation: list[Message],
    user_name: str,
    cancel: threading.Event | None = None,
) -> SubmissionOutcome:
    """Submit (or resubmit) a referral.

    The referral is saved as submitted before delivery is attempted, so a
    crash mid-delivery never loses it. Delivery failures are recorded as
    status failed and reported in the returned outcome's system message.
    A referral still marked submitted is delivered again; a sent one is
    rejected as invalid.
    """
    if cancel is not None and cancel.is_set():
        logger.info("Referral %s submission cancelled before sending", referral.id)
        return SubmissionOutcome(status=SubmissionStatus.CANCELLED, referral=referral)

    if referral.status == ReferralStatus.SENT:
        return SubmissionOutcome(
            status=SubmissionStatus.INVALID,
            referral=referral,
            errors=[ALREADY_SENT_MESSAGE],
        )

    if referral.status == ReferralStatus.DRAFT:
        errors = validate_referral(referral)
        if errors:
            return SubmissionOutcome(
                status=SubmissionStatus.INVALID,
                referral=referral,
                errors=errors,
            )

    # Summary is computed once; a retry keeps the original
    updates = {}
    if referral.conversation_summary is None:
        updates["conversation_summary"] = build_conversation_summary(conversation, user_name)
    if referral.consent_timestamp is None:
        updates["consent_timestamp"] = utc_now()
    if updates:
        referral = referral.model_copy(update=updates)

    if referral.status == ReferralStatus.SUBMITTED:
        # Left over from an interrupted delivery; send it again as is
        logger.info("Referral %s was already submitted, delivering again", referral.id)
    else:
        referral = transition_referral(referral, ReferralStatus.SUBMITTED)
    repo.save_referral(referral)
    logger.info("Referral %s submitted", referral.id)

    result = deliver_safely(deliver, referral)

    if result.success:
        referral = transition_referral(referral, ReferralStatus.SENT)
        repo.save_referral(referral)
        return SubmissionOutcome(
            status=SubmissionStatus.SENT,
            referral=referral,
            message=Message.from_system(SENT_MESSAGE),
        )

    referral = transition_referral(referral, ReferralStatus.FAILED)
    repo.save_referral(referral)
    logger.warning("Referral %s failed: %s", referral.id, result.error)
    return SubmissionOutcome(
        status=SubmissionStatus.FAILED,
        referral=referral,
        message=Message.from_system(f"❌ {result.error or FAILED_FALLBACK}"),
    )
