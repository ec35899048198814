"""Referral delivery by email through the EmailJS REST API."""

import logging
import os
from dataclasses import dataclass

import requests
from dotenv import load_dotenv

from otai_assistant.models import ReferralForm, Urgency

load_dotenv(override=True)

logger = logging.getLogger(__name__)

EMAILJS_SERVICE_ID = os.getenv("EMAILJS_SERVICE_ID", "")
EMAILJS_TEMPLATE_ID = os.getenv("EMAILJS_TEMPLATE_ID", "")
EMAILJS_PUBLIC_KEY = os.getenv("EMAILJS_PUBLIC_KEY", "")
THERAPIST_EMAIL = os.getenv("THERAPIST_EMAIL") or "arbetsterapeut@otai.se"
API_URL = "https://api.emailjs.com/api/v1.0/email/send"

MAX_CONVERSATION_LENGTH = 5000
TRUNCATION_NOTE = (
    "\n\n[Konversationen är trunkerad på grund av längd. "
    "Fullständig konversation finns i OTAI-systemet.]"
)

NOT_CONFIGURED_ERROR = "Email-tjänsten är inte konfigurerad. Kontakta support."
SEND_FAILED_ERROR = "Det gick inte att skicka remissen. Försök igen senare."
UNEXPECTED_ERROR = "Ett oväntat fel uppstod. Kontrollera din internetanslutning och försök igen."

URGENCY_TEXT = {
    Urgency.LOW: "Låg (2-4 veckor)",
    Urgency.MEDIUM: "Medel (1-2 veckor)",
    Urgency.HIGH: "Hög (inom några dagar)",
}

NOT_GIVEN = "Ej angivet"


@dataclass
class DeliveryResult:
    """Outcome of a delivery attempt. Failures are values, not exceptions."""
    success: bool
    error: str | None = None


def urgency_text(urgency: Urgency) -> str:
    return URGENCY_TEXT.get(urgency, "Ej angiven")


def _yes_no(value: bool) -> str:
    return "Ja" if value else "Nej"


def _format_timestamp(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else ""


def format_conversation_for_email(conversation_text: str) -> str:
    """Truncate long transcripts so the email stays within provider limits."""
    if len(conversation_text) <= MAX_CONVERSATION_LENGTH:
        return conversation_text
    return conversation_text[:MAX_CONVERSATION_LENGTH] + TRUNCATION_NOTE


def build_email_params(referral: ReferralForm) -> dict:
    """Template parameters for the referral email."""
    patient = referral.patient_info
    challenges = referral.challenges
    needs = referral.needs
    summary = referral.conversation_summary

    return {
        "to_email": THERAPIST_EMAIL,
        "subject": f"Ny Remiss: {patient.name} ({urgency_text(referral.urgency)})",
        "patient_name": patient.name,
        "patient_email": patient.email,
        "patient_phone": patient.phone,
        "patient_age": str(patient.age) if patient.age else NOT_GIVEN,
        "patient_address": patient.address or NOT_GIVEN,
        "primary_challenge": challenges.primary,
        "challenge_duration": challenges.duration or NOT_GIVEN,
        "challenge_impact": challenges.impact,
        "secondary_challenges": ", ".join(challenges.secondary) or "Inga",
        "urgency": urgency_text(referral.urgency),
        "urgency_reason": referral.urgency_reason or NOT_GIVEN,
        "needs_physical_aids": _yes_no(needs.physical_aids),
        "physical_aids_list": ", ".join(needs.physical_aids_list) or "Ej specificerat",
        "needs_home_visit": _yes_no(needs.home_visit),
        "needs_workplace_visit": _yes_no(needs.workplace_visit),
        "needs_follow_up": _yes_no(needs.follow_up),
        "other_needs": needs.other or "Inga",
        "conversation_message_count": summary.message_count if summary else 0,
        "conversation_topics": ", ".join(summary.main_topics) if summary and summary.main_topics else "Inga identifierade",
        "conversation_suggestions": ", ".join(summary.ai_suggestions_tried) if summary and summary.ai_suggestions_tried else "Inga",
        "conversation_text": format_conversation_for_email(summary.conversation_text if summary else ""),
        "additional_notes": referral.additional_notes or "Inga ytterligare kommentarer",
        "created_at": _format_timestamp(referral.created_at),
        "referral_id": referral.id,
    }


def send_referral(referral: ReferralForm) -> DeliveryResult:
    """Send a referral to the occupational therapist team.

    Never raises for expected failures; the reason is in ``DeliveryResult.error``.
    """
    if not (EMAILJS_SERVICE_ID and EMAILJS_TEMPLATE_ID and EMAILJS_PUBLIC_KEY):
        logger.warning("EmailJS not configured, referral %s not sent", referral.id)
        return DeliveryResult(success=False, error=NOT_CONFIGURED_ERROR)

    payload = {
        "service_id": EMAILJS_SERVICE_ID,
        "template_id": EMAILJS_TEMPLATE_ID,
        "user_id": EMAILJS_PUBLIC_KEY,
        "template_params": build_email_params(referral),
    }

    try:
        response = requests.post(API_URL, json=payload, timeout=10)
    except requests.exceptions.RequestException as e:
        logger.error("Error sending referral %s: %s", referral.id, type(e).__name__)
        return DeliveryResult(success=False, error=UNEXPECTED_ERROR)

    if response.status_code != 200:
        logger.error("EmailJS returned %s for referral %s", response.status_code, referral.id)
        return DeliveryResult(success=False, error=SEND_FAILED_ERROR)

    logger.info("Referral sent successfully: %s", referral.id)
    return DeliveryResult(success=True)


def generate_referral_email_body(referral: ReferralForm) -> str:
    """Plain-text email body, used when no template is available."""
    patient = referral.patient_info
    challenges = referral.challenges
    needs = referral.needs
    summary = referral.conversation_summary

    lines = [
        "NY REMISS FRÅN OTAI",
        "===================",
        "",
        "PATIENTINFORMATION",
        "------------------",
        f"Namn: {patient.name}",
        f"E-post: {patient.email}",
        f"Telefon: {patient.phone}",
        f"Ålder: {patient.age or NOT_GIVEN}",
        f"Adress: {patient.address or NOT_GIVEN}",
        "",
        "UTMANINGAR",
        "----------",
        "Huvudsaklig utmaning:",
        challenges.primary,
        "",
        f"Varaktighet: {challenges.duration or NOT_GIVEN}",
        "",
        "Påverkan på vardagen:",
        challenges.impact,
    ]
    if challenges.secondary:
        lines += ["", "Sekundära utmaningar:"]
        lines += [f"- {c}" for c in challenges.secondary]

    lines += [
        "",
        "BEHOV",
        "-----",
        f"Fysiska hjälpmedel: {_yes_no(needs.physical_aids).upper()}",
    ]
    if needs.physical_aids_list:
        lines.append(f"  - {', '.join(needs.physical_aids_list)}")
    lines += [
        f"Hembesök: {_yes_no(needs.home_visit).upper()}",
        f"Arbetsplatsbesök: {_yes_no(needs.workplace_visit).upper()}",
        f"Uppföljning: {_yes_no(needs.follow_up).upper()}",
    ]
    if needs.other:
        lines.append(f"Övrigt: {needs.other}")

    lines += ["", "BRÅDSKANDE", "----------", f"Nivå: {urgency_text(referral.urgency)}"]
    if referral.urgency_reason:
        lines.append(f"Anledning: {referral.urgency_reason}")

    if summary:
        lines += [
            "",
            "KONVERSATION MED OTAI",
            "---------------------",
            f"Antal meddelanden: {summary.message_count}",
            f"Huvudämnen: {', '.join(summary.main_topics) or 'Inga identifierade'}",
            f"AI-förslag som prövats: {', '.join(summary.ai_suggestions_tried) or 'Inga'}",
            "",
            "Fullständig konversation:",
            format_conversation_for_email(summary.conversation_text),
        ]

    if referral.additional_notes:
        lines += ["", "YTTERLIGARE KOMMENTARER", "-----------------------", referral.additional_notes]

    consent = _yes_no(referral.consent_given)
    if referral.consent_timestamp:
        consent += f" ({_format_timestamp(referral.consent_timestamp)})"
    lines += [
        "",
        "METADATA",
        "--------",
        f"Remiss-ID: {referral.id}",
        f"Skapad: {_format_timestamp(referral.created_at)}",
        f"Samtycke givet: {consent}",
    ]
    return "\n".join(lines)
