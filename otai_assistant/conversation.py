"""AI completion for the OTAI assistant."""

import json
import logging
import os
import re
from functools import lru_cache

import openai
from dotenv import load_dotenv
from openai import OpenAI
from pydantic import BaseModel, Field

from otai_assistant.errors import CompletionError
from otai_assistant.models import Message
from otai_assistant.state_machine import PHASE_GUIDANCE, Phase

load_dotenv(override=True)

logger = logging.getLogger(__name__)

LLM_MODEL = os.environ.get("LLM_MODEL") or "gpt-4o-mini"
OPENAI_TIMEOUT = float(os.environ.get("OPENAI_TIMEOUT") or 30)
HISTORY_LIMIT = 10

ESCALATION_MARKER = "[ESKALERING_FÖRESLAGEN]"
_MARKER_PATTERN = re.compile(r"\s*" + re.escape(ESCALATION_MARKER) + r"\s*")

UNUSABLE_REPLY_ERROR = "AI-assistenten gav ett oväntat svar. Försök igen."


class AssistantReply(BaseModel):
    """What the assistant says, and whether it suggests a referral."""
    text: str = Field(..., description="Svaret som visas för användaren")
    escalate: bool = Field(False, description="True när en remiss bör föreslås")


SYSTEM_PROMPT = """Du är OTAI, en AI-assistent specialiserad på arbetsterapi och rehabilitering.

DIN ROLL:
- Du är en FÖRSTA BEDÖMNING innan legitimerade arbetsterapeuter tar över
- Du ger praktiska, konkreta förslag som kan tillämpas i vardagen
- Du är empatisk, professionell och lättförståelig
- Var tydlig med att du är en AI och inte ersätter legitimerad arbetsterapeut

SAMTALETS FAS: {phase}
{phase_guidance}

ESKALERA när något av följande gäller:
1. Användaren behöver fysiska hjälpmedel (rollatorer, greppstöd, tekniska hjälpmedel)
2. Situationen kräver en personlig bedömning i hemmet eller på arbetsplatsen
3. Det finns behov av uppföljning och kontinuerlig kontakt
4. Användaren uttrycker frustration över att råden inte räcker
5. Komplexa fall som kräver samordning med andra vårdinstanser

När du eskalerar: förklara att en legitimerad arbetsterapeut kan göra en noggrann
bedömning och fråga om användaren vill att du skapar en remiss.

SVARSFORMAT:
Svara ALLTID med ett JSON-objekt med exakt dessa fält:
{{
  "text": "ditt svar till användaren, på svenska",
  "escalate": true/false - true endast när du föreslår en remiss
}}"""


def is_configured() -> bool:
    return bool(os.environ.get("OPENAI_API_KEY"))


@lru_cache(maxsize=1)
def get_client() -> OpenAI:
    return OpenAI(api_key=os.environ.get("OPENAI_API_KEY"), timeout=OPENAI_TIMEOUT)


def parse_escalation_marker(text: str) -> tuple[str, bool]:
    """Strip the escalation marker (and the whitespace around it) from ``text``.

    Returns the cleaned text and whether a marker was present.
    """
    if ESCALATION_MARKER not in text:
        return text.strip(), False
    cleaned = _MARKER_PATTERN.sub(" ", text).strip()
    return cleaned, True


def build_prompt_messages(history: list[Message], user_message: str, phase: Phase) -> list[dict]:
    """Build the chat completion messages: system prompt, recent history, new message."""
    system_prompt = SYSTEM_PROMPT.format(phase=phase.value, phase_guidance=PHASE_GUIDANCE[phase])
    messages = [{"role": "system", "content": system_prompt}]

    # System notices (errors, confirmations) are local and never sent to the model
    recent = [m for m in history if not m.is_system][-HISTORY_LIMIT:]
    for message in recent:
        role = "assistant" if message.is_assistant else "user"
        messages.append({"role": role, "content": message.content})

    messages.append({"role": "user", "content": user_message})
    return messages


def parse_reply(content: str) -> AssistantReply:
    """Parse the model's JSON reply, falling back to marker parsing for plain text.

    Raises:
        CompletionError: if the reply is a JSON object with no text to show
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        data = None
    if not isinstance(data, dict):
        text, escalate = parse_escalation_marker(content)
        return AssistantReply(text=text, escalate=escalate)

    text = data.get("text")
    if not isinstance(text, str) or not text.strip():
        # Wrong key from the model: use the first string value it did send
        text = next((v for v in data.values() if isinstance(v, str) and v.strip()), None)
        if text is None:
            logger.warning("AI reply had no text field (keys: %s)", ", ".join(data))
            raise CompletionError(UNUSABLE_REPLY_ERROR)

    # A marker inside structured text is still a control signal, never content
    text, marker_found = parse_escalation_marker(text)
    return AssistantReply(text=text, escalate=data.get("escalate") is True or marker_found)


def translate_completion_error(error: Exception) -> CompletionError:
    """Map an OpenAI SDK error to a user-facing CompletionError."""
    if isinstance(error, openai.AuthenticationError):
        return CompletionError("API-nyckeln är ogiltig. Kontrollera OPENAI_API_KEY i .env-filen.")
    if isinstance(error, openai.PermissionDeniedError):
        return CompletionError("API-nyckeln har inte rätt behörigheter för den valda modellen.")
    if isinstance(error, openai.RateLimitError):
        return CompletionError("API-kvoten är överskriden. Försök igen senare eller kontakta support.")
    if isinstance(error, openai.APIConnectionError):
        return CompletionError("Kunde inte nå AI-tjänsten. Kontrollera din internetanslutning.")
    return CompletionError(f"Kunde inte få svar från AI-assistenten: {error}")


def generate_assistant_reply(history: list[Message], user_message: str, phase: Phase) -> AssistantReply:
    """Ask the model for the next assistant reply.

    Raises:
        CompletionError: if the service is not configured or the call fails
    """
    if not is_configured():
        raise CompletionError("AI-tjänsten är inte konfigurerad. Lägg till OPENAI_API_KEY i .env-filen.")

    messages = build_prompt_messages(history, user_message, phase)

    try:
        response = get_client().chat.completions.create(
            model=LLM_MODEL,
            messages=messages,
            response_format={"type": "json_object"},
            max_completion_tokens=1024,
        )
    except openai.OpenAIError as e:
        logger.error("AI completion failed: %s", type(e).__name__)
        raise translate_completion_error(e) from e

    content = response.choices[0].message.content or ""
    if not content.strip():
        raise CompletionError("AI-assistenten gav ett tomt svar. Försök igen.")
    return parse_reply(content)
