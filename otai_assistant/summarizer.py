"""Keyword-based conversation summary for referral records."""

from otai_assistant.models import ConversationSummary, Message

# Topic tag -> keywords; a topic is present if any keyword occurs in any message
TOPIC_KEYWORDS = {
    "Medicinhantering": ["medicin"],
    "Smärthantering": ["smärta", "ont"],
    "Hushållsaktiviteter": ["städ", "hushåll"],
    "Kognitiva svårigheter": ["koncentration", "minne"],
    "Arbetsmiljö": ["ergonomi", "arbete"],
}

# Keyword -> suggestion label, checked in this order for each assistant message
SUGGESTION_KEYWORDS = [
    ("rutiner", "Skapa rutiner"),
    ("påminnelse", "Använda påminnelser"),
    ("anpassning", "Miljöanpassningar"),
    ("pauser", "Ta regelbundna pauser"),
]

ASSISTANT_LABEL = "OTAI"
SYSTEM_LABEL = "System"


def extract_topics(messages: list[Message]) -> set[str]:
    topics = set()
    for message in messages:
        for topic, keywords in TOPIC_KEYWORDS.items():
            if any(keyword in message.content for keyword in keywords):
                topics.add(topic)
    return topics


def extract_suggestions(messages: list[Message]) -> list[str]:
    """Suggestions the assistant has made, in order of appearance (not de-duplicated)."""
    suggestions = []
    for message in messages:
        if not message.is_assistant:
            continue
        for keyword, label in SUGGESTION_KEYWORDS:
            if keyword in message.content:
                suggestions.append(label)
    return suggestions


def _speaker(message: Message, user_name: str) -> str:
    if message.is_assistant:
        return ASSISTANT_LABEL
    if message.is_system:
        return SYSTEM_LABEL
    return message.role.user.name or user_name


def format_transcript(messages: list[Message], user_name: str) -> str:
    return "\n\n".join(f"{_speaker(m, user_name)}: {m.content}" for m in messages)


def build_conversation_summary(messages: list[Message], user_name: str) -> ConversationSummary:
    return ConversationSummary(
        message_count=len(messages),
        main_topics=sorted(extract_topics(messages)),
        ai_suggestions_tried=extract_suggestions(messages),
        conversation_text=format_transcript(messages, user_name),
    )
