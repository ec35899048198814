"""Entity models for users, messages, chat sessions and referrals.

All entities are persisted as JSON through the key-value store, so they are
pydantic models and round-trip with ``model_dump_json`` / ``model_validate_json``.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class UserType(str, Enum):
    PATIENT = "patient"
    PROVIDER = "provider"


class User(BaseModel):
    """A self-asserted identity. Email is unique across users at signup."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    email: str
    name: str
    user_type: UserType = UserType.PATIENT


# Message roles: a human sender carries a snapshot of the user,
# assistant and system messages carry only their tag.

class HumanRole(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["user"] = "user"
    user: User


class AssistantRole(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["assistant"] = "assistant"


class SystemRole(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["system"] = "system"


MessageRole = Annotated[
    Union[HumanRole, AssistantRole, SystemRole],
    Field(discriminator="kind"),
]


class Message(BaseModel):
    """A single chat message. Ordering is by insertion, not by timestamp."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utc_now)

    @classmethod
    def from_user(cls, user: User, content: str, timestamp: datetime | None = None) -> "Message":
        return cls(role=HumanRole(user=user), content=content, timestamp=timestamp or utc_now())

    @classmethod
    def from_assistant(cls, content: str, timestamp: datetime | None = None) -> "Message":
        return cls(role=AssistantRole(), content=content, timestamp=timestamp or utc_now())

    @classmethod
    def from_system(cls, content: str, timestamp: datetime | None = None) -> "Message":
        return cls(role=SystemRole(), content=content, timestamp=timestamp or utc_now())

    @property
    def is_human(self) -> bool:
        return isinstance(self.role, HumanRole)

    @property
    def is_assistant(self) -> bool:
        return isinstance(self.role, AssistantRole)

    @property
    def is_system(self) -> bool:
        return isinstance(self.role, SystemRole)


class ChatSession(BaseModel):
    """A conversation. At most one is active per user; the rest are archived."""

    id: str = Field(default_factory=new_id)
    user_id: str
    messages: list[Message] = Field(default_factory=list)
    created_at: datetime
    last_activity_at: datetime
    title: str


# Referrals

class ReferralStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    SENT = "sent"
    FAILED = "failed"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PatientInfo(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""
    age: int | None = None
    address: str | None = None


class Challenges(BaseModel):
    primary: str = ""
    secondary: list[str] = Field(default_factory=list)
    duration: str | None = None
    impact: str = ""


class Needs(BaseModel):
    physical_aids: bool = False
    physical_aids_list: list[str] = Field(default_factory=list)
    home_visit: bool = False
    workplace_visit: bool = False
    follow_up: bool = False
    other: str | None = None


class ConversationSummary(BaseModel):
    message_count: int = 0
    main_topics: list[str] = Field(default_factory=list)
    ai_suggestions_tried: list[str] = Field(default_factory=list)
    conversation_text: str = ""


class ReferralForm(BaseModel):
    """Structured handoff to a licensed occupational therapist."""

    id: str = Field(default_factory=new_id)
    user_id: str
    created_at: datetime = Field(default_factory=utc_now)
    status: ReferralStatus = ReferralStatus.DRAFT
    patient_info: PatientInfo = Field(default_factory=PatientInfo)
    challenges: Challenges = Field(default_factory=Challenges)
    conversation_summary: ConversationSummary | None = None
    needs: Needs = Field(default_factory=Needs)
    urgency: Urgency = Urgency.MEDIUM
    urgency_reason: str | None = None
    additional_notes: str | None = None
    consent_given: bool = False
    consent_timestamp: datetime | None = None
