"""
Pydantic models for the assistant pipeline.

Covers the buffered inbound messages, the per-turn user context and persona
configuration, the specialist outcome variants and the per-turn report.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


class BufferedMessage(BaseModel):
    """
    Single buffered message from a sender.

    Attributes:
        text: The message content (already transcribed/described upstream)
        timestamp: Epoch seconds reported by the channel for this message
        message_id: Channel message ID for tracking, when available
    """
    text: str
    timestamp: int
    message_id: Optional[int] = None


class Turn(BaseModel):
    """One coalesced batch of messages from a sender."""
    sender_id: str
    display_name: str
    text: str
    message_count: int = 1
    first_timestamp: int
    last_timestamp: int


class UserConfig(BaseModel):
    """
    Persona configuration snapshot for one user.

    Every field has a documented default so a missing database row never
    fails a turn.
    """
    agent_name: str = "Assessor"
    agent_gender: str = "male"
    agent_personality: list[str] = Field(default_factory=lambda: ["Friendly", "Efficient"])
    user_nickname: Optional[str] = None
    language: str = "Portuguese"
    timezone: str = "America/Sao_Paulo"
    send_audio: bool = False
    voice_id: Optional[str] = None

    @field_validator("agent_personality", mode="before")
    @classmethod
    def split_personality(cls, v: Any) -> Any:
        # Stored either as a text[] column or a comma separated string
        if v is None:
            return ["Friendly", "Efficient"]
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    def personality_text(self) -> str:
        return ", ".join(self.agent_personality)


class UserContext(BaseModel):
    """Immutable value handed to every specialist for one turn."""
    sender_id: str
    message: str
    display_name: str
    config: UserConfig = Field(default_factory=UserConfig)

    class Config:
        """Pydantic configuration."""
        frozen = True

    @property
    def user_nickname(self) -> str:
        return self.config.user_nickname or self.display_name


class ChatTurn(BaseModel):
    """A single entry in the stored conversation history."""
    role: Literal["user", "assistant"]
    content: str


# ---------------------------------------------------------------------------
# Specialist outcomes
# ---------------------------------------------------------------------------

class Declined(BaseModel):
    """The specialist did not handle the turn (not its domain, or it failed)."""
    kind: Literal["declined"] = "declined"
    reason: Optional[str] = None  # for logs only, never shown to the user


class Handled(BaseModel):
    """The specialist produced user-facing text."""
    kind: Literal["handled"] = "handled"
    text: str = Field(min_length=1)


class HandledStructured(BaseModel):
    """The specialist produced a payload that still needs persona rendering."""
    kind: Literal["structured"] = "structured"
    payload: dict[str, Any]


SpecialistOutcome = Annotated[
    Union[Declined, Handled, HandledStructured],
    Field(discriminator="kind"),
]


def outcome_from_text(text: Optional[str]) -> Union[Declined, Handled]:
    """Wrap free text, treating blank text as a decline."""
    if text is None or not text.strip():
        return Declined(reason="empty response")
    return Handled(text=text)


class TaskStatusPayload(BaseModel):
    """Structured result of a task-style action (todo, reminders)."""
    task: str
    status: str
    action: str
    detail: str = ""


class DeliveryOptions(BaseModel):
    """Extra data the outbound sender uses to choose between text and voice."""
    config: UserConfig = Field(default_factory=UserConfig)
    original_text: str = ""


class TurnState(str, Enum):
    """Terminal state of one orchestration pass."""
    DELIVERED = "delivered"
    APOLOGY_SENT = "apology_sent"
    UNDELIVERED = "undelivered"  # the final send itself failed


class TurnReport(BaseModel):
    """What happened during one turn, for logs and daemon statistics."""
    sender_id: str
    keywords: list[str] = Field(default_factory=list)
    outcomes: dict[str, str] = Field(default_factory=dict)  # keyword -> outcome kind
    used_fallback: bool = False
    state: TurnState = TurnState.DELIVERED
    reply: Optional[str] = None
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=datetime.now)
    duration_seconds: float = 0.0

    class Config:
        use_enum_values = True
