"""Message and assistant payload models for the Bizzi chat SDK."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

Sender = Literal["user", "assistant"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_local_id() -> str:
    return f"local-{uuid.uuid4().hex}"


def sender_from_role(role: Optional[str]) -> Sender:
    """Map a backend ``role`` onto a message sender."""
    return "assistant" if role == "assistant" else "user"


class _MessageBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender: Sender
    text: str
    created_at: Optional[datetime] = None
    local_id: Optional[str] = None


class PendingMessage(_MessageBase):
    """A message held locally that the backend has not acknowledged yet."""

    kind: Literal["pending"] = "pending"

    def confirm(self, server_id: Union[int, str]) -> "ConfirmedMessage":
        return ConfirmedMessage(
            server_id=server_id,
            local_id=self.local_id,
            sender=self.sender,
            text=self.text,
            created_at=self.created_at,
        )


class ConfirmedMessage(_MessageBase):
    """A message with a persistent, backend-assigned id."""

    kind: Literal["confirmed"] = "confirmed"
    server_id: Union[int, str]


ChatMessage = Union[PendingMessage, ConfirmedMessage]

# Use for validating raw payloads into the right variant.
Message = Annotated[ChatMessage, Field(discriminator="kind")]


def message_id(message: ChatMessage) -> Optional[str]:
    """Return the genuine identity of a message, preferring its local id."""
    if message.local_id:
        return message.local_id
    if isinstance(message, ConfirmedMessage) and message.server_id not in (None, ""):
        return str(message.server_id)
    return None


def message_time(message: ChatMessage) -> int:
    """Epoch milliseconds of ``created_at``, or 0 when the message has none."""
    if message.created_at is None:
        return 0
    created_at = message.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return int(created_at.timestamp() * 1000)


class Clarify(BaseModel):
    """Clarifying question returned when the assistant is unsure of the intent."""

    question: Optional[str] = None
    options: List[Any] = Field(default_factory=list)
    note: Optional[str] = None


class SuggestedAction(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: Optional[str] = None
    target: Optional[str] = None
    label: Optional[str] = None
    checklist_id: Optional[str] = Field(None, alias="checklistId")


class GenerateOptions(BaseModel):
    depth: str = "standard"


class GenerateRequest(BaseModel):
    """Body of ``POST /api/gpt/generate``."""

    user_id: Optional[str] = None
    business_id: Optional[str] = None
    message: str
    intent: str = "general"
    context: Optional[Dict[str, Any]] = None
    opts: GenerateOptions = Field(default_factory=GenerateOptions)
    thread_id: Optional[str] = None

    @field_validator("message")
    @classmethod
    def _trim_message(cls, value: str) -> str:
        return value.strip()


class GenerateMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    thread_id: Optional[str] = None
    clarify: Optional[Clarify] = None
    user_message_id: Optional[Union[int, str]] = None
    assistant_message_id: Optional[Union[int, str]] = None

    @field_validator("thread_id", mode="before")
    @classmethod
    def _coerce_thread_id(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return str(value)


class GenerateResponse(BaseModel):
    """Assistant reply from the generate endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    response_text: Optional[str] = Field(None, alias="responseText")
    meta: GenerateMeta = Field(default_factory=GenerateMeta)
    suggested_actions: Optional[List[SuggestedAction]] = Field(None, alias="suggestedActions")
    follow_up_prompt: Optional[str] = Field(None, alias="followUpPrompt")


class PromptUsageRow(BaseModel):
    """One recorded use of a quick prompt."""

    prompt_text: str
    module: Optional[str] = None
    used_at: Optional[datetime] = None


class PromptUsageEvent(BaseModel):
    """Telemetry row written when a user clicks a quick prompt."""

    user_id: str
    business_id: Optional[str] = None
    module: str
    prompt_text: str
    created_at: datetime = Field(default_factory=utcnow)


class QuickPrompt(BaseModel):
    """A ranked quick prompt candidate."""

    text: str
    source: Literal["pinned", "curated", "usage", "explore"]
    score: float
