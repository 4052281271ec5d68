"""Thread types and models for the Bizzi chat SDK."""

from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import ConfirmedMessage, PendingMessage, sender_from_role

PLACEHOLDER_TITLE = "Untitled"


class Thread(BaseModel):
    """Represents a conversation thread."""

    model_config = ConfigDict(extra="allow")

    id: str
    title: str = PLACEHOLDER_TITLE
    module: Optional[str] = None
    first_intent: Optional[str] = None
    pinned: bool = False
    archived: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_message_excerpt: Optional[str] = None
    last_message_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("title", mode="before")
    @classmethod
    def _default_title(cls, value: Any) -> Any:
        return value or PLACEHOLDER_TITLE


class ThreadMessage(BaseModel):
    """Represents a message row within a thread."""

    id: Optional[Union[int, str]] = None
    role: str  # "user" or "assistant"
    content: str = ""
    created_at: Optional[datetime] = None

    def to_message(self) -> Union[PendingMessage, ConfirmedMessage]:
        sender = sender_from_role(self.role)
        if self.id is None or self.id == "":
            return PendingMessage(sender=sender, text=self.content, created_at=self.created_at)
        return ConfirmedMessage(
            server_id=self.id,
            sender=sender,
            text=self.content,
            created_at=self.created_at,
        )


class ThreadListResponse(BaseModel):
    """Response containing a page of threads."""

    threads: List[Thread] = Field(default_factory=list)
    total: Optional[int] = None
    limit: Optional[int] = None
    offset: Optional[int] = None


class ThreadDetailResponse(BaseModel):
    """Response containing a thread and its messages."""

    thread: Optional[Thread] = None
    messages: List[ThreadMessage] = Field(default_factory=list)


class ThreadPatch(BaseModel):
    """Fields accepted by ``PATCH /api/chats/{id}``."""

    title: Optional[str] = None
    pinned: Optional[bool] = None
    archived: Optional[bool] = None


class AutoTitleResponse(BaseModel):
    ok: bool = False
    title: Optional[str] = None


class ThreadPage(BaseModel):
    """Result of a thread list call after merging into local state."""

    threads: List[Thread]
    has_more: bool
    total: Optional[int] = None
