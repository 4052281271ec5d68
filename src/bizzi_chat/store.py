"""In-memory message list for the open thread, with optimistic sends."""

from __future__ import annotations

import inspect
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import TypeAdapter

from .async_client import AsyncBizziClient
from .config import Settings, settings as default_settings
from .exceptions import BizziError
from .models import (
    ChatMessage,
    Clarify,
    GenerateOptions,
    GenerateRequest,
    Message,
    PendingMessage,
    SuggestedAction,
    new_local_id,
    utcnow,
)
from .types import ActionsCallback, ThreadCreatedCallback

logger = logging.getLogger(__name__)

NO_RESPONSE_TEXT = "No response generated."
GENERIC_ERROR = "Something went wrong. Please try again."

_MESSAGES = TypeAdapter(List[Message])


class MessageStore:
    """Authoritative message list for the currently open thread.

    ``is_loading`` serialises sends on this instance. ``is_generating`` is the
    public "assistant is thinking" signal, so the optimistic user bubble can
    render before the typing indicator does.
    """

    def __init__(
        self,
        client: AsyncBizziClient,
        *,
        user_id: Optional[str] = None,
        settings: Optional[Settings] = None,
        on_actions: Optional[ActionsCallback] = None,
    ) -> None:
        self._client = client
        self._settings = settings or default_settings
        self.user_id = user_id
        self.on_actions = on_actions

        self._messages: List[ChatMessage] = []
        self.is_loading = False
        self.is_generating = False
        self.error: Optional[str] = None
        self.clarify: Optional[Clarify] = None
        self.suggested_actions: List[SuggestedAction] = []
        self.follow_up_prompt: Optional[str] = None
        self.usage_count = 0
        self._last_input = ""
        self._generation = 0

    @property
    def messages(self) -> List[ChatMessage]:
        return list(self._messages)

    @property
    def generation(self) -> int:
        """Bumped whenever the list is replaced; replies to older generations are dropped."""
        return self._generation

    def hydrate(self, messages: Sequence[Union[ChatMessage, Dict[str, Any]]]) -> None:
        """Replace the whole list and reset per-conversation state.

        Plain dicts (a saved transcript, say) are validated into the matching
        message variant by their ``kind``.
        """
        self._generation += 1
        self._messages = _MESSAGES.validate_python(list(messages or []))
        self.clarify = None
        self.suggested_actions = []
        self.follow_up_prompt = None
        self.error = None
        self._last_input = ""

    def clear(self) -> None:
        self.hydrate([])

    def confirm(self, local_id: str, server_id: Union[int, str]) -> bool:
        """Swap a pending message for its confirmed twin."""
        for index, message in enumerate(self._messages):
            if isinstance(message, PendingMessage) and message.local_id == local_id:
                self._messages[index] = message.confirm(server_id)
                return True
        return False

    async def send_message(
        self,
        text: str,
        *,
        intent: str = "general",
        depth: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        business_id: Optional[str] = None,
        thread_id: Optional[str] = None,
        on_thread_created: Optional[ThreadCreatedCallback] = None,
    ) -> Optional[ChatMessage]:
        """Send ``text`` and append the assistant's reply.

        Returns the assistant message, or ``None`` when the send was skipped or
        failed. The optimistic user message is kept on failure so it can be
        resent.
        """
        if not text or not text.strip() or self.is_loading:
            return None

        user_message = PendingMessage(
            local_id=new_local_id(),
            sender="user",
            text=text.strip(),
            created_at=utcnow(),
        )
        self._messages.append(user_message)
        self._last_input = text
        self.is_loading = True
        self.is_generating = True
        self.error = None
        self.clarify = None
        self.suggested_actions = []
        self.follow_up_prompt = None

        request = GenerateRequest(
            user_id=self.user_id,
            business_id=business_id or self._client.business_id,
            message=text,
            intent=intent,
            context=context,
            opts=GenerateOptions(depth=depth or self._settings.default_depth),
            thread_id=thread_id,
        )
        generation = self._generation
        try:
            data = await self._client.generate(request)
            if generation != self._generation:
                logger.debug("dropping reply for a conversation that was replaced")
                return None

            created = data.meta.thread_id
            if not thread_id and created and on_thread_created is not None:
                result = on_thread_created(created)
                if inspect.isawaitable(result):
                    await result

            if data.meta.clarify is not None and data.suggested_actions is not None:
                self.clarify = data.meta.clarify
                self.suggested_actions = list(data.suggested_actions)
                self._dispatch_actions(self.suggested_actions)

            reply = PendingMessage(
                local_id=new_local_id(),
                sender="assistant",
                text=data.response_text or NO_RESPONSE_TEXT,
                created_at=_not_before(utcnow(), user_message.created_at),
            )
            self._messages.append(reply)

            if data.meta.user_message_id is not None:
                self.confirm(user_message.local_id, data.meta.user_message_id)
            if data.meta.assistant_message_id is not None:
                self.confirm(reply.local_id, data.meta.assistant_message_id)

            if data.meta.clarify is None:
                self.suggested_actions = list(data.suggested_actions or [])
                self._dispatch_actions(self.suggested_actions)
                self.follow_up_prompt = data.follow_up_prompt

            await self.refresh_usage()
            return self._find(reply.local_id)
        except BizziError as exc:
            logger.error("send failed: %s", exc)
            if generation == self._generation:
                self.error = exc.message or GENERIC_ERROR
            return None
        finally:
            self.is_loading = False
            self.is_generating = False

    async def choose_intent(
        self,
        forced_intent: str,
        depth: Optional[str] = None,
        thread_id: Optional[str] = None,
    ) -> Optional[ChatMessage]:
        """Resend the last input with an intent picked from a clarifier."""
        if not forced_intent or not self._last_input:
            return None
        self.clarify = None
        return await self.send_message(
            self._last_input, intent=forced_intent, depth=depth, thread_id=thread_id
        )

    async def refresh_usage(self) -> None:
        """Refresh this month's query count; failures keep the old value."""
        if not self.user_id:
            return
        month = utcnow().strftime("%Y-%m")
        try:
            self.usage_count = await self._client.fetch_usage_count(self.user_id, month)
        except BizziError as exc:
            logger.warning("failed to fetch usage: %s", exc)

    def _find(self, local_id: Optional[str]) -> Optional[ChatMessage]:
        for message in self._messages:
            if message.local_id == local_id:
                return message
        return None

    def _dispatch_actions(self, actions: List[SuggestedAction]) -> None:
        if self.on_actions is not None and actions:
            self.on_actions(actions)


def _not_before(value: datetime, floor: Optional[datetime]) -> datetime:
    return floor if floor is not None and value < floor else value
