"""One object that ties the chat pieces together for a UI shell."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import random
import time
from typing import Any, Awaitable, Dict, List, Optional, Set

from .async_client import AsyncBizziClient
from .config import Settings, settings as default_settings
from .keys import sort_messages
from .models import ChatMessage, QuickPrompt
from .prompts import DEFAULT_MODULE
from .ranker import QuickPromptRanker
from .storage import KeyValueStorage, MemoryStorage
from .store import MessageStore
from .suppression import SeedSuppressor
from .thread_client import ThreadClient
from .threads import Thread
from .types import Clock, Sleep
from .view import RenderPass, ThreadView

logger = logging.getLogger(__name__)

LAST_USER_KEY = "bizzi:last:user_id"
LAST_BUSINESS_KEY = "bizzi:last:business_id"


class ChatCoordinator:
    """Shared chat state for the chat panel, history list and canvas.

    Owns one :class:`MessageStore`, :class:`ThreadClient`, :class:`ThreadView`,
    :class:`SeedSuppressor` and :class:`QuickPromptRanker`, and keeps the
    current thread id consistent between them.
    """

    def __init__(
        self,
        client: AsyncBizziClient,
        *,
        user_id: Optional[str] = None,
        business_id: Optional[str] = None,
        storage: Optional[KeyValueStorage] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        wall_clock: Optional[Clock] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._settings = settings or default_settings
        self._storage = storage if storage is not None else MemoryStorage()
        self._client = client

        self.user_id = user_id or client.user_id
        self.business_id = business_id or client.business_id or self._storage.get(LAST_BUSINESS_KEY)
        if self.user_id:
            self._storage.set(LAST_USER_KEY, self.user_id)
        if self.business_id:
            self._storage.set(LAST_BUSINESS_KEY, self.business_id)

        self.store = MessageStore(client, user_id=self.user_id, settings=self._settings)
        self.threads = ThreadClient(
            client, self.store, business_id=self.business_id, settings=self._settings, sleep=sleep
        )
        self.view = ThreadView(settings=self._settings, clock=clock or time.monotonic)
        self.suppressor = SeedSuppressor(self._storage)
        self.ranker = QuickPromptRanker(
            client,
            self._storage,
            settings=self._settings,
            clock=wall_clock or time.time,
            rng=rng,
        )

        self.thread_id: Optional[str] = None
        self.is_chat_open = False
        self.is_canvas_open = False
        self.canvas_module: Optional[str] = None
        self.threads_refresh_key = 0
        self._background: Set[asyncio.Task] = set()

    # Panels
    def open_chat(self) -> None:
        self.is_chat_open = True

    def close_chat(self) -> None:
        self.is_chat_open = False

    def open_canvas(self, module: Optional[str] = None) -> None:
        self.is_canvas_open = True
        if module:
            self.canvas_module = module

    def close_canvas(self) -> None:
        self.is_canvas_open = False

    # Threads
    def reset_thread(self) -> None:
        """Start a fresh conversation with no backend thread yet."""
        self.thread_id = None
        self.store.clear()
        self.suppressor.reset()
        self.view.start_draft()

    async def open_thread(self, thread_id: str) -> Optional[Thread]:
        if not thread_id:
            return None
        self.thread_id = thread_id
        self.view.begin_open(thread_id)
        self.suppressor.load(thread_id)
        thread = await self.threads.open(thread_id)
        if self.thread_id != thread_id:
            logger.debug("open of thread %s replaced by %s", thread_id, self.thread_id)
            return None
        self.view.finish_open(self.store.messages)
        return thread

    def _on_thread_created(self, thread_id: str) -> None:
        self.thread_id = thread_id
        self.view.promote(thread_id)
        self.suppressor.bind(thread_id)
        self.threads_refresh_key += 1
        self.threads.schedule_auto_title(thread_id)

    # Messaging
    async def send_message(
        self,
        text: str,
        *,
        open_canvas: bool = False,
        module: Optional[str] = None,
        **options: Any,
    ) -> Optional[ChatMessage]:
        if open_canvas:
            self.open_canvas(module)
        if self.thread_id is None and self.view.thread_id is None:
            self.view.start_draft()
        return await self.store.send_message(
            text,
            business_id=self.business_id,
            thread_id=self.thread_id,
            on_thread_created=self._on_thread_created,
            **options,
        )

    async def choose_intent(self, forced_intent: str, depth: Optional[str] = None) -> Optional[ChatMessage]:
        return await self.store.choose_intent(forced_intent, depth=depth, thread_id=self.thread_id)

    async def start_quick_prompt(
        self,
        text: str,
        intent: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
        *,
        module: Optional[str] = None,
        open_canvas: bool = False,
    ) -> Optional[ChatMessage]:
        """Send a quick prompt without echoing it as a user bubble."""
        text = (text or "").strip()
        if not text or self.store.is_loading:
            return None
        module = module or self.canvas_module or DEFAULT_MODULE
        self.suppressor.arm(text, self.thread_id)
        if self.thread_id is None:
            self.store.clear()
            self.view.start_draft()
        if self.user_id:
            self._track(
                self.ranker.record_usage(self.user_id, module, text, business_id=self.business_id)
            )
        options: Dict[str, Any] = {"intent": intent or "general"}
        if meta:
            options["context"] = meta
        return await self.send_message(text, open_canvas=open_canvas, module=module, **options)

    async def get_quick_prompts(self, module: Optional[str] = None, limit: Optional[int] = None) -> List[QuickPrompt]:
        return await self.ranker.get_quick_prompts(
            self.user_id or "anonymous", module or self.canvas_module or DEFAULT_MODULE, limit=limit
        )

    # Rendering
    def visible_messages(self) -> List[ChatMessage]:
        """Messages in display order, without a suppressed seed bubble."""
        return self.suppressor.filter(sort_messages(self.store.messages))

    def render(self) -> RenderPass:
        """Render the open thread, minus a suppressed quick prompt bubble.

        Animation is decided on the full list, so the reply to a hidden
        quick prompt still counts as a reply to a fresh submission.
        """
        full = self.view.render(self.store.messages)
        shown = {id(m) for m in self.visible_messages()}
        items = [item for item in full.items if id(item.message) in shown]
        return dataclasses.replace(full, items=items)

    def complete_animation(self, key: str) -> None:
        self.view.complete_animation(key)

    @property
    def show_typing_indicator(self) -> bool:
        return self.view.typing_indicator_visible(self.store.is_generating)

    # Lifecycle
    def _track(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def aclose(self) -> None:
        """Flush pending usage telemetry, then stop thread background work."""
        tasks = [t for t in self._background if not t.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.threads.aclose()
