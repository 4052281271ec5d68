"""Thread list paging, optimistic thread patches and thread hydration."""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Awaitable, Dict, List, Optional, Set

from .async_client import AsyncBizziClient
from .config import Settings, settings as default_settings
from .exceptions import BizziError
from .models import utcnow
from .store import MessageStore
from .threads import PLACEHOLDER_TITLE, Thread, ThreadPage, ThreadPatch
from .types import Sleep
from .utils import retry

logger = logging.getLogger(__name__)

LIST_ERROR = "Failed to load chats."

_PLACEHOLDER_TITLES = re.compile(r"^(untitled$|user inquiry|weekly priorities)", re.IGNORECASE)


def is_placeholder_title(title: Optional[str]) -> bool:
    title = (title or "").strip()
    return not title or bool(_PLACEHOLDER_TITLES.match(title))


def _sort_key(thread: Thread) -> tuple:
    updated = thread.updated_at or datetime.min.replace(tzinfo=timezone.utc)
    if updated.tzinfo is None:
        updated = updated.replace(tzinfo=timezone.utc)
    return (not thread.pinned, -updated.timestamp())


class ThreadClient:
    """Owns the thread list and opens threads into a :class:`MessageStore`.

    Listing resumes either by numeric offset or by a ``before`` cursor taken
    from the last loaded thread, because backends support one or the other.
    The list never grows past ``thread_soft_cap`` rows.
    """

    def __init__(
        self,
        client: AsyncBizziClient,
        store: MessageStore,
        *,
        business_id: Optional[str] = None,
        settings: Optional[Settings] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._store = store
        self._settings = settings or default_settings
        self._sleep = sleep
        self.business_id = business_id

        self.threads: List[Thread] = []
        self.total: Optional[int] = None
        self.offset = 0
        self.query = ""
        self.loading = False
        self.error = ""

        self.is_fetching = False
        self._generation = 0
        self._open_task: Optional[asyncio.Task] = None
        self._list_task: Optional[asyncio.Task] = None
        self._debounce_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    # Listing
    @property
    def soft_cap(self) -> int:
        return self._settings.thread_soft_cap

    @property
    def has_more(self) -> bool:
        total = self.soft_cap if self.total is None else self.total
        effective_total = min(total, self.soft_cap)
        return len(self.threads) < effective_total

    async def list(
        self,
        *,
        business_id: Optional[str] = None,
        query: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> ThreadPage:
        """Fetch one page and merge it into :attr:`threads`.

        ``offset`` of ``None`` or ``0`` starts over; anything else continues
        from the current list.
        """
        if business_id is not None:
            self.business_id = business_id
        if query is not None:
            self.query = query.strip()
        reset = not offset
        next_offset = 0 if reset else offset

        remaining = self.soft_cap - next_offset
        intended = limit or (self._settings.initial_page_size if reset else self._settings.page_size)
        page_limit = max(0, min(intended, remaining))
        if not self.business_id or page_limit == 0:
            return self._page()

        if self._list_task is not None and not self._list_task.done():
            self._list_task.cancel()

        before = None
        if not reset and self.threads and self.threads[-1].updated_at is not None:
            before = self.threads[-1].updated_at.isoformat()

        self.loading = True
        self.error = ""
        task = asyncio.ensure_future(
            self._client.list_threads(
                self.business_id,
                limit=page_limit,
                offset=next_offset,
                before=before,
                q=self.query or None,
            )
        )
        self._list_task = task
        try:
            data = await task
        except asyncio.CancelledError:
            if task.cancelled() and self._list_task is not task:
                return self._page()
            raise
        except BizziError as exc:
            logger.warning("failed to list threads: %s", exc)
            self.error = LIST_ERROR
            return self._page()
        finally:
            if self._list_task is task:
                self.loading = False

        if data.total is not None:
            self.total = data.total

        if not data.threads:
            if reset:
                self.threads = []
                self.offset = 0
            if not data.total:
                # Nothing new and no total: stop paging at what we have.
                self.total = len(self.threads)
            return self._page()

        self.offset = next_offset + len(data.threads)
        self.threads = list(data.threads) if reset else _merge_unique(self.threads, data.threads)
        del self.threads[self.soft_cap:]
        return self._page()

    async def refresh(self) -> ThreadPage:
        return await self.list(offset=0)

    async def load_more(self) -> ThreadPage:
        """Load the next page unless the soft cap or server total is reached."""
        if self.loading or not self.has_more:
            return self._page()
        return await self.list(offset=self.offset)

    def set_query(self, query: str) -> asyncio.Task:
        """Debounce a refresh for a new search query."""
        self.query = (query or "").strip()
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()

        async def _debounced() -> ThreadPage:
            await self._sleep(self._settings.search_debounce_seconds)
            return await self.refresh()

        self._debounce_task = self._track(_debounced())
        return self._debounce_task

    def _page(self) -> ThreadPage:
        return ThreadPage(threads=list(self.threads), has_more=self.has_more, total=self.total)

    # Opening
    async def open(self, thread_id: str) -> Optional[Thread]:
        """Hydrate the store with a thread's history.

        A newer ``open`` supersedes this one: its fetch is cancelled and its
        result, if any, is discarded.
        """
        if not thread_id:
            return None
        self._generation += 1
        generation = self._generation
        if self._open_task is not None and not self._open_task.done():
            self._open_task.cancel()

        self.is_fetching = True
        self._store.clear()
        task = asyncio.ensure_future(
            self._client.get_thread(thread_id, limit=self._settings.thread_history_limit)
        )
        self._open_task = task
        try:
            detail = await task
        except asyncio.CancelledError:
            if task.cancelled() and generation != self._generation:
                logger.debug("open of thread %s superseded", thread_id)
                return None
            raise
        except BizziError as exc:
            logger.warning("failed to load thread %s: %s", thread_id, exc)
            return None
        finally:
            if generation == self._generation:
                self.is_fetching = False

        if generation != self._generation:
            logger.debug("discarding stale history for thread %s", thread_id)
            return None
        self._store.hydrate([row.to_message() for row in detail.messages])
        return detail.thread or Thread(id=thread_id)

    # Patching
    async def _patch(self, thread_id: str, patch: ThreadPatch) -> bool:
        if not thread_id:
            return False
        previous = list(self.threads)
        changes = patch.model_dump(exclude_none=True)
        now = utcnow()
        updated = [
            t.model_copy(update={**changes, "updated_at": now}) if t.id == thread_id else t
            for t in previous
        ]
        if patch.pinned is not None:
            updated.sort(key=_sort_key)
        self.threads = updated
        try:
            await self._client.update_thread(thread_id, patch)
        except BizziError as exc:
            logger.warning("rolling back patch of thread %s: %s", thread_id, exc)
            self.threads = previous
            return False
        return True

    async def rename(self, thread_id: str, title: str) -> bool:
        return await self._patch(thread_id, ThreadPatch(title=(title or "").strip() or PLACEHOLDER_TITLE))

    async def pin(self, thread_id: str, pinned: bool) -> bool:
        return await self._patch(thread_id, ThreadPatch(pinned=bool(pinned)))

    async def archive(self, thread_id: str, archived: bool = True) -> bool:
        return await self._patch(thread_id, ThreadPatch(archived=bool(archived)))

    async def delete(self, thread_id: str) -> bool:
        """Remove a thread; callers confirm with the user first."""
        previous = list(self.threads)
        self.threads = [t for t in previous if t.id != thread_id]
        try:
            await self._client.delete_thread(thread_id)
        except BizziError as exc:
            logger.warning("rolling back delete of thread %s: %s", thread_id, exc)
            self.threads = previous
            return False
        if self.total:
            self.total -= len(previous) - len(self.threads)
        return True

    # Auto-titling
    async def auto_title(self, thread_id: str) -> Optional[str]:
        """Give a new thread a generated title, retrying with backoff.

        Skipped when the thread already has a real title. Gives up silently.
        """
        if not thread_id:
            return None
        try:
            detail = await self._client.get_thread(thread_id, limit=1)
            current = detail.thread.title if detail.thread else ""
            if not is_placeholder_title(current):
                return None
        except BizziError as exc:
            logger.debug("could not read title of %s: %s", thread_id, exc)

        result = await retry(
            lambda: self._client.auto_title(thread_id),
            self._settings.auto_title_delays,
            sleep=self._sleep,
        )
        if result is None or not result.title:
            return None
        self.threads = [
            t.model_copy(update={"title": result.title}) if t.id == thread_id else t
            for t in self.threads
        ]
        return result.title

    def schedule_auto_title(self, thread_id: str) -> asyncio.Task:
        return self._track(self.auto_title(thread_id))

    def _track(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def aclose(self) -> None:
        """Cancel background work (debounced refreshes, auto-titles)."""
        tasks = [t for t in self._background if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


def _merge_unique(existing: List[Thread], incoming: List[Thread]) -> List[Thread]:
    seen: Dict[str, bool] = {t.id: True for t in existing}
    merged = list(existing)
    for thread in incoming:
        if thread.id and thread.id not in seen:
            seen[thread.id] = True
            merged.append(thread)
    return merged
