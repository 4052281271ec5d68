"""Hide the echoed user bubble of a clicked quick prompt."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional, Sequence

from .models import ChatMessage
from .storage import KeyValueStorage
from .utils import normalize_text

LAST_SEED_KEY = "bizzi:lastSeedPrompt"


def seed_key(thread_id: str) -> str:
    return f"bizzi:seed:{thread_id}"


def hidden_seed_key(thread_id: str) -> str:
    return f"bizzi:hiddenSeed:{thread_id}"


class SuppressionState(str, Enum):
    IDLE = "idle"
    SUPPRESSED = "suppressed"
    CLEARED = "cleared"


class SeedSuppressor:
    """Tracks the seed text of a quick prompt and filters its user bubble.

    Exactly one user message is hidden: the first whose normalised text equals
    the seed. Once hidden it stays hidden (also across reopens, via storage).
    Suppression of upcoming bubbles ends on the first different user message
    after the seed, or on :meth:`clear`.
    """

    def __init__(self, storage: KeyValueStorage) -> None:
        self._storage = storage
        self.state = SuppressionState.IDLE
        self.thread_id: Optional[str] = None
        self.seed_text = ""
        self._seed = ""
        self._hidden = False

    @property
    def suppress_next_user_bubble(self) -> bool:
        return self.state is SuppressionState.SUPPRESSED

    def arm(self, text: str, thread_id: Optional[str] = None) -> None:
        self.seed_text = (text or "").strip()
        self._seed = normalize_text(self.seed_text)
        self._hidden = False
        self.state = SuppressionState.SUPPRESSED if self._seed else SuppressionState.IDLE
        if self.seed_text:
            self._storage.set(LAST_SEED_KEY, self.seed_text)
        if thread_id:
            self.bind(thread_id)

    def bind(self, thread_id: str) -> None:
        """Persist the current seed under ``thread_id`` once the thread exists."""
        self.thread_id = thread_id
        if self.seed_text:
            self._storage.set(seed_key(thread_id), self.seed_text)
        if self._hidden:
            self._storage.set(hidden_seed_key(thread_id), "1")

    def load(self, thread_id: str) -> None:
        """Restore the seed recorded for ``thread_id`` when it is reopened."""
        self.thread_id = thread_id
        self.seed_text = self._storage.get(seed_key(thread_id)) or ""
        self._seed = normalize_text(self.seed_text)
        self._hidden = self._storage.get(hidden_seed_key(thread_id)) == "1"
        self.state = SuppressionState.CLEARED if self._hidden else SuppressionState.IDLE

    def clear(self) -> None:
        if self.state is SuppressionState.SUPPRESSED:
            self.state = SuppressionState.CLEARED

    def reset(self) -> None:
        self.state = SuppressionState.IDLE
        self.thread_id = None
        self.seed_text = ""
        self._seed = ""
        self._hidden = False

    def filter(self, messages: Sequence[ChatMessage]) -> List[ChatMessage]:
        """Return ``messages`` without the suppressed seed bubble."""
        if not self._seed:
            return list(messages)
        can_hide = self._hidden or self.state is SuppressionState.SUPPRESSED
        visible: List[ChatMessage] = []
        seen_seed = False
        for message in messages:
            if message.sender != "user":
                visible.append(message)
                continue
            matches = normalize_text(message.text) == self._seed
            if matches and can_hide and not seen_seed:
                seen_seed = True
                self._mark_hidden()
                continue
            if seen_seed and not matches and self.state is SuppressionState.SUPPRESSED:
                self.state = SuppressionState.CLEARED
            visible.append(message)
        return visible

    def _mark_hidden(self) -> None:
        if self._hidden:
            return
        self._hidden = True
        if self.thread_id:
            self._storage.set(hidden_seed_key(self.thread_id), "1")
