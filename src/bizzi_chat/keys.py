"""Message ordering and stable identity keys for rendering.

Keys never depend on message text, so a message keeps its key while its
content is revealed or edited.
"""

from __future__ import annotations

import hashlib
import secrets
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .models import ChatMessage, message_id, message_time

KeyFallback = Callable[[ChatMessage], str]


def hash_key(value: str) -> str:
    return hashlib.blake2s(value.encode("utf-8"), digest_size=8).hexdigest()


def sort_messages(messages: Sequence[ChatMessage]) -> List[ChatMessage]:
    """Order messages for display.

    Timestamped messages sort by time. Messages without a timestamp sort after
    the newest timestamped one, in insertion order. Equal times put ``user``
    before ``assistant``, then fall back to the original index.
    """
    times = [message_time(m) for m in messages]
    base = max((t for t in times if t > 0), default=0)
    seq = 0
    rows: List[Tuple[int, int, int, ChatMessage]] = []
    for index, (message, t) in enumerate(zip(messages, times)):
        if t <= 0:
            seq += 1
            t = base + seq
        rows.append((t, 0 if message.sender == "user" else 1, index, message))
    rows.sort(key=lambda row: row[:3])
    return [row[3] for row in rows]


def derive_stable_key(
    message: ChatMessage,
    index: int,
    preceding: Sequence[ChatMessage],
    fallback: KeyFallback,
) -> str:
    """Derive the identity key of ``message`` at ``index`` in sorted order.

    ``preceding`` holds the sorted messages before it. The chain is: genuine
    id, then sender plus timestamp, then ``rep|<key of the user message just
    before>`` for an untimed assistant reply, then ``fallback``.
    """
    genuine = message_id(message)
    if genuine:
        return genuine

    t = message_time(message)
    if t:
        return hash_key(f"{message.sender}|t:{t}")

    if message.sender == "assistant" and index > 0 and preceding and preceding[-1].sender == "user":
        prev_key = derive_stable_key(preceding[-1], index - 1, preceding[:-1], fallback)
        return f"rep|{prev_key}"

    return fallback(message)


class StableKeys:
    """Per-session key registry.

    Random last-resort keys are memoised against object identity, so the
    same message object keeps its key for the whole session.
    """

    def __init__(self) -> None:
        # id(message) -> (message, key); holding the message keeps its id unique.
        self._random: Dict[int, Tuple[ChatMessage, str]] = {}

    def _fallback(self, message: ChatMessage) -> str:
        entry = self._random.get(id(message))
        if entry is None or entry[0] is not message:
            entry = (message, hash_key(f"{message.sender}|z|{secrets.token_hex(8)}"))
            self._random[id(message)] = entry
        return entry[1]

    def key_for(self, message: ChatMessage, index: int, ordered: Sequence[ChatMessage]) -> str:
        return derive_stable_key(message, index, ordered[:index], self._fallback)

    def keys_for(self, ordered: Sequence[ChatMessage]) -> List[str]:
        """Keys for one render pass over sorted messages, unique within the pass."""
        keys: List[str] = []
        seen: Dict[str, int] = {}
        for index, message in enumerate(ordered):
            key = self.key_for(message, index, ordered)
            count = seen.get(key, 0)
            seen[key] = count + 1
            keys.append(key if count == 0 else f"{key}#{count}")
        return keys

    def forget(self, keep: Optional[Sequence[ChatMessage]] = None) -> None:
        """Drop memoised keys, except for messages still in ``keep``."""
        alive = {id(m) for m in keep or ()}
        self._random = {k: v for k, v in self._random.items() if k in alive}
