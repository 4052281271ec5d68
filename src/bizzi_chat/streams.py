"""Typewriter reveal of assistant replies, one frame at a time."""

from __future__ import annotations

import asyncio
import re
from typing import AsyncIterator, Iterator, List, Optional

from .config import settings
from .types import DoneCallback, Sleep

_WORD = re.compile(r"\S+\s*")
_SPACE = re.compile(r"\s+")


def chunk_words(text: str) -> List[str]:
    """Split into word chunks with trailing whitespace; leading space is its own chunk."""
    if not text:
        return [""]
    chunks: List[str] = []
    stripped = text.lstrip()
    lead = len(text) - len(stripped)
    if lead:
        chunks.append(text[:lead])
    chunks.extend(_WORD.findall(text, lead))
    return chunks or [""]


def _cost(chunk: str) -> int:
    return max(1, len(_SPACE.sub("", chunk)) or len(chunk))


class TypewriterStream:
    """Iterator over the revealed prefix of ``text``, one value per frame.

    Each frame adds ``chars_per_second * frame_seconds`` to a budget. Whole
    words are revealed while the budget covers their cost (non-space length),
    and the current word is revealed proportionally. The final frame is always
    the full text, after which ``on_done`` fires once.
    """

    def __init__(
        self,
        text: str,
        *,
        chars_per_second: float = settings.typewriter_chars_per_second,
        frame_seconds: float = settings.typewriter_frame_seconds,
        on_done: Optional[DoneCallback] = None,
    ) -> None:
        self.text = text or ""
        self._per_frame = max(chars_per_second, 1e-6) * frame_seconds
        self._chunks = chunk_words(self.text)
        self._costs = [_cost(c) for c in self._chunks]
        self._index = 0
        self._budget = 0.0
        self._finished = False
        self._on_done = on_done

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def progress(self) -> float:
        if not self.text:
            return 1.0
        return len("".join(self._chunks[: self._index])) / len(self.text)

    def __iter__(self) -> Iterator[str]:
        return self

    def __next__(self) -> str:
        if self._finished:
            raise StopIteration
        self._budget += self._per_frame
        while self._index < len(self._chunks) and self._budget >= self._costs[self._index]:
            self._budget -= self._costs[self._index]
            self._index += 1
        if self._index >= len(self._chunks):
            self._finish()
            return self.text
        chunk = self._chunks[self._index]
        partial = int(self._budget / self._costs[self._index] * len(chunk))
        return "".join(self._chunks[: self._index]) + chunk[:partial]

    def _finish(self) -> None:
        self._finished = True
        if self._on_done is not None:
            self._on_done()


class AsyncTypewriterStream:
    """Async iterator version that sleeps one frame between values."""

    def __init__(
        self,
        text: str,
        *,
        chars_per_second: float = settings.typewriter_chars_per_second,
        frame_seconds: float = settings.typewriter_frame_seconds,
        on_done: Optional[DoneCallback] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._frames = TypewriterStream(
            text,
            chars_per_second=chars_per_second,
            frame_seconds=frame_seconds,
            on_done=on_done,
        )
        self._frame_seconds = frame_seconds
        self._sleep = sleep
        self._started = False

    def __aiter__(self) -> AsyncIterator[str]:
        return self

    async def __anext__(self) -> str:
        if self._frames.finished:
            raise StopAsyncIteration
        if self._started:
            await self._sleep(self._frame_seconds)
        self._started = True
        try:
            return next(self._frames)
        except StopIteration:
            raise StopAsyncIteration from None
