"""Render-side state for one thread view session.

A single :class:`ThreadView` decides, for every render pass, the stable key
of each message, which (if any) message plays the one-time typing animation,
and whether the viewport should follow new content.

States::

    IDLE ──begin_open──▶ HYDRATING ──finish_open──▶ FOLLOWING ◀──┐
      │                                              │  ▲        │
      └──────────start_draft─────────────────────────┘  │   complete_animation
                                  gesture ▼             │        │
                                  MANUAL_SCROLL ──near bottom,   │
                                                  no animation   │
                         FOLLOWING ──fresh tail reply──▶ ANIMATING_TAIL

Only the tail assistant reply to a freshly submitted user message can
animate. Everything at or before the last user message, and everything that
was already on screen when a thread was opened, counts as animated.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Sequence, Set

from .config import Settings, settings as default_settings
from .exceptions import BizziError
from .keys import StableKeys, sort_messages
from .models import ChatMessage
from .types import Clock

PENDING_THREAD = "__pending__"


class ViewState(str, Enum):
    IDLE = "idle"
    HYDRATING = "hydrating"
    FOLLOWING = "following"
    MANUAL_SCROLL = "manual_scroll"
    ANIMATING_TAIL = "animating_tail"


class AnimationPhase(str, Enum):
    NOT_YET_SHOWN = "not-yet-shown"
    ANIMATING = "animating"
    ANIMATED = "animated"


_TRANSITIONS: Dict[ViewState, FrozenSet[ViewState]] = {
    ViewState.IDLE: frozenset({ViewState.HYDRATING, ViewState.FOLLOWING}),
    ViewState.HYDRATING: frozenset({ViewState.FOLLOWING, ViewState.IDLE}),
    ViewState.FOLLOWING: frozenset(
        {ViewState.HYDRATING, ViewState.MANUAL_SCROLL, ViewState.ANIMATING_TAIL, ViewState.IDLE}
    ),
    ViewState.MANUAL_SCROLL: frozenset({ViewState.FOLLOWING, ViewState.HYDRATING, ViewState.IDLE}),
    ViewState.ANIMATING_TAIL: frozenset(
        {ViewState.FOLLOWING, ViewState.MANUAL_SCROLL, ViewState.HYDRATING, ViewState.IDLE}
    ),
}


class InvalidTransition(BizziError):
    pass


@dataclass(frozen=True)
class RenderItem:
    key: str
    message: ChatMessage
    animate: bool
    phase: AnimationPhase


@dataclass(frozen=True)
class RenderPass:
    items: List[RenderItem]
    state: ViewState
    # "auto" jumps to the bottom, "smooth" follows new content, None leaves it.
    scroll: Optional[str] = None

    @property
    def keys(self) -> List[str]:
        return [item.key for item in self.items]

    @property
    def animating(self) -> Optional[RenderItem]:
        return next((item for item in self.items if item.animate), None)


class ThreadView:
    def __init__(self, *, settings: Optional[Settings] = None, clock: Clock = time.monotonic) -> None:
        self._settings = settings or default_settings
        self._clock = clock
        self._keys = StableKeys()
        self._animated: Set[str] = set()
        self._user_keys: Dict[str, str] = {}

        self.state = ViewState.IDLE
        self.thread_id: Optional[str] = None
        self._just_opened = False
        self._had_history = False
        self._fresh = False
        self._reopen_block_until = 0.0
        self._animating: Optional[str] = None
        self._pending_scroll: Optional[str] = None
        self._last_signature: Optional[tuple] = None
        self._distance = 0.0
        self._generating_since: Optional[float] = None

    # State machine
    def _transition(self, target: ViewState) -> None:
        if target is self.state:
            return
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"cannot move from {self.state.value} to {target.value}")
        self.state = target

    def _enter_thread(self, thread_id: str) -> None:
        self._finish_animation()
        self.thread_id = thread_id
        self._just_opened = True
        self._had_history = False
        self._fresh = False
        self._reopen_block_until = 0.0
        self._distance = 0.0
        self._pending_scroll = "auto"
        self._last_signature = None
        self._keys.forget()

    def begin_open(self, thread_id: str) -> None:
        """A thread is being (re)opened; nothing animates until :meth:`finish_open`."""
        self._enter_thread(thread_id or PENDING_THREAD)
        self._transition(ViewState.HYDRATING)

    def finish_open(self, messages: Sequence[ChatMessage]) -> None:
        """History has landed; treat all of it as already shown."""
        ordered = sort_messages(messages)
        keys = self._keys.keys_for(ordered)
        for message, key in zip(ordered, keys):
            if message.sender == "assistant":
                self._animated.add(key)
        self._had_history = any(m.sender == "assistant" for m in ordered)
        if _ends_with_reply(ordered):
            self._reopen_block_until = self._clock() + self._settings.reopen_block_seconds
        self._pending_scroll = "auto"
        self._transition(ViewState.FOLLOWING)

    def start_draft(self) -> None:
        """Start a new conversation that has no thread id yet."""
        self._enter_thread(PENDING_THREAD)
        self._transition(ViewState.FOLLOWING)

    def promote(self, thread_id: str) -> None:
        """The draft just received its backend id; this is still the same live chat."""
        if not thread_id or self.thread_id != PENDING_THREAD:
            return
        key = self._user_keys.pop(PENDING_THREAD, None)
        if key is not None:
            self._user_keys[thread_id] = key
        self.thread_id = thread_id

    def close(self) -> None:
        self._finish_animation()
        self.thread_id = None
        self._transition(ViewState.IDLE)

    def reset(self) -> None:
        """Forget everything, including which messages already animated."""
        self.close()
        self._keys = StableKeys()
        self._animated.clear()
        self._user_keys.clear()
        self._generating_since = None

    # Rendering
    @property
    def reopen_blocked(self) -> bool:
        return self._clock() < self._reopen_block_until

    def phase(self, key: str) -> AnimationPhase:
        if key == self._animating:
            return AnimationPhase.ANIMATING
        if key in self._animated:
            return AnimationPhase.ANIMATED
        return AnimationPhase.NOT_YET_SHOWN

    def render(self, messages: Sequence[ChatMessage]) -> RenderPass:
        if self.state is ViewState.IDLE:
            self.start_draft()

        ordered = sort_messages(messages)
        keys = self._keys.keys_for(ordered)
        last_user = _last_index(ordered, "user")
        tail = _last_index(ordered, "assistant")

        for index in range(last_user + 1):
            if ordered[index].sender == "assistant":
                self._animated.add(keys[index])

        tail_key = keys[tail] if tail >= 0 else None
        if self._animating is not None and self._animating != tail_key:
            self._finish_animation()

        if self.state is not ViewState.HYDRATING:
            self._detect_fresh(keys[last_user] if last_user >= 0 else None)

        if tail_key is not None and tail > last_user:
            self._maybe_animate(tail_key)

        items = [
            RenderItem(key=key, message=message, animate=key == self._animating, phase=self.phase(key))
            for message, key in zip(ordered, keys)
        ]
        return RenderPass(items=items, state=self.state, scroll=self._scroll_instruction(keys))

    def _detect_fresh(self, user_key: Optional[str]) -> None:
        thread = self.thread_id or PENDING_THREAD
        just_opened, self._just_opened = self._just_opened, False
        if user_key is None or self._user_keys.get(thread) == user_key:
            return
        self._user_keys[thread] = user_key
        if just_opened and self._had_history:
            # First look at an existing conversation, not a live submission.
            return
        self._fresh = True

    def _maybe_animate(self, tail_key: str) -> None:
        if (
            self._animating is not None
            or tail_key in self._animated
            or self.state is ViewState.HYDRATING
            or not self._fresh
        ):
            return
        if self.reopen_blocked:
            self._animated.add(tail_key)
            return
        self._animating = tail_key
        if self.state is ViewState.FOLLOWING:
            self._transition(ViewState.ANIMATING_TAIL)

    def complete_animation(self, key: str) -> None:
        """The reveal of ``key`` finished; it never animates again this session."""
        self._animated.add(key)
        if key == self._animating:
            self._finish_animation()

    def _finish_animation(self) -> None:
        if self._animating is not None:
            self._animated.add(self._animating)
            self._animating = None
            self._fresh = False
        if self.state is ViewState.ANIMATING_TAIL:
            self._transition(ViewState.FOLLOWING)

    @property
    def is_animating(self) -> bool:
        return self._animating is not None

    # Scrolling
    @property
    def auto_follow(self) -> bool:
        return self.state in (ViewState.FOLLOWING, ViewState.ANIMATING_TAIL)

    @property
    def show_scroll_button(self) -> bool:
        return self._distance > self._settings.scroll_button_threshold_px

    def on_user_gesture(self) -> None:
        """Wheel or touch input: the user takes control wherever the viewport is."""
        if self.state in (ViewState.FOLLOWING, ViewState.ANIMATING_TAIL):
            self._transition(ViewState.MANUAL_SCROLL)

    def on_scroll(self, distance_from_bottom: float) -> None:
        self._distance = max(float(distance_from_bottom), 0.0)
        if (
            self.state is ViewState.MANUAL_SCROLL
            and self._distance <= self._settings.follow_threshold_px
            and self._animating is None
        ):
            self._transition(ViewState.FOLLOWING)

    def _scroll_instruction(self, keys: List[str]) -> Optional[str]:
        signature = (len(keys), keys[-1] if keys else None)
        changed = signature != self._last_signature
        self._last_signature = signature
        if self.state is ViewState.HYDRATING:
            return None
        if self._pending_scroll is not None:
            instruction, self._pending_scroll = self._pending_scroll, None
            return instruction
        if changed and self.auto_follow:
            return "smooth"
        return None

    def typing_indicator_visible(self, is_generating: bool) -> bool:
        """Typing dots only show once generation has run for a short delay."""
        if not is_generating:
            self._generating_since = None
            return False
        now = self._clock()
        if self._generating_since is None:
            self._generating_since = now
        return now - self._generating_since >= self._settings.typing_indicator_delay_seconds


def _last_index(ordered: Sequence[ChatMessage], sender: str) -> int:
    for index in range(len(ordered) - 1, -1, -1):
        if ordered[index].sender == sender:
            return index
    return -1


def _ends_with_reply(ordered: Sequence[ChatMessage]) -> bool:
    tail = _last_index(ordered, "assistant")
    return tail >= 0 and tail > _last_index(ordered, "user")
