"""Callback and clock type aliases shared across the SDK."""

from typing import Any, Awaitable, Callable, List

import httpx

ResponseHook = Callable[[httpx.Response], None]

# Seconds, monotonic for view timers and wall-clock for cache expiry.
Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]

ThreadCreatedCallback = Callable[[str], Any]
ActionsCallback = Callable[[List[Any]], None]
DoneCallback = Callable[[], None]
