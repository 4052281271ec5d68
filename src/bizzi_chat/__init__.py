"""Bizzi chat Python SDK."""

from importlib.metadata import version

from .async_client import AsyncBizziClient
from .config import Settings, configure_logging, settings
from .coordinator import ChatCoordinator
from .exceptions import BizziError
from .keys import StableKeys, derive_stable_key, sort_messages
from .models import (
    ChatMessage,
    Clarify,
    ConfirmedMessage,
    GenerateRequest,
    GenerateResponse,
    Message,
    PendingMessage,
    PromptUsageEvent,
    PromptUsageRow,
    QuickPrompt,
    SuggestedAction,
)
from .prompts import CURATED, CuratedPrompt, module_key
from .ranker import QuickPromptRanker
from .storage import JsonFileStorage, KeyValueStorage, MemoryStorage
from .store import MessageStore
from .streams import AsyncTypewriterStream, TypewriterStream
from .suppression import SeedSuppressor, SuppressionState
from .sync_client import BizziClient
from .thread_client import ThreadClient
from .threads import (
    Thread,
    ThreadDetailResponse,
    ThreadListResponse,
    ThreadMessage,
    ThreadPage,
    ThreadPatch,
)
from .view import AnimationPhase, RenderItem, RenderPass, ThreadView, ViewState

__version__ = version("bizzi-chat")

__all__ = [
    "BizziClient",
    "AsyncBizziClient",
    "BizziError",
    "Settings",
    "settings",
    "configure_logging",
    # Messages
    "ChatMessage",
    "Message",
    "PendingMessage",
    "ConfirmedMessage",
    "Clarify",
    "SuggestedAction",
    "GenerateRequest",
    "GenerateResponse",
    "MessageStore",
    # Thread types
    "Thread",
    "ThreadMessage",
    "ThreadListResponse",
    "ThreadDetailResponse",
    "ThreadPatch",
    "ThreadPage",
    "ThreadClient",
    # Quick prompts
    "CURATED",
    "CuratedPrompt",
    "module_key",
    "PromptUsageRow",
    "PromptUsageEvent",
    "QuickPrompt",
    "QuickPromptRanker",
    # Rendering
    "sort_messages",
    "derive_stable_key",
    "StableKeys",
    "TypewriterStream",
    "AsyncTypewriterStream",
    "ThreadView",
    "ViewState",
    "AnimationPhase",
    "RenderItem",
    "RenderPass",
    # Coordination
    "ChatCoordinator",
    "SeedSuppressor",
    "SuppressionState",
    "KeyValueStorage",
    "MemoryStorage",
    "JsonFileStorage",
    "__version__",
]
