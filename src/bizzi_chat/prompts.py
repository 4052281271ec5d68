"""Curated quick prompts per dashboard module."""

from typing import Dict, List, Mapping, NamedTuple, Optional


class CuratedPrompt(NamedTuple):
    text: str
    pinned: bool = False


DEFAULT_MODULE = "bizzy"

CURATED: Dict[str, List[CuratedPrompt]] = {
    "bizzy": [
        CuratedPrompt("What are my top priorities this week?", pinned=True),
        CuratedPrompt("What’s changed in my business since last month?", pinned=True),
        CuratedPrompt("What are my top 3 risks right now?"),
    ],
    "accounting": [
        CuratedPrompt("How did I perform this month?", pinned=True),
        CuratedPrompt("Where is most of my profit coming from?", pinned=True),
        CuratedPrompt("What’s my top expense?"),
        CuratedPrompt("How has my cash flow changed since last month?"),
        CuratedPrompt("Do I have any clients behind on payment?"),
    ],
    "marketing": [
        CuratedPrompt("Which marketing channel brought in the most leads this month?", pinned=True),
        CuratedPrompt("How did my last email campaign perform?", pinned=True),
        CuratedPrompt("What content got the most engagement last week?"),
    ],
    "tax": [
        CuratedPrompt("Am I on track for estimated tax payments?", pinned=True),
        CuratedPrompt("What deductions am I missing?"),
        CuratedPrompt("How much should I save for taxes this month?"),
    ],
    "investments": [
        CuratedPrompt("How is my investment account performing?", pinned=True),
        CuratedPrompt("What’s my current asset allocation?", pinned=True),
        CuratedPrompt("Is my retirement plan on track?"),
    ],
    "calendar": [
        CuratedPrompt("What’s on my agenda tomorrow?", pinned=True),
        CuratedPrompt("Schedule a job review for Friday 9am"),
        CuratedPrompt("Add reminder to invoice the client next Monday"),
    ],
}

_ALIASES = {"financials": "accounting"}


def module_key(
    name: str = DEFAULT_MODULE,
    catalogue: Optional[Mapping[str, List[CuratedPrompt]]] = None,
) -> str:
    """Normalise a module name or route segment; unknown names map to the default."""
    key = str(name or DEFAULT_MODULE).strip().lower()
    key = _ALIASES.get(key, key)
    return key if key in (CURATED if catalogue is None else catalogue) else DEFAULT_MODULE
