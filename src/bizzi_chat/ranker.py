"""Quick prompt ranking: curated prompts blended with personal usage.

Each historical prompt scores ``ln(count + 1) + exp(-days / decay)``, so
frequency has diminishing returns and recency fades over about two weeks.
Pinned curated prompts always lead, in catalogue order. Curated prompts the
user has never tried get an exploration score with a little jitter so the
same suggestions do not stick forever. Results are cached per user and
module for a few hours.
"""

from __future__ import annotations

import logging
import math
import random
import time
from datetime import datetime, timezone
from typing import Dict, List, Mapping, NamedTuple, Optional, Sequence

from .async_client import AsyncBizziClient
from .config import Settings, settings as default_settings
from .exceptions import BizziError
from .models import PromptUsageEvent, PromptUsageRow, QuickPrompt
from .prompts import CURATED, DEFAULT_MODULE, CuratedPrompt, module_key
from .storage import KeyValueStorage, MemoryStorage
from .types import Clock

logger = logging.getLogger(__name__)

CACHE_PREFIX = "qp:v1"


class UsageStat(NamedTuple):
    text: str
    count: int
    last_used_at: Optional[float]  # epoch seconds


def cache_key(user_id: str, module: str) -> str:
    return f"{CACHE_PREFIX}:{user_id}:{module}"


def aggregate_usage(rows: Sequence[PromptUsageRow]) -> List[UsageStat]:
    """Count uses per trimmed prompt text and keep the latest use time."""
    counts: Dict[str, int] = {}
    latest: Dict[str, Optional[float]] = {}
    for row in rows:
        text = (row.prompt_text or "").strip()
        if not text:
            continue
        used_at = _epoch(row.used_at)
        counts[text] = counts.get(text, 0) + 1
        previous = latest.get(text)
        if previous is None or (used_at is not None and used_at > previous):
            latest[text] = used_at
    return [UsageStat(text, counts[text], latest[text]) for text in counts]


def _epoch(value: Optional[datetime]) -> Optional[float]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


class QuickPromptRanker:
    def __init__(
        self,
        client: AsyncBizziClient,
        storage: Optional[KeyValueStorage] = None,
        *,
        curated: Optional[Mapping[str, List[CuratedPrompt]]] = None,
        settings: Optional[Settings] = None,
        clock: Clock = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._client = client
        self._storage = storage if storage is not None else MemoryStorage()
        self._curated = CURATED if curated is None else curated
        self._settings = settings or default_settings
        self._clock = clock
        self._rng = rng or random.Random()

    def score_usage(self, stat: UsageStat, now: float) -> float:
        used_at = now if stat.last_used_at is None else stat.last_used_at
        days = max((now - used_at) / 86400.0, 0.0)
        return math.log(stat.count + 1) + math.exp(-days / self._settings.recency_decay_days)

    def rank(self, module: str, usage: Sequence[UsageStat], limit: int) -> List[QuickPrompt]:
        """Merge pinned, usage and exploration candidates into at most ``limit`` prompts."""
        now = self._clock()
        key = module_key(module, self._curated)
        base = self._curated.get(key) or self._curated.get(DEFAULT_MODULE, [])
        s = self._settings

        pinned = [QuickPrompt(text=p.text, source="pinned", score=s.pinned_score) for p in base if p.pinned]
        pinned_texts = {p.text for p in pinned}

        ordered_usage = sorted(usage, key=lambda u: self.score_usage(u, now), reverse=True)
        usage_prompts = [
            QuickPrompt(text=u.text, source="usage", score=self.score_usage(u, now))
            for u in ordered_usage
            if u.text not in pinned_texts
        ]

        used = {u.text for u in usage}
        exploration = [
            QuickPrompt(
                text=p.text,
                source="explore",
                score=s.exploration_base_score + self._rng.random() * s.exploration_jitter,
            )
            for p in base
            if not p.pinned and p.text not in used
        ]

        best: Dict[str, QuickPrompt] = {}
        for candidate in [*pinned, *usage_prompts, *exploration]:
            current = best.get(candidate.text)
            if current is None or candidate.score > current.score:
                best[candidate.text] = candidate

        rest = [p for p in best.values() if p.text not in pinned_texts]
        rest.sort(key=lambda p: p.score, reverse=True)
        return [*pinned, *rest][: max(limit, 0)]

    async def get_quick_prompts(
        self,
        user_id: str,
        module: str,
        *,
        limit: Optional[int] = None,
        ttl_hours: Optional[float] = None,
    ) -> List[QuickPrompt]:
        """Ranked prompts for ``module``, served from cache while fresh."""
        limit = self._settings.quick_prompt_max if limit is None else limit
        ttl_hours = self._settings.quick_prompt_ttl_hours if ttl_hours is None else ttl_hours
        key = module_key(module, self._curated)
        ck = cache_key(user_id, key)

        cached = self._read_cache(ck)
        if cached is not None:
            logger.debug("quick prompt cache hit for %s", ck)
            return cached[:limit]

        usage: List[UsageStat] = []
        try:
            usage = aggregate_usage(await self._client.fetch_prompt_usage(user_id, key))
        except BizziError as exc:
            logger.debug("usage unavailable for %s/%s: %s", user_id, key, exc)

        prompts = self.rank(key, usage, limit)
        self._storage.set(
            ck,
            {
                "exp": (self._clock() + ttl_hours * 3600) * 1000,
                "prompts": [p.model_dump() for p in prompts],
            },
        )
        return prompts

    def _read_cache(self, ck: str) -> Optional[List[QuickPrompt]]:
        entry = self._storage.get(ck)
        if not isinstance(entry, dict):
            return None
        try:
            if self._clock() * 1000 >= float(entry.get("exp") or 0):
                return None
            return [QuickPrompt.model_validate(p) for p in entry["prompts"]]
        except (KeyError, TypeError, ValueError):
            logger.debug("ignoring corrupt cache entry %s", ck)
            return None

    def clear_cache(self, user_id: Optional[str] = None) -> None:
        prefix = f"{CACHE_PREFIX}:{user_id}:" if user_id else f"{CACHE_PREFIX}:"
        for key in list(self._storage.keys(prefix)):
            self._storage.remove(key)

    async def record_usage(
        self,
        user_id: str,
        module: str,
        prompt_text: str,
        *,
        business_id: Optional[str] = None,
    ) -> None:
        """Best-effort usage telemetry; failures never reach the caller."""
        if not user_id or not prompt_text.strip():
            return
        event = PromptUsageEvent(
            user_id=user_id,
            business_id=business_id,
            module=module_key(module, self._curated),
            prompt_text=prompt_text.strip(),
        )
        try:
            await self._client.record_prompt_usage(event)
        except BizziError as exc:
            logger.debug("dropping prompt usage event: %s", exc)
