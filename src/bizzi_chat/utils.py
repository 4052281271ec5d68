"""Utility helpers for the Bizzi chat SDK."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .exceptions import BizziError
from .types import Sleep

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

UNEXPECTED_RESPONSE = "Unexpected server response. Please try again."

_WHITESPACE = re.compile(r"\s+")


def extract_error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:200] if text else f"HTTP {response.status_code}"
    if isinstance(data, dict):
        for field in ("error", "message", "detail"):
            value = data.get(field)
            if isinstance(value, str) and value:
                return value
    return f"HTTP {response.status_code}"


def parse_json_response(response: httpx.Response) -> Any:
    """Decode a JSON body, rejecting non-JSON content types."""
    if response.status_code == 204 or not response.content:
        return None
    content_type = response.headers.get("content-type", "")
    if "application/json" not in content_type:
        raise BizziError(UNEXPECTED_RESPONSE, status_code=response.status_code)
    try:
        return response.json()
    except ValueError as exc:
        raise BizziError(UNEXPECTED_RESPONSE, status_code=response.status_code) from exc


def normalize_text(text: Optional[str]) -> str:
    """Collapse whitespace, trim and lower-case for loose text comparison."""
    return _WHITESPACE.sub(" ", text or "").strip().lower()


async def retry(
    fn: Callable[[], Awaitable[T]],
    delays: Sequence[float],
    *,
    sleep: Sleep = asyncio.sleep,
) -> Optional[T]:
    """Call ``fn`` after each delay until it succeeds.

    Returns the first successful result, or ``None`` once every attempt has
    failed with a :class:`BizziError`.
    """
    for attempt, delay in enumerate(delays, start=1):
        await sleep(delay)
        try:
            return await fn()
        except BizziError as exc:
            logger.debug("attempt %d/%d failed: %s", attempt, len(delays), exc)
    return None


def validate_model(model: Type[M], data: Any) -> M:
    """Validate a decoded payload, mapping shape errors onto :class:`BizziError`."""
    try:
        return model.model_validate(data if data is not None else {})
    except ValidationError as exc:
        raise BizziError(UNEXPECTED_RESPONSE) from exc


def query_params(**params: Any) -> Dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None and value != ""}
