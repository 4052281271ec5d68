from __future__ import annotations

import uuid
from types import TracebackType
from typing import Any, Dict, List, Optional

import httpx

from .config import settings
from .exceptions import BizziError
from .models import GenerateRequest, GenerateResponse, PromptUsageEvent, PromptUsageRow
from .sync_client import (
    CHATS_PATH,
    DEFAULT_BASE_URL,
    GENERATE_ALIAS_PATH,
    GENERATE_PATH,
    _generate_payload,
    _headers,
    _thread_path,
)
from .threads import (
    AutoTitleResponse,
    ThreadDetailResponse,
    ThreadListResponse,
    ThreadPatch,
)
from .types import ResponseHook
from .utils import extract_error_message, parse_json_response, query_params, validate_model

PROMPT_USAGE_PATH = "/api/prompts/usage"
QUERY_USAGE_PATH = "/api/gpt/usage"

MOCK_REPLY = "This is a mock reply from Bizzi. Connect a backend to get real answers."


class AsyncBizziClient:
    """Asynchronous Bizzi client."""

    def __init__(
        self,
        *,
        user_id: Optional[str] = None,
        business_id: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = settings.timeout,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        response_hook: Optional[ResponseHook] = None,
        mock_mode: bool = False,
    ) -> None:
        self._mock_mode = mock_mode
        self._mock_threads: Dict[str, List[Dict[str, Any]]] = {}

        self.user_id = user_id
        self.business_id = business_id
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = (
            httpx.AsyncClient(timeout=timeout, transport=transport) if not mock_mode else None
        )
        self._response_hook = response_hook

    async def __aenter__(self) -> "AsyncBizziClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()

    def _mock_response(
        self,
        method: str,
        endpoint: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Generate mock responses for development without a backend."""
        if method == "POST" and endpoint in (GENERATE_PATH, GENERATE_ALIAS_PATH):
            body = json or {}
            thread_id = body.get("thread_id") or f"mock-{uuid.uuid4().hex[:8]}"
            history = self._mock_threads.setdefault(thread_id, [])
            history.append({"role": "user", "content": body.get("message", "")})
            history.append({"role": "assistant", "content": MOCK_REPLY})
            return {"responseText": MOCK_REPLY, "meta": {"thread_id": thread_id}}

        if method == "GET" and endpoint == CHATS_PATH:
            return {"threads": [], "total": 0}

        if method == "GET" and endpoint.startswith(f"{CHATS_PATH}/"):
            thread_id = endpoint.split("/")[-1]
            return {
                "thread": {"id": thread_id, "title": "Untitled"},
                "messages": list(self._mock_threads.get(thread_id, [])),
            }

        if method == "GET" and endpoint == PROMPT_USAGE_PATH:
            return {"usage": []}

        if method == "GET" and endpoint == QUERY_USAGE_PATH:
            return {"query_count": 0}

        return {"ok": True}

    async def _request(
        self,
        method: str,
        endpoint: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        business_id: Optional[str] = None,
    ) -> Any:
        if self._mock_mode:
            return self._mock_response(method, endpoint, json)

        url = f"{self._base_url}{endpoint}"
        try:
            response = await self._client.request(
                method=method,
                url=url,
                json=json,
                params=params,
                headers=_headers(self.user_id, business_id or self.business_id, headers),
                timeout=self._timeout,
            )
            if self._response_hook:
                self._response_hook(response)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise BizziError("Request timeout") from exc
        except httpx.HTTPStatusError as exc:
            message = extract_error_message(exc.response)
            raise BizziError(message, status_code=exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            raise BizziError(f"Network error: {exc}") from exc
        return parse_json_response(response)

    async def generate(self, request: GenerateRequest) -> GenerateResponse:
        """Ask the assistant for a reply, falling back to the legacy route on 404."""
        payload = _generate_payload(request)
        headers = {"x-bizzy-depth": request.opts.depth}
        try:
            data = await self._request(
                "POST", GENERATE_PATH, json=payload, headers=headers, business_id=request.business_id
            )
        except BizziError as exc:
            if exc.status_code != 404:
                raise
            data = await self._request(
                "POST", GENERATE_ALIAS_PATH, json=payload, headers=headers, business_id=request.business_id
            )
        return validate_model(GenerateResponse, data)

    # Thread methods
    async def list_threads(
        self,
        business_id: str,
        *,
        limit: int = 20,
        offset: int = 0,
        before: Optional[str] = None,
        q: Optional[str] = None,
    ) -> ThreadListResponse:
        """List conversation threads for a business."""
        params = query_params(business_id=business_id, limit=limit, offset=offset, before=before, q=q)
        data = await self._request("GET", CHATS_PATH, params=params, business_id=business_id)
        return validate_model(ThreadListResponse, data)

    async def get_thread(
        self,
        thread_id: str,
        *,
        limit: int = settings.thread_history_limit,
    ) -> ThreadDetailResponse:
        """Get a thread and its message history."""
        data = await self._request("GET", _thread_path(thread_id), params={"limit": limit})
        return validate_model(ThreadDetailResponse, data)

    async def update_thread(self, thread_id: str, patch: ThreadPatch) -> None:
        """Rename, pin or archive a thread."""
        await self._request(
            "PATCH", _thread_path(thread_id), json=patch.model_dump(exclude_none=True)
        )

    async def delete_thread(self, thread_id: str) -> None:
        """Delete a thread by ID."""
        await self._request("DELETE", _thread_path(thread_id))

    async def auto_title(self, thread_id: str) -> AutoTitleResponse:
        """Ask the backend to generate a concise title for a thread."""
        data = await self._request("POST", f"{_thread_path(thread_id)}/auto-title")
        return validate_model(AutoTitleResponse, data)

    # Usage methods
    async def fetch_prompt_usage(
        self,
        user_id: str,
        module: str,
        *,
        limit: int = 200,
    ) -> List[PromptUsageRow]:
        """Most recent quick prompt uses for a user within one module."""
        params = query_params(user_id=user_id, module=module, limit=limit)
        data = await self._request("GET", PROMPT_USAGE_PATH, params=params)
        rows = (data or {}).get("usage") if isinstance(data, dict) else None
        if not isinstance(rows, list):
            raise BizziError("Unexpected server response. Please try again.")
        return [validate_model(PromptUsageRow, row) for row in rows]

    async def record_prompt_usage(self, event: PromptUsageEvent) -> None:
        """Insert one quick prompt usage row."""
        await self._request(
            "POST",
            PROMPT_USAGE_PATH,
            json=event.model_dump(mode="json"),
            business_id=event.business_id,
        )

    async def fetch_usage_count(self, user_id: str, month: str) -> int:
        """Number of assistant queries the user made in ``month`` (``YYYY-MM``)."""
        data = await self._request(
            "GET", QUERY_USAGE_PATH, params=query_params(user_id=user_id, month=month)
        )
        if not isinstance(data, dict):
            return 0
        return int(data.get("query_count") or 0)
