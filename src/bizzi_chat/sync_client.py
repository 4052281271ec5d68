from __future__ import annotations

from types import TracebackType
from typing import Any, Dict, Optional

import httpx

from .config import settings
from .exceptions import BizziError
from .models import GenerateRequest, GenerateResponse
from .threads import ThreadDetailResponse, ThreadListResponse, ThreadPatch
from .types import ResponseHook
from .utils import extract_error_message, parse_json_response, query_params, validate_model

DEFAULT_BASE_URL = settings.base_url

GENERATE_PATH = "/api/gpt/generate"
# Older deployments only expose the legacy route.
GENERATE_ALIAS_PATH = "/api/gpt/generate-response"
CHATS_PATH = "/api/chats"


def _headers(
    user_id: Optional[str],
    business_id: Optional[str],
    extra: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "x-user-id": user_id or "",
        "x-business-id": business_id or "",
    }
    if extra:
        headers.update(extra)
    return headers


def _generate_payload(request: GenerateRequest) -> Dict[str, Any]:
    if not request.message:
        raise BizziError("Message must be a non-empty string")
    return request.model_dump(mode="json")


def _thread_path(thread_id: str) -> str:
    if not str(thread_id).strip():
        raise BizziError("Thread ID must be a non-empty string")
    return f"{CHATS_PATH}/{thread_id}"


class BizziClient:
    """Synchronous Bizzi client for the assistant and thread backends."""

    def __init__(
        self,
        *,
        user_id: Optional[str] = None,
        business_id: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = settings.timeout,
        transport: Optional[httpx.BaseTransport] = None,
        response_hook: Optional[ResponseHook] = None,
    ) -> None:
        self.user_id = user_id
        self.business_id = business_id
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = httpx.Client(timeout=timeout, transport=transport)
        self._response_hook = response_hook

    def __enter__(self) -> "BizziClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        endpoint: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        business_id: Optional[str] = None,
    ) -> Any:
        url = f"{self._base_url}{endpoint}"
        try:
            response = self._client.request(
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

    def generate(self, request: GenerateRequest) -> GenerateResponse:
        """Ask the assistant for a reply, falling back to the legacy route on 404."""
        payload = _generate_payload(request)
        headers = {"x-bizzy-depth": request.opts.depth}
        try:
            data = self._request(
                "POST", GENERATE_PATH, json=payload, headers=headers, business_id=request.business_id
            )
        except BizziError as exc:
            if exc.status_code != 404:
                raise
            data = self._request(
                "POST", GENERATE_ALIAS_PATH, json=payload, headers=headers, business_id=request.business_id
            )
        return validate_model(GenerateResponse, data)

    def list_threads(
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
        data = self._request("GET", CHATS_PATH, params=params, business_id=business_id)
        return validate_model(ThreadListResponse, data)

    def get_thread(self, thread_id: str, *, limit: int = settings.thread_history_limit) -> ThreadDetailResponse:
        """Get a thread and its message history."""
        data = self._request("GET", _thread_path(thread_id), params={"limit": limit})
        return validate_model(ThreadDetailResponse, data)

    def update_thread(self, thread_id: str, patch: ThreadPatch) -> None:
        """Rename, pin or archive a thread."""
        self._request("PATCH", _thread_path(thread_id), json=patch.model_dump(exclude_none=True))

    def delete_thread(self, thread_id: str) -> None:
        """Delete a thread by ID."""
        self._request("DELETE", _thread_path(thread_id))
