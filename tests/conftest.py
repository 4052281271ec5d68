import inspect
from typing import Any, Callable, Dict, List, Tuple, Union

import httpx
import pytest

from bizzi_chat import AsyncBizziClient, MemoryStorage, Settings

Route = Union[Dict[str, Any], httpx.Response, Callable[[httpx.Request], Any]]


class FakeBackend:
    """Route table for ``httpx.MockTransport``; unknown routes answer 404."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], Route] = {
            ("GET", "/api/gpt/usage"): {"query_count": 3},
        }

    def on(self, method: str, path: str, response: Route) -> None:
        self.routes[(method, path)] = response

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": "Not found"})
        result = route(request) if callable(route) else route
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json=result)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for ``asyncio.sleep`` without waiting."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def test_settings():
    return Settings(_env_file=None, base_url="http://bizzi.test")


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(backend, test_settings):
    return AsyncBizziClient(
        user_id="user-1",
        business_id="biz-1",
        base_url=test_settings.base_url,
        transport=httpx.MockTransport(backend),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def storage():
    return MemoryStorage()
