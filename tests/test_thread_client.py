import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from bizzi_chat import MessageStore, ThreadClient
from bizzi_chat.thread_client import LIST_ERROR, is_placeholder_title

EPOCH = datetime(2024, 6, 1, tzinfo=timezone.utc)


def thread_row(index, **extra):
    row = {
        "id": f"t-{index}",
        "title": f"Chat {index}",
        "updated_at": (EPOCH - timedelta(hours=index)).isoformat(),
    }
    row.update(extra)
    return row


def paged(total):
    def handler(request):
        offset = int(request.url.params.get("offset", 0))
        limit = int(request.url.params["limit"])
        rows = [thread_row(i) for i in range(offset, min(offset + limit, total))]
        return {"threads": rows, "total": total}

    return handler


def make_threads(client, settings, sleep=None):
    store = MessageStore(client, settings=settings)
    kwargs = {"sleep": sleep} if sleep is not None else {}
    return ThreadClient(client, store, business_id="biz-1", settings=settings, **kwargs), store


@pytest.mark.asyncio
async def test_first_page_then_load_more_with_before_cursor(backend, client, test_settings):
    backend.on("GET", "/api/chats", paged(25))
    threads, _ = make_threads(client, test_settings)

    page = await threads.list()
    assert len(page.threads) == 20
    assert page.has_more is True
    cursor = threads.threads[-1].updated_at.isoformat()

    page = await threads.load_more()

    second = backend.calls("GET", "/api/chats")[1].url.params
    assert second["limit"] == "10"
    assert second["offset"] == "20"
    assert second["before"] == cursor
    assert len(page.threads) == 25
    assert page.has_more is False
    assert len({t.id for t in threads.threads}) == 25


@pytest.mark.asyncio
async def test_list_stops_at_soft_cap(backend, client, test_settings):
    backend.on("GET", "/api/chats", paged(500))
    threads, _ = make_threads(client, test_settings)

    await threads.refresh()
    for _ in range(20):
        await threads.load_more()

    assert len(threads.threads) == 100
    assert threads.has_more is False
    requested = sum(int(r.url.params["limit"]) for r in backend.calls("GET", "/api/chats"))
    assert requested == 100


@pytest.mark.asyncio
async def test_overlapping_pages_are_merged_without_duplicates(backend, client, test_settings):
    pages = [
        {"threads": [thread_row(i) for i in range(20)]},
        {"threads": [thread_row(i) for i in range(15, 25)]},
    ]
    backend.on("GET", "/api/chats", lambda request: pages.pop(0))
    threads, _ = make_threads(client, test_settings)

    await threads.list()
    await threads.load_more()

    assert [t.id for t in threads.threads] == [f"t-{i}" for i in range(25)]


@pytest.mark.asyncio
async def test_empty_page_without_total_stops_paging(backend, client, test_settings):
    pages = [{"threads": [thread_row(i) for i in range(20)]}, {"threads": []}]
    backend.on("GET", "/api/chats", lambda request: pages.pop(0))
    threads, _ = make_threads(client, test_settings)

    await threads.list()
    assert threads.has_more is True
    await threads.load_more()

    assert threads.total == 20
    assert threads.has_more is False


@pytest.mark.asyncio
async def test_list_failure_sets_error(backend, client, test_settings):
    backend.on("GET", "/api/chats", httpx.Response(500, json={"error": "db down"}))
    threads, _ = make_threads(client, test_settings)

    page = await threads.list()

    assert page.threads == []
    assert threads.error == LIST_ERROR
    assert threads.loading is False


@pytest.mark.asyncio
async def test_search_query_is_debounced(backend, client, test_settings, sleep):
    backend.on("GET", "/api/chats", {"threads": [thread_row(1)], "total": 1})
    threads, _ = make_threads(client, test_settings, sleep)

    threads.set_query("pay")
    task = threads.set_query("  payroll ")
    await task

    calls = backend.calls("GET", "/api/chats")
    assert [c.url.params["q"] for c in calls] == ["payroll"]
    assert sleep.delays == [test_settings.search_debounce_seconds]


@pytest.mark.asyncio
async def test_pin_reorders_and_rolls_back_on_failure(backend, client, test_settings):
    backend.on("GET", "/api/chats", {"threads": [thread_row(i) for i in range(3)], "total": 3})
    threads, _ = make_threads(client, test_settings)
    await threads.list()

    backend.on("PATCH", "/api/chats/t-2", {"ok": True})
    assert await threads.pin("t-2", True) is True
    assert threads.threads[0].id == "t-2"
    assert threads.threads[0].pinned is True

    before = list(threads.threads)
    backend.on("PATCH", "/api/chats/t-1", httpx.Response(500, json={"error": "nope"}))
    assert await threads.archive("t-1") is False
    assert threads.threads == before


@pytest.mark.asyncio
async def test_rename_trims_and_defaults_to_untitled(backend, client, test_settings):
    backend.on("GET", "/api/chats", {"threads": [thread_row(1)], "total": 1})
    backend.on("PATCH", "/api/chats/t-1", {"ok": True})
    threads, _ = make_threads(client, test_settings)
    await threads.list()

    await threads.rename("t-1", "  Q2 taxes ")
    await threads.rename("t-1", "   ")

    sent = [json.loads(r.content) for r in backend.calls("PATCH", "/api/chats/t-1")]
    assert sent == [{"title": "Q2 taxes"}, {"title": "Untitled"}]
    assert threads.threads[0].title == "Untitled"


@pytest.mark.asyncio
async def test_delete_is_optimistic_with_rollback(backend, client, test_settings):
    backend.on("GET", "/api/chats", {"threads": [thread_row(i) for i in range(3)], "total": 3})
    threads, _ = make_threads(client, test_settings)
    await threads.list()

    backend.on("DELETE", "/api/chats/t-0", httpx.Response(500, json={"error": "locked"}))
    assert await threads.delete("t-0") is False
    assert [t.id for t in threads.threads] == ["t-0", "t-1", "t-2"]

    backend.on("DELETE", "/api/chats/t-0", {"ok": True})
    assert await threads.delete("t-0") is True
    assert [t.id for t in threads.threads] == ["t-1", "t-2"]
    assert threads.total == 2


@pytest.mark.asyncio
async def test_open_hydrates_store(backend, client, test_settings):
    backend.on(
        "GET",
        "/api/chats/t-1",
        {
            "thread": {"id": "t-1", "title": "Cash"},
            "messages": [
                {"id": 1, "role": "user", "content": "How is cash?"},
                {"id": 2, "role": "assistant", "content": "Healthy."},
            ],
        },
    )
    threads, store = make_threads(client, test_settings)

    thread = await threads.open("t-1")

    assert thread.title == "Cash"
    assert [(m.sender, m.text) for m in store.messages] == [("user", "How is cash?"), ("assistant", "Healthy.")]
    assert backend.calls("GET", "/api/chats/t-1")[0].url.params["limit"] == "200"
    assert threads.is_fetching is False


@pytest.mark.asyncio
async def test_opening_a_second_thread_discards_the_first(backend, client, test_settings):
    gate = asyncio.Event()

    async def slow_a(request):
        await gate.wait()
        return {"thread": {"id": "A"}, "messages": [{"id": 1, "role": "user", "content": "from A"}]}

    backend.on("GET", "/api/chats/A", slow_a)
    backend.on("GET", "/api/chats/B", {"thread": {"id": "B"}, "messages": [{"id": 2, "role": "user", "content": "from B"}]})
    threads, store = make_threads(client, test_settings)

    first = asyncio.ensure_future(threads.open("A"))
    await asyncio.sleep(0)
    second = await threads.open("B")
    gate.set()
    result_a = await first

    assert result_a is None
    assert second.id == "B"
    assert [m.text for m in store.messages] == ["from B"]
    assert threads.is_fetching is False


@pytest.mark.asyncio
async def test_open_failure_leaves_an_empty_store(backend, client, test_settings):
    threads, store = make_threads(client, test_settings)
    store.hydrate([])

    assert await threads.open("missing") is None
    assert store.messages == []


@pytest.mark.asyncio
async def test_auto_title_retries_with_backoff(backend, client, test_settings, sleep):
    backend.on("GET", "/api/chats", {"threads": [thread_row(1, title="Untitled")], "total": 1})
    backend.on("GET", "/api/chats/t-1", {"thread": {"id": "t-1", "title": None}, "messages": []})
    responses = [
        httpx.Response(502, json={"error": "busy"}),
        httpx.Response(502, json={"error": "busy"}),
        {"ok": True, "title": "Top expenses in May"},
    ]
    backend.on("POST", "/api/chats/t-1/auto-title", lambda request: responses.pop(0))
    threads, _ = make_threads(client, test_settings, sleep)
    await threads.list()

    title = await threads.auto_title("t-1")

    assert title == "Top expenses in May"
    assert sleep.delays == [0.4, 0.9, 1.5]
    assert threads.threads[0].title == "Top expenses in May"


@pytest.mark.asyncio
async def test_auto_title_skips_real_titles_and_gives_up_quietly(backend, client, test_settings, sleep):
    backend.on("GET", "/api/chats/named", {"thread": {"id": "named", "title": "Payroll review"}})
    backend.on("GET", "/api/chats/fresh", {"thread": {"id": "fresh", "title": "User inquiry about taxes"}})
    backend.on("POST", "/api/chats/fresh/auto-title", httpx.Response(500, json={"error": "busy"}))
    threads, _ = make_threads(client, test_settings, sleep)

    assert await threads.auto_title("named") is None
    assert backend.calls("POST", "/api/chats/named/auto-title") == []

    assert await threads.auto_title("fresh") is None
    assert len(backend.calls("POST", "/api/chats/fresh/auto-title")) == 3


def test_placeholder_titles():
    assert is_placeholder_title(None)
    assert is_placeholder_title("Untitled")
    assert is_placeholder_title("weekly priorities for June")
    assert not is_placeholder_title("Untitled draft")
    assert not is_placeholder_title("Payroll review")
