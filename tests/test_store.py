import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from bizzi_chat import ConfirmedMessage, MessageStore, PendingMessage
from bizzi_chat.store import NO_RESPONSE_TEXT


def reply(text="Payroll, at $12,400 this month.", **meta):
    return {"responseText": text, "meta": meta}


@pytest.mark.asyncio
async def test_send_appends_optimistic_user_message_then_reply(backend, client, test_settings):
    store = MessageStore(client, user_id="user-1", settings=test_settings)
    during = []

    def generate(request):
        during.append(([m.text for m in store.messages], store.is_generating))
        return reply(thread_id="t-1")

    backend.on("POST", "/api/gpt/generate", generate)
    created = []

    answer = await store.send_message("What's my top expense?", on_thread_created=created.append)

    assert during == [(["What's my top expense?"], True)]
    assert created == ["t-1"]
    user, assistant = store.messages
    assert isinstance(user, PendingMessage)
    assert user.local_id.startswith("local-")
    assert assistant is answer
    assert assistant.sender == "assistant"
    assert assistant.text == "Payroll, at $12,400 this month."
    assert assistant.created_at >= user.created_at
    assert store.is_loading is False
    assert store.is_generating is False
    assert store.usage_count == 3


@pytest.mark.asyncio
async def test_failed_send_keeps_the_user_message(backend, client, test_settings):
    store = MessageStore(client, user_id="user-1", settings=test_settings)
    backend.on("POST", "/api/gpt/generate", httpx.Response(500, json={"error": "Model overloaded"}))

    answer = await store.send_message("What's my top expense?")

    assert answer is None
    assert [m.text for m in store.messages] == ["What's my top expense?"]
    assert store.error == "Model overloaded"
    assert store.is_loading is False


@pytest.mark.asyncio
async def test_send_is_skipped_while_loading_or_blank(backend, client, test_settings):
    store = MessageStore(client, settings=test_settings)

    assert await store.send_message("   ") is None
    store.is_loading = True
    assert await store.send_message("hello") is None
    assert store.messages == []
    assert backend.requests == []


@pytest.mark.asyncio
async def test_server_ids_confirm_pending_messages(backend, client, test_settings):
    store = MessageStore(client, settings=test_settings)
    backend.on("POST", "/api/gpt/generate", reply(user_message_id=11, assistant_message_id=12))

    await store.send_message("hello", thread_id="t-1")

    user, assistant = store.messages
    assert isinstance(user, ConfirmedMessage) and user.server_id == 11
    assert isinstance(assistant, ConfirmedMessage) and assistant.server_id == 12
    assert user.local_id and assistant.local_id


@pytest.mark.asyncio
async def test_existing_thread_does_not_report_creation(backend, client, test_settings):
    store = MessageStore(client, settings=test_settings)
    backend.on("POST", "/api/gpt/generate", reply(thread_id="t-1"))
    created = []

    await store.send_message("hello", thread_id="t-1", on_thread_created=created.append)

    assert created == []
    assert json.loads(backend.calls("POST", "/api/gpt/generate")[0].content)["thread_id"] == "t-1"


@pytest.mark.asyncio
async def test_async_thread_created_callback_is_awaited(backend, client, test_settings):
    store = MessageStore(client, settings=test_settings)
    backend.on("POST", "/api/gpt/generate", reply(thread_id="t-9"))
    created = []

    async def on_created(thread_id):
        created.append(thread_id)

    await store.send_message("hello", on_thread_created=on_created)

    assert created == ["t-9"]


@pytest.mark.asyncio
async def test_missing_reply_text_uses_placeholder(backend, client, test_settings):
    store = MessageStore(client, settings=test_settings)
    backend.on("POST", "/api/gpt/generate", {"meta": {}})

    answer = await store.send_message("hello")

    assert answer.text == NO_RESPONSE_TEXT


@pytest.mark.asyncio
async def test_clarifier_then_choose_intent(backend, client, test_settings):
    dispatched = []
    store = MessageStore(client, settings=test_settings, on_actions=dispatched.append)
    responses = [
        {
            "responseText": "Did you mean tax or accounting?",
            "meta": {"clarify": {"question": "Which area?", "options": ["tax", "accounting"]}},
            "suggestedActions": [{"type": "intent", "label": "Tax", "checklistId": "c-1"}],
        },
        {"responseText": "You owe $2,100 this quarter.", "followUpPrompt": "Want a payment plan?"},
    ]
    backend.on("POST", "/api/gpt/generate", lambda request: responses.pop(0))

    await store.send_message("How much do I owe?")

    assert store.clarify.question == "Which area?"
    assert store.suggested_actions[0].checklist_id == "c-1"
    assert len(dispatched) == 1

    await store.choose_intent("tax")

    second = json.loads(backend.calls("POST", "/api/gpt/generate")[1].content)
    assert second["intent"] == "tax"
    assert second["message"] == "How much do I owe?"
    assert store.clarify is None
    assert store.follow_up_prompt == "Want a payment plan?"


@pytest.mark.asyncio
async def test_usage_refresh_failure_keeps_previous_count(backend, client, test_settings):
    store = MessageStore(client, user_id="user-1", settings=test_settings)
    store.usage_count = 7
    backend.on("GET", "/api/gpt/usage", httpx.Response(503, json={"error": "down"}))

    await store.refresh_usage()

    assert store.usage_count == 7


def test_hydrate_replaces_messages_and_is_idempotent(client, test_settings):
    store = MessageStore(client, settings=test_settings)
    history = [
        ConfirmedMessage(server_id=1, sender="user", text="hi", created_at=datetime(2024, 5, 1, tzinfo=timezone.utc)),
        ConfirmedMessage(server_id=2, sender="assistant", text="hello", created_at=datetime(2024, 5, 1, tzinfo=timezone.utc)),
    ]
    store.error = "old error"

    store.hydrate(history)
    first = store.messages
    store.hydrate(history)

    assert store.messages == first == history
    assert store.error is None


def test_confirm_unknown_local_id_is_a_no_op(client, test_settings):
    store = MessageStore(client, settings=test_settings)
    store.hydrate([PendingMessage(local_id="local-a", sender="user", text="hi")])

    assert store.confirm("local-b", 5) is False
    assert store.confirm("local-a", 5) is True
    assert store.messages[0].server_id == 5


def test_hydrate_validates_saved_payloads_by_kind(client, test_settings):
    store = MessageStore(client, settings=test_settings)

    store.hydrate(
        [
            {"kind": "confirmed", "server_id": 7, "sender": "user", "text": "hi"},
            {"kind": "pending", "local_id": "local-a", "sender": "assistant", "text": "hello"},
        ]
    )

    first, second = store.messages
    assert isinstance(first, ConfirmedMessage) and first.server_id == 7
    assert isinstance(second, PendingMessage) and second.local_id == "local-a"


@pytest.mark.asyncio
async def test_reply_is_dropped_when_the_list_was_replaced_mid_send(backend, client, test_settings):
    store = MessageStore(client, user_id="user-1", settings=test_settings)
    started, release = asyncio.Event(), asyncio.Event()

    async def slow_generate(request):
        started.set()
        await release.wait()
        return reply(thread_id="t-old", user_message_id=1, assistant_message_id=2)

    backend.on("POST", "/api/gpt/generate", slow_generate)
    created = []

    pending = asyncio.ensure_future(store.send_message("Draft question", on_thread_created=created.append))
    await started.wait()
    store.hydrate([ConfirmedMessage(server_id=9, sender="user", text="other thread")])
    generation = store.generation
    release.set()

    assert await pending is None
    assert created == []
    assert [m.text for m in store.messages] == ["other thread"]
    assert store.generation == generation
    assert store.is_loading is False
