"""Tests for thread persistence and the threads API."""

import uuid

import pytest

from conftest import OTHER_OWNER, OWNER, auth
from factchat.errors import AppError, ErrorCode
from factchat.schemas.chat import AssistantTurnMetadata, UserTurnMetadata
from factchat.services.threads import ChatRepository, strip_file_parts, to_message_response


@pytest.fixture
def repository(session_factory):
    return ChatRepository(session_factory)


def test_strip_file_parts():
    parts = [
        {"type": "text", "text": "see attached"},
        {"type": "file", "url": "blob:1"},
        {"type": "source-document", "sourceId": "f:1"},
    ]

    assert strip_file_parts(parts) == [parts[0], parts[2]]


async def test_message_round_trip_preserves_order_role_and_metadata(repository):
    """Persisted messages come back exactly as written, minus file parts."""
    thread = await repository.create_thread(OWNER)
    user_parts = [{"type": "text", "text": "Check this"}, {"type": "file", "url": "blob:1"}]
    assistant_parts = [
        {"type": "source-document", "sourceId": "f:seg-1", "title": "a.pdf"},
        {"type": "reasoning", "text": "thinking"},
        {"type": "text", "text": "Supported."},
    ]

    await repository.append_message(
        OWNER, thread.thread_id, "user", "u1", user_parts, UserTurnMetadata(chat_file_ids=["cf-1"])
    )
    await repository.append_message(
        OWNER, thread.thread_id, "assistant", "a1", assistant_parts, AssistantTurnMetadata(aborted=True)
    )

    messages = [to_message_response(m) for m in await repository.list_messages(OWNER, thread.thread_id)]

    assert [m.message_id for m in messages] == ["u1", "a1"]
    assert [m.role for m in messages] == ["user", "assistant"]
    assert messages[0].parts == [{"type": "text", "text": "Check this"}]
    assert messages[0].metadata == {"kind": "user_turn", "chat_file_ids": ["cf-1"]}
    assert messages[1].parts == assistant_parts
    assert messages[1].metadata == {"kind": "assistant_turn", "aborted": True, "error": False}


async def test_only_user_turns_record_owner(repository):
    thread = await repository.create_thread(OWNER)

    user = await repository.append_message(OWNER, thread.thread_id, "user", "u1", [{"type": "text", "text": "a"}])
    assistant = await repository.append_message(
        OWNER, thread.thread_id, "assistant", "a1", [{"type": "text", "text": "b"}]
    )

    assert user.user_id == OWNER
    assert assistant.user_id is None


async def test_cross_owner_access_is_a_hard_failure(repository):
    thread = await repository.create_thread(OWNER)

    with pytest.raises(AppError) as exc_info:
        await repository.list_messages(OTHER_OWNER, thread.thread_id)
    assert exc_info.value.code == ErrorCode.THREAD_NOT_FOUND

    with pytest.raises(AppError):
        await repository.append_message(OTHER_OWNER, thread.thread_id, "user", "u1", [{"type": "text", "text": "x"}])


async def test_title_only_replaced_while_default(repository):
    thread = await repository.create_thread(OWNER)
    assert thread.title == "New chat"

    assert await repository.update_title_if_default(OWNER, thread.thread_id, "First Title")
    assert not await repository.update_title_if_default(OWNER, thread.thread_id, "Second Title")

    refreshed = await repository.get_thread(OWNER, thread.thread_id)
    assert refreshed.title == "First Title"


async def test_title_update_ignores_other_owner(repository):
    thread = await repository.create_thread(OWNER)

    assert not await repository.update_title_if_default(OTHER_OWNER, thread.thread_id, "Hijacked")


async def test_create_thread_with_message_runs_title_job(client, fake_llm):
    response = await client.post("/api/threads", json={"message": "How do solar panels work?"}, headers=auth())
    thread_id = response.json()["thread_id"]

    response = await client.get(f"/api/threads/{thread_id}", headers=auth())

    assert response.status_code == 200
    assert response.json()["title"] == "Solar Panel Questions"
    assert "How do solar panels work?" in fake_llm.calls_of("title")[0].user


async def test_title_job_failure_keeps_default(client, fake_llm):
    async def broken(*args, **kwargs):
        raise RuntimeError("gateway down")

    fake_llm.chat_completion = broken
    response = await client.post("/api/threads", json={"message": "Hello"}, headers=auth())
    thread_id = response.json()["thread_id"]

    response = await client.get(f"/api/threads/{thread_id}", headers=auth())

    assert response.json()["title"] == "New chat"


async def test_title_is_truncated_to_five_words(client, fake_llm):
    fake_llm.title = "A Very Long Title That Keeps Going"
    response = await client.post("/api/threads", json={"message": "Hello"}, headers=auth())

    response = await client.get(f"/api/threads/{response.json()['thread_id']}", headers=auth())

    assert response.json()["title"] == "A Very Long Title That"


async def test_list_threads_is_owner_scoped(client):
    await client.post("/api/threads", headers=auth(OWNER))
    await client.post("/api/threads", headers=auth(OWNER))
    await client.post("/api/threads", headers=auth(OTHER_OWNER))

    response = await client.get("/api/threads", headers=auth(OWNER))

    assert response.status_code == 200
    assert len(response.json()) == 2


async def test_other_owners_messages_are_not_found(client):
    response = await client.post("/api/threads", headers=auth(OTHER_OWNER))
    thread_id = response.json()["thread_id"]

    response = await client.get(f"/api/threads/{thread_id}/messages", headers=auth(OWNER))

    assert response.status_code == 404
    assert response.json() == {"error": "THREAD_NOT_FOUND"}


async def test_unknown_thread_is_not_found(client):
    response = await client.get(f"/api/threads/{uuid.uuid4()}", headers=auth())

    assert response.status_code == 404
