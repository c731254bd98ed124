"""Tests for storage, document processing, ingestion and the knowledge base API."""

import uuid

import httpx
import pytest

from conftest import OTHER_OWNER, OWNER, auth, seed_chunk
from factchat.config import settings
from factchat.errors import AppError, ErrorCode
from factchat.models import KnowledgeBaseFile
from factchat.services.document_processor import (
    DocumentProcessorClient,
    ProcessingFailed,
    ProcessingPending,
    extract_segments,
)

PROCESSED_TASK = {
    "task_id": "task-1",
    "status": "Succeeded",
    "output": {
        "chunks": [
            {
                "chunk_id": "chunk-a",
                "segments": [
                    {
                        "segment_id": "seg-1",
                        "content": "Revenue grew 12% in 2023.",
                        "embed": "Revenue grew 12% in 2023.",
                        "page_number": 1,
                        "page_width": 612,
                        "page_height": 792,
                        "bbox": {"left": 1, "top": 2, "width": 3, "height": 4},
                    },
                    {"segment_id": "seg-2", "content": "", "embed": "   "},
                ],
            },
            {"chunk_id": "chunk-b", "segments": [{"segment_id": "seg-3", "text": "Headcount is 40."}]},
        ]
    },
}


async def test_storage_put_read_delete(storage):
    storage_id = await storage.put(b"hello")

    assert await storage.read(storage_id) == b"hello"
    assert await storage.get_download_url(storage_id) == f"http://test/storage/{storage_id}"

    await storage.delete(storage_id)
    assert await storage.get_download_url(storage_id) is None
    with pytest.raises(AppError) as exc_info:
        await storage.read(storage_id)
    assert exc_info.value.code == ErrorCode.FILE_NOT_FOUND


async def test_storage_rejects_path_traversal(storage):
    with pytest.raises(AppError):
        await storage.read("../secrets")


def test_extract_segments_skips_empty_and_keeps_chunk_position():
    segments = extract_segments(PROCESSED_TASK)

    assert [s.segment_id for s in segments] == ["seg-1", "seg-3"]
    assert [s.chunk_index for s in segments] == [0, 1]
    assert segments[1].content == "Headcount is 40."
    assert segments[1].embed == "Headcount is 40."
    assert segments[0].bbox == {"left": 1, "top": 2, "width": 3, "height": 4}


async def test_processor_polls_until_terminal(monkeypatch):
    monkeypatch.setattr(settings, "DOC_PROCESSOR_API_KEY", "key")
    monkeypatch.setattr(settings, "DOC_PROCESSOR_POLL_DELAY", 0)
    statuses = iter(["Starting", "Processing", "Succeeded"])

    def handler(request):
        assert request.headers["Authorization"] == "key"
        return httpx.Response(200, json={"task_id": "task-1", "status": next(statuses), "output": {"chunks": []}})

    client = DocumentProcessorClient(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    task = await client.wait_for_task("task-1")

    assert task["status"] == "Succeeded"


async def test_processor_gives_up_after_max_attempts(monkeypatch):
    monkeypatch.setattr(settings, "DOC_PROCESSOR_API_KEY", "key")
    monkeypatch.setattr(settings, "DOC_PROCESSOR_POLL_DELAY", 0)
    monkeypatch.setattr(settings, "DOC_PROCESSOR_MAX_POLL_ATTEMPTS", 3)
    polls = []

    def handler(request):
        polls.append(request)
        return httpx.Response(200, json={"task_id": "task-1", "status": "Processing"})

    client = DocumentProcessorClient(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    with pytest.raises(ProcessingPending):
        await client.wait_for_task("task-1")
    assert len(polls) == 3


async def test_processor_failed_task_raises(monkeypatch):
    monkeypatch.setattr(settings, "DOC_PROCESSOR_API_KEY", "key")

    def handler(request):
        return httpx.Response(200, json={"task_id": "task-1", "status": "Failed", "message": "Unreadable PDF"})

    client = DocumentProcessorClient(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    with pytest.raises(ProcessingFailed, match="Unreadable PDF"):
        await client.wait_for_task("task-1")


async def test_processor_create_task_sends_chunking_options(monkeypatch):
    monkeypatch.setattr(settings, "DOC_PROCESSOR_API_KEY", "key")
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["payload"] = request.read()
        return httpx.Response(200, json={"task_id": "task-9", "status": "Starting"})

    client = DocumentProcessorClient(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    assert await client.create_task(b"%PDF", "a.pdf") == "task-9"
    assert seen["url"].endswith("/task/parse")
    assert b'"target_length": 6000' in seen["payload"] or b'"target_length":6000' in seen["payload"]


async def test_upload_is_processed_into_chunks(client, services, fake_processor, session_factory, storage):
    fake_processor.task = PROCESSED_TASK

    response = await client.post(
        "/api/knowledge-base/files",
        files={"file": ("report.pdf", b"%PDF-1.7 content", "application/pdf")},
        headers=auth(),
    )

    assert response.status_code == 200
    file_id = response.json()["file_id"]

    response = await client.get("/api/knowledge-base/files", headers=auth())
    files = response.json()
    assert len(files) == 1
    assert files[0]["file_id"] == file_id
    assert files[0]["status"] == "ready"
    assert files[0]["chunk_count"] == 2
    assert files[0]["url"].startswith("http://test/storage/")

    response = await client.post("/api/knowledge-base/search", json={"query": "revenue"}, headers=auth())
    matches = response.json()["matches"]
    assert {m["sourceId"] for m in matches} == {f"{file_id}:seg-1", f"{file_id}:seg-3"}


async def test_upload_rejects_unsupported_type_without_storing(client, storage):
    response = await client.post(
        "/api/knowledge-base/files",
        files={"file": ("notes.txt", b"plain text", "text/plain")},
        headers=auth(),
    )

    assert response.status_code == 415
    assert response.json() == {"error": "UNSUPPORTED_CONTENT_TYPE"}
    assert not storage.base_dir.exists() or not any(storage.base_dir.iterdir())


async def test_upload_rejects_oversize_file(client, monkeypatch):
    monkeypatch.setattr(settings, "MAX_FILE_BYTES", 10)

    response = await client.post(
        "/api/knowledge-base/files",
        files={"file": ("scan.png", b"x" * 11, "image/png")},
        headers=auth(),
    )

    assert response.status_code == 413
    assert response.json() == {"error": "FILE_TOO_LARGE"}


async def test_processing_failure_marks_file_failed(client, fake_processor):
    fake_processor.error = RuntimeError("Document processing failed")

    response = await client.post(
        "/api/knowledge-base/files",
        files={"file": ("report.pdf", b"%PDF", "application/pdf")},
        headers=auth(),
    )
    assert response.status_code == 200

    files = (await client.get("/api/knowledge-base/files", headers=auth())).json()
    assert files[0]["status"] == "failed"
    assert files[0]["error_message"] == "Document processing failed"


async def test_retry_reprocesses_failed_file(client, fake_processor):
    fake_processor.error = RuntimeError("timeout")
    response = await client.post(
        "/api/knowledge-base/files",
        files={"file": ("report.pdf", b"%PDF", "application/pdf")},
        headers=auth(),
    )
    file_id = response.json()["file_id"]
    fake_processor.error = None
    fake_processor.task = PROCESSED_TASK

    response = await client.post(f"/api/knowledge-base/files/{file_id}/retry", headers=auth())

    assert response.status_code == 200
    files = (await client.get("/api/knowledge-base/files", headers=auth())).json()
    assert files[0]["status"] == "ready"
    assert files[0]["error_message"] is None
    assert files[0]["chunk_count"] == 2


async def test_retry_and_delete_check_owner(client):
    response = await client.post(
        "/api/knowledge-base/files",
        files={"file": ("report.pdf", b"%PDF", "application/pdf")},
        headers=auth(OWNER),
    )
    file_id = response.json()["file_id"]

    retry = await client.post(f"/api/knowledge-base/files/{file_id}/retry", headers=auth(OTHER_OWNER))
    delete = await client.delete(f"/api/knowledge-base/files/{file_id}", headers=auth(OTHER_OWNER))
    missing = await client.delete(f"/api/knowledge-base/files/{uuid.uuid4()}", headers=auth(OWNER))

    assert retry.status_code == 403
    assert delete.status_code == 403
    assert missing.status_code == 404
    assert missing.json() == {"error": "FILE_NOT_FOUND"}


async def test_delete_removes_chunks_and_stored_object(client, services, session_factory, evidence_store, storage):
    response = await client.post(
        "/api/knowledge-base/files",
        files={"file": ("report.pdf", b"%PDF", "application/pdf")},
        headers=auth(),
    )
    file_id = uuid.UUID(response.json()["file_id"])
    async with session_factory() as db:
        file = await db.get(KnowledgeBaseFile, file_id)
    await evidence_store.insert_chunks(
        [
            {
                "user_id": OWNER,
                "file_id": file_id,
                "chunk_index": 0,
                "content": "text",
                "embed": "text",
                "embedding": [0.0] * settings.EMBED_DIM,
            }
        ]
    )

    response = await client.delete(f"/api/knowledge-base/files/{file_id}", headers=auth())

    assert response.status_code == 200
    assert await storage.get_download_url(file.storage_id) is None
    async with session_factory() as db:
        assert await db.get(KnowledgeBaseFile, file_id) is None
        assert await evidence_store.search(OWNER, [0.0] * settings.EMBED_DIM, 10) == []


async def test_search_clamps_limit_and_is_owner_scoped(client, session_factory, evidence_store):
    await seed_chunk(session_factory, evidence_store, OTHER_OWNER, "Bob's data.")
    for index in range(3):
        await seed_chunk(session_factory, evidence_store, OWNER, f"Alice fact {index}.", segment_id=f"s{index}")

    response = await client.post("/api/knowledge-base/search", json={"query": "facts", "limit": 0}, headers=auth())

    matches = response.json()["matches"]
    assert len(matches) == 1
    assert matches[0]["content"].startswith("Alice")


async def test_search_requires_query(client):
    response = await client.post("/api/knowledge-base/search", json={"query": ""}, headers=auth())

    assert response.status_code == 400
    assert response.json() == {"error": "INVALID_REQUEST"}


async def test_search_clamps_overflowing_limit(client, session_factory, evidence_store):
    for index in range(settings.MAX_SEARCH_LIMIT + 2):
        await seed_chunk(session_factory, evidence_store, OWNER, f"Fact {index}.", segment_id=f"s{index}")

    # 1e400 is valid JSON that parses to infinity
    response = await client.post(
        "/api/knowledge-base/search",
        content=b'{"query": "facts", "limit": 1e400}',
        headers={**auth(), "Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert len(response.json()["matches"]) == settings.MAX_SEARCH_LIMIT
