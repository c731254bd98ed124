"""Pytest configuration and fixtures."""

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from factchat.agents.adjudicator import VERIFY_CLAIM_SYSTEM_PROMPT
from factchat.agents.claim import EXTRACT_CLAIMS_SYSTEM_PROMPT
from factchat.agents.draft import DRAFT_SYSTEM_PROMPT
from factchat.agents.router import ROUTER_SYSTEM_PROMPT
from factchat.agents.title import TITLE_SYSTEM_PROMPT
from factchat.config import settings
from factchat.database import Base
from factchat.dependencies import build_services
from factchat.main import create_app
from factchat.models import KnowledgeBaseChunk, KnowledgeBaseFile
from factchat.schemas.evidence import make_source_id
from factchat.services.evidence_store import EvidenceStore
from factchat.services.llm_client import StreamDelta
from factchat.services.storage import ObjectStorage

OWNER = "user-alice"
OTHER_OWNER = "user-bob"

UNSUPPORTED_VERDICT = {"isSupported": False, "document_name": None, "matching_text": None, "source_id": None}


@dataclass
class FakeCall:
    kind: str
    model: str
    messages: List[Dict[str, str]]

    @property
    def system(self) -> str:
        return self.messages[0]["content"] if self.messages[0]["role"] == "system" else ""

    @property
    def user(self) -> str:
        return self.messages[-1]["content"]


class FakeLLMClient:
    """Scripted stand-in for LLMClient, dispatching on each call's system prompt."""

    def __init__(self):
        self.route = "general_chat"
        self.claims: List[str] = []
        self.verdicts: Dict[str, Dict[str, Any]] = {}
        self.draft = "Draft content."
        self.title = "Solar Panel Questions"
        self.reasoning_chunks: List[str] = []
        self.stream_chunks: List[str] = ["Hello", " there."]
        self.stream_error: Optional[Exception] = None
        # When set, the stream stalls after its chunks until the event fires
        self.stream_hold: Optional[asyncio.Event] = None
        self.calls: List[FakeCall] = []
        self.stream_calls: List[FakeCall] = []

    def calls_of(self, kind: str) -> List[FakeCall]:
        return [call for call in self.calls if call.kind == kind]

    def _kind(self, system: str) -> str:
        if system == ROUTER_SYSTEM_PROMPT:
            return "route"
        if system == EXTRACT_CLAIMS_SYSTEM_PROMPT:
            return "extract"
        if system == VERIFY_CLAIM_SYSTEM_PROMPT:
            return "adjudicate"
        if system.startswith(DRAFT_SYSTEM_PROMPT):
            return "draft"
        if system == TITLE_SYSTEM_PROMPT:
            return "title"
        raise AssertionError(f"Unexpected system prompt: {system[:60]!r}")

    async def chat_completion(self, model, messages, temperature=0.7, max_tokens=4000, json_mode=False) -> str:
        call = FakeCall(kind="", model=model, messages=messages)
        call.kind = self._kind(call.system)
        self.calls.append(call)

        if call.kind == "route":
            return json.dumps({"route": self.route})
        if call.kind == "extract":
            return json.dumps({"claims": self.claims})
        if call.kind == "adjudicate":
            claim = call.user.split("\n", 1)[0][len("Claim: "):]
            return json.dumps(self.verdicts.get(claim, UNSUPPORTED_VERDICT))
        if call.kind == "draft":
            return self.draft
        return self.title

    async def stream_chat_completion(self, model, messages, temperature=0.7, max_tokens=4000):
        self.stream_calls.append(FakeCall(kind="stream", model=model, messages=messages))
        for chunk in self.reasoning_chunks:
            yield StreamDelta(kind="reasoning", text=chunk)
        for chunk in self.stream_chunks:
            yield StreamDelta(kind="text", text=chunk)
        if self.stream_hold is not None:
            await self.stream_hold.wait()
        if self.stream_error is not None:
            raise self.stream_error

    async def aclose(self) -> None:
        pass


class FakeEmbeddingService:
    """Returns a constant vector of the configured dimension."""

    def __init__(self):
        self.calls: List[List[str]] = []

    async def embed_text(self, text: str) -> List[float]:
        return (await self.embed_texts([text]))[0]

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [[0.0] * settings.EMBED_DIM for _ in texts]

    async def aclose(self) -> None:
        pass


class FakeSearchEvidenceStore(EvidenceStore):
    """EvidenceStore whose nearest-neighbour search is replaced by insertion order.

    ``leaked_ids`` are returned ahead of the owner's chunks regardless of owner,
    standing in for an index that returns ids it should not.
    """

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.leaked_ids: List[int] = []

    async def search(self, owner_id: str, vector: List[float], limit: int) -> List[int]:
        stmt = (
            select(KnowledgeBaseChunk.chunk_pk)
            .where(KnowledgeBaseChunk.user_id == owner_id)
            .order_by(KnowledgeBaseChunk.chunk_pk)
        )
        async with self.session_factory() as db:
            owned = list((await db.execute(stmt)).scalars().all())
        return (self.leaked_ids + owned)[:limit]


class FakeProcessor:
    """Document processor returning a canned task."""

    def __init__(self):
        self.task: Dict[str, Any] = {"status": "Succeeded", "output": {"chunks": []}}
        self.error: Optional[Exception] = None
        self.created: List[str] = []

    async def create_task(self, data: bytes, filename: str) -> str:
        self.created.append(filename)
        return "task-1"

    async def wait_for_task(self, task_id: str) -> Dict[str, Any]:
        if self.error is not None:
            raise self.error
        return self.task

    async def aclose(self) -> None:
        pass


@pytest.fixture
async def session_factory(tmp_path):
    """File-backed SQLite database with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def fake_llm():
    return FakeLLMClient()


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddingService()


@pytest.fixture
def evidence_store(session_factory):
    return FakeSearchEvidenceStore(session_factory)


@pytest.fixture
def fake_processor():
    return FakeProcessor()


@pytest.fixture
def storage(tmp_path):
    return ObjectStorage(base_dir=str(tmp_path / "storage"), public_base_url="http://test")


@pytest.fixture
def services(session_factory, fake_llm, fake_embeddings, evidence_store, fake_processor, storage):
    return build_services(
        session_factory=session_factory,
        llm_client=fake_llm,
        embedding_service=fake_embeddings,
        evidence_store=evidence_store,
        processor=fake_processor,
        storage=storage,
    )


@pytest.fixture
async def client(services):
    app = create_app(services)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


def auth(owner_id: str = OWNER) -> Dict[str, str]:
    return {settings.AUTH_HEADER: owner_id}


def user_message(text: str, message_id: str = "msg-1", extra_parts: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    parts = [{"type": "text", "text": text}] + (extra_parts or [])
    return {"id": message_id, "role": "user", "parts": parts}


def parse_frames(body: str) -> List[Any]:
    """Decode a UI message stream body into payloads; the terminator is kept as '[DONE]'."""
    frames = []
    for block in body.split("\n\n"):
        if not block.startswith("data: "):
            continue
        data = block[len("data: "):]
        frames.append(data if data == "[DONE]" else json.loads(data))
    return frames


def stream_text(frames: List[Any]) -> str:
    return "".join(frame["delta"] for frame in frames if isinstance(frame, dict) and frame["type"] == "text-delta")


async def seed_chunk(
    session_factory,
    evidence_store: EvidenceStore,
    owner_id: str,
    content: str,
    filename: str = "report.pdf",
    segment_id: Optional[str] = "seg-1",
) -> Tuple[str, str]:
    """Insert a ready file with one chunk; returns (file_id, source_id)."""
    async with session_factory() as db:
        file = KnowledgeBaseFile(
            user_id=owner_id,
            filename=filename,
            content_type="application/pdf",
            size=100,
            storage_id="stored",
            status="ready",
            chunk_count=1,
        )
        db.add(file)
        await db.commit()
        await db.refresh(file)

    await evidence_store.insert_chunks(
        [
            {
                "user_id": owner_id,
                "file_id": file.file_id,
                "chunk_index": 0,
                "chunk_id": "chunk-0",
                "segment_id": segment_id,
                "page_number": 1,
                "page_width": 612.0,
                "page_height": 792.0,
                "bbox": {"left": 10.0, "top": 20.0, "width": 100.0, "height": 40.0},
                "content": content,
                "embed": content,
                "embedding": [0.0] * settings.EMBED_DIM,
            }
        ]
    )
    file_id = str(file.file_id)
    return file_id, make_source_id(file_id, segment_id, "chunk-0", 0)
