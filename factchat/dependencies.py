"""Process-wide service container and request dependencies."""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from factchat.agents.adjudicator import ClaimAdjudicator
from factchat.agents.claim import ClaimExtractor
from factchat.agents.draft import DraftAgent
from factchat.agents.router import IntentRouter
from factchat.agents.title import ThreadTitleAgent
from factchat.config import settings
from factchat.errors import AppError, ErrorCode
from factchat.services.assembler import ResponseAssembler
from factchat.services.document_processor import DocumentProcessorClient
from factchat.services.embeddings import EmbeddingService
from factchat.services.evidence_store import EvidenceStore
from factchat.services.ingestion import IngestionService
from factchat.services.llm_client import LLMClient
from factchat.services.retrieval import EvidenceRetriever
from factchat.services.storage import ObjectStorage
from factchat.services.threads import ChatRepository
from factchat.services.verification import VerificationOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a request handler needs, constructed once per process."""

    llm_client: LLMClient
    embedding_service: EmbeddingService
    processor: DocumentProcessorClient
    storage: ObjectStorage
    repository: ChatRepository
    retriever: EvidenceRetriever
    title_agent: ThreadTitleAgent
    assembler: ResponseAssembler
    ingestion: IngestionService

    async def aclose(self) -> None:
        await self.llm_client.aclose()
        await self.embedding_service.aclose()
        await self.processor.aclose()


def build_services(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    llm_client: Optional[LLMClient] = None,
    embedding_service: Optional[EmbeddingService] = None,
    evidence_store: Optional[EvidenceStore] = None,
    processor: Optional[DocumentProcessorClient] = None,
    storage: Optional[ObjectStorage] = None,
) -> Services:
    """
    Wire up the service graph.

    Every collaborator can be substituted, which is how tests swap in fakes
    for the model gateway and the vector search.
    """
    if session_factory is None:
        from factchat.database import SessionLocal

        session_factory = SessionLocal

    llm_client = llm_client or LLMClient()
    embedding_service = embedding_service or EmbeddingService()
    evidence_store = evidence_store or EvidenceStore(session_factory)
    processor = processor or DocumentProcessorClient()
    storage = storage or ObjectStorage()

    repository = ChatRepository(session_factory)
    retriever = EvidenceRetriever(embedding_service, evidence_store)
    orchestrator = VerificationOrchestrator(
        extractor=ClaimExtractor(llm_client),
        retriever=retriever,
        adjudicator=ClaimAdjudicator(llm_client),
        search_limit=settings.VERIFY_SEARCH_LIMIT,
    )
    assembler = ResponseAssembler(
        repository=repository,
        storage=storage,
        llm_client=llm_client,
        router=IntentRouter(llm_client),
        draft_agent=DraftAgent(llm_client),
        orchestrator=orchestrator,
    )
    ingestion = IngestionService(
        session_factory=session_factory,
        storage=storage,
        processor=processor,
        embedding_service=embedding_service,
        evidence_store=evidence_store,
    )

    logger.info("Services initialized")
    return Services(
        llm_client=llm_client,
        embedding_service=embedding_service,
        processor=processor,
        storage=storage,
        repository=repository,
        retriever=retriever,
        title_agent=ThreadTitleAgent(llm_client),
        assembler=assembler,
        ingestion=ingestion,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_current_user_id(request: Request) -> str:
    """
    Principal set by the fronting auth layer.

    Raises:
        AppError: AUTH_UNAUTHORIZED if the header is missing or blank
    """
    user_id = request.headers.get(settings.AUTH_HEADER, "").strip()
    if not user_id:
        raise AppError(ErrorCode.AUTH_UNAUTHORIZED)
    return user_id
