"""Knowledge base ingestion: upload registration, processing, retry and deletion."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from factchat.config import settings
from factchat.errors import AppError, ErrorCode
from factchat.models.chat import ChatFile
from factchat.models.knowledge_base import KnowledgeBaseFile
from factchat.schemas.knowledge_base import KnowledgeBaseFileResponse
from factchat.services.document_processor import DocumentProcessorClient, extract_segments
from factchat.services.embeddings import EmbeddingService
from factchat.services.evidence_store import EvidenceStore
from factchat.services.storage import ObjectStorage

logger = logging.getLogger(__name__)


def is_allowed_content_type(content_type: str) -> bool:
    return content_type == "application/pdf" or content_type.startswith("image/")


def validate_upload(content_type: str, size: int) -> None:
    if not is_allowed_content_type(content_type):
        raise AppError(ErrorCode.UNSUPPORTED_CONTENT_TYPE)
    if size > settings.MAX_FILE_BYTES:
        raise AppError(ErrorCode.FILE_TOO_LARGE)


class IngestionService:
    """Owns the lifecycle of knowledge base files."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: ObjectStorage,
        processor: DocumentProcessorClient,
        embedding_service: EmbeddingService,
        evidence_store: EvidenceStore,
    ):
        """Initialize the ingestion service."""
        self.session_factory = session_factory
        self.storage = storage
        self.processor = processor
        self.embedding_service = embedding_service
        self.evidence_store = evidence_store

    async def _get_owned_file(self, owner_id: str, file_id: UUID) -> KnowledgeBaseFile:
        async with self.session_factory() as db:
            file = await db.get(KnowledgeBaseFile, file_id)
        if file is None:
            raise AppError(ErrorCode.FILE_NOT_FOUND)
        if file.user_id != owner_id:
            raise AppError(ErrorCode.FORBIDDEN)
        return file

    async def _update_file(self, file_id: UUID, **values) -> None:
        stmt = (
            update(KnowledgeBaseFile)
            .where(KnowledgeBaseFile.file_id == file_id)
            .values(updated_at=datetime.utcnow(), **values)
        )
        async with self.session_factory() as db:
            await db.execute(stmt)
            await db.commit()

    async def register_upload(self, owner_id: str, filename: str, content_type: str, data: bytes) -> UUID:
        """
        Store an uploaded file and record it as processing.

        Args:
            owner_id: Uploading principal
            filename: Original filename
            content_type: Declared MIME type
            data: File contents

        Returns:
            The new file id

        Raises:
            AppError: UNSUPPORTED_CONTENT_TYPE or FILE_TOO_LARGE; nothing is stored
        """
        validate_upload(content_type, len(data))

        storage_id = await self.storage.put(data)
        async with self.session_factory() as db:
            file = KnowledgeBaseFile(
                user_id=owner_id,
                filename=filename,
                content_type=content_type,
                size=len(data),
                storage_id=storage_id,
                status="processing",
            )
            db.add(file)
            await db.commit()
            await db.refresh(file)

        logger.info(f"Registered knowledge base file {file.file_id} ({len(data)} bytes)")
        return file.file_id

    async def _extract_markdown(self, data: bytes, filename: str) -> str:
        task_id = await self.processor.create_task(data, filename)
        task = await self.processor.wait_for_task(task_id)
        return "\n\n".join(segment.content for segment in extract_segments(task))

    async def register_chat_file(self, owner_id: str, filename: str, content_type: str, data: bytes) -> UUID:
        """
        Store a file attached to a chat turn.

        PDFs are converted to markdown up front so later turns can put the text
        in the prompt. Attachments expire after CHAT_FILE_TTL_HOURS.

        Raises:
            AppError: UNSUPPORTED_CONTENT_TYPE or FILE_TOO_LARGE before storing,
                INTERNAL_ERROR if PDF extraction fails
        """
        validate_upload(content_type, len(data))

        storage_id = await self.storage.put(data)
        markdown: Optional[str] = None
        if content_type == "application/pdf":
            try:
                markdown = await self._extract_markdown(data, filename)
            except Exception as e:
                logger.error(f"PDF extraction for chat file {filename} failed: {e}", exc_info=True)
                await self.storage.delete(storage_id)
                raise AppError(ErrorCode.INTERNAL_ERROR) from e

        async with self.session_factory() as db:
            chat_file = ChatFile(
                user_id=owner_id,
                filename=filename,
                content_type=content_type,
                size=len(data),
                storage_id=storage_id,
                markdown=markdown,
                expires_at=datetime.utcnow() + timedelta(hours=settings.CHAT_FILE_TTL_HOURS),
            )
            db.add(chat_file)
            await db.commit()
            await db.refresh(chat_file)

        logger.info(f"Registered chat file {chat_file.chat_file_id} ({len(data)} bytes)")
        return chat_file.chat_file_id

    async def process_file(self, file_id: UUID) -> None:
        """
        Parse, embed and index a file.

        Runs as a background job. Any failure marks the file failed with the
        error message; the job itself never raises.
        """
        try:
            async with self.session_factory() as db:
                file = await db.get(KnowledgeBaseFile, file_id)
            if file is None:
                raise AppError(ErrorCode.FILE_NOT_FOUND)

            data = await self.storage.read(file.storage_id)
            task_id = await self.processor.create_task(data, file.filename)
            await self._update_file(file_id, task_id=task_id)

            task = await self.processor.wait_for_task(task_id)
            segments = extract_segments(task)
            if not segments:
                await self._update_file(file_id, status="ready", chunk_count=0)
                logger.info(f"File {file_id} produced no segments")
                return

            embeddings = await self.embedding_service.embed_texts([segment.embed for segment in segments])
            if len(embeddings) != len(segments):
                raise ValueError("Missing embedding result")

            rows = [
                {
                    "user_id": file.user_id,
                    "file_id": file.file_id,
                    "chunk_index": segment.chunk_index,
                    "chunk_id": segment.chunk_id,
                    "segment_id": segment.segment_id,
                    "page_number": segment.page_number,
                    "page_width": segment.page_width,
                    "page_height": segment.page_height,
                    "bbox": segment.bbox,
                    "content": segment.content,
                    "embed": segment.embed,
                    "embedding": embedding,
                }
                for segment, embedding in zip(segments, embeddings)
            ]
            count = await self.evidence_store.insert_chunks(rows)
            await self._update_file(file_id, status="ready", chunk_count=count, error_message=None)
            logger.info(f"File {file_id} ready with {count} chunks")

        except Exception as e:
            logger.error(f"Processing file {file_id} failed: {e}", exc_info=True)
            await self._update_file(file_id, status="failed", error_message=str(e) or "Something went wrong")

    async def retry(self, owner_id: str, file_id: UUID) -> None:
        """Reset a file to processing; the caller schedules process_file."""
        await self._get_owned_file(owner_id, file_id)
        await self.evidence_store.delete_file_chunks(file_id)
        await self._update_file(file_id, status="processing", error_message=None, chunk_count=None, task_id=None)
        logger.info(f"Retry scheduled for file {file_id}")

    async def delete(self, owner_id: str, file_id: UUID) -> None:
        """Delete a file, its chunks and its stored object."""
        file = await self._get_owned_file(owner_id, file_id)
        await self.storage.delete(file.storage_id)
        await self.evidence_store.delete_file_chunks(file_id)
        async with self.session_factory() as db:
            await db.execute(delete(KnowledgeBaseFile).where(KnowledgeBaseFile.file_id == file_id))
            await db.commit()
        logger.info(f"Deleted file {file_id}")

    async def list_files(self, owner_id: str) -> List[KnowledgeBaseFileResponse]:
        """The caller's files, newest first, with download URLs."""
        stmt = (
            select(KnowledgeBaseFile)
            .where(KnowledgeBaseFile.user_id == owner_id)
            .order_by(KnowledgeBaseFile.created_at.desc())
        )
        async with self.session_factory() as db:
            files = list((await db.execute(stmt)).scalars().all())

        results = []
        for file in files:
            url = await self.storage.get_download_url(file.storage_id)
            if url is None:
                raise AppError(ErrorCode.FILE_NOT_FOUND)
            results.append(
                KnowledgeBaseFileResponse(
                    file_id=file.file_id,
                    filename=file.filename,
                    content_type=file.content_type,
                    url=url,
                    size=file.size,
                    status=file.status,
                    error_message=file.error_message,
                    chunk_count=file.chunk_count,
                    created_at=file.created_at,
                    updated_at=file.updated_at,
                )
            )
        return results
