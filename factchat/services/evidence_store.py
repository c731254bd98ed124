"""Owner-scoped evidence store backed by pgvector."""

import logging
from typing import Any, Dict, List, Sequence
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from factchat.models.knowledge_base import KnowledgeBaseChunk, KnowledgeBaseFile
from factchat.schemas.evidence import BoundingBox, EvidenceMatch, make_source_id
from factchat.services.embeddings import check_dimension

logger = logging.getLogger(__name__)


class EvidenceStore:
    """Chunk storage with nearest-neighbour search filtered by owner."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize the evidence store."""
        self.session_factory = session_factory

    async def search(self, owner_id: str, vector: List[float], limit: int) -> List[int]:
        """
        Find the chunks nearest to a query vector.

        Args:
            owner_id: Only chunks owned by this principal are considered
            vector: Query embedding
            limit: Maximum number of chunk ids to return

        Returns:
            Chunk primary keys ordered by cosine distance
        """
        check_dimension(vector)

        stmt = (
            select(KnowledgeBaseChunk.chunk_pk)
            .where(KnowledgeBaseChunk.user_id == owner_id)
            .order_by(KnowledgeBaseChunk.embedding.cosine_distance(vector))
            .limit(limit)
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def hydrate(self, owner_id: str, chunk_pks: Sequence[int]) -> List[EvidenceMatch]:
        """
        Turn chunk ids into attributable evidence, re-checking ownership.

        Ids whose chunk or owning file does not belong to ``owner_id`` are
        dropped. The input ranking is preserved.
        """
        if not chunk_pks:
            return []

        stmt = (
            select(KnowledgeBaseChunk, KnowledgeBaseFile.filename)
            .join(KnowledgeBaseFile, KnowledgeBaseChunk.file_id == KnowledgeBaseFile.file_id)
            .where(
                KnowledgeBaseChunk.chunk_pk.in_(list(chunk_pks)),
                KnowledgeBaseChunk.user_id == owner_id,
                KnowledgeBaseFile.user_id == owner_id,
            )
        )
        async with self.session_factory() as db:
            rows = (await db.execute(stmt)).all()

        by_pk = {chunk.chunk_pk: self._to_match(chunk, filename) for chunk, filename in rows}
        matches = [by_pk[pk] for pk in chunk_pks if pk in by_pk]

        dropped = len(chunk_pks) - len(matches)
        if dropped:
            logger.warning(f"Dropped {dropped} chunk(s) that failed ownership re-check")

        return matches

    def _to_match(self, chunk: KnowledgeBaseChunk, filename: str) -> EvidenceMatch:
        file_id = str(chunk.file_id)
        return EvidenceMatch(
            source_id=make_source_id(file_id, chunk.segment_id, chunk.chunk_id, chunk.chunk_index),
            file_id=file_id,
            filename=filename,
            content=chunk.content,
            chunk_id=chunk.chunk_id,
            segment_id=chunk.segment_id,
            page_number=chunk.page_number,
            page_width=chunk.page_width,
            page_height=chunk.page_height,
            bbox=BoundingBox(**chunk.bbox) if chunk.bbox else None,
        )

    async def insert_chunks(self, rows: List[Dict[str, Any]]) -> int:
        """Insert embedded chunks produced by ingestion."""
        for row in rows:
            check_dimension(row["embedding"])

        async with self.session_factory() as db:
            db.add_all([KnowledgeBaseChunk(**row) for row in rows])
            await db.commit()

        logger.info(f"Inserted {len(rows)} chunks")
        return len(rows)

    async def delete_file_chunks(self, file_id: UUID) -> None:
        """Remove every chunk of a file."""
        async with self.session_factory() as db:
            await db.execute(delete(KnowledgeBaseChunk).where(KnowledgeBaseChunk.file_id == file_id))
            await db.commit()
