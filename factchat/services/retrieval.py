"""Evidence retrieval for a single claim or query."""

import logging
import math
from typing import List, Optional

from factchat.config import settings
from factchat.schemas.evidence import EvidenceMatch
from factchat.services.embeddings import EmbeddingService
from factchat.services.evidence_store import EvidenceStore

logger = logging.getLogger(__name__)


def clamp_search_limit(value: Optional[float]) -> int:
    """Clamp a requested limit into [1, MAX_SEARCH_LIMIT]; out-of-range values are not rejected."""
    if value is None or math.isnan(value):
        return settings.DEFAULT_SEARCH_LIMIT
    # Clamp before truncating so infinities never reach int conversion
    return math.trunc(min(max(value, 1), settings.MAX_SEARCH_LIMIT))


class EvidenceRetriever:
    """Embed, search and hydrate evidence for one owner."""

    def __init__(self, embedding_service: EmbeddingService, evidence_store: EvidenceStore):
        """Initialize the retriever."""
        self.embedding_service = embedding_service
        self.evidence_store = evidence_store

    async def retrieve(self, owner_id: str, claim: str, limit: Optional[float] = None) -> List[EvidenceMatch]:
        """
        Retrieve evidence for a claim.

        Args:
            owner_id: Requesting principal; no other owner's chunks are returned
            claim: Claim or query text
            limit: Requested number of matches, clamped

        Returns:
            Hydrated evidence matches, nearest first
        """
        limit = clamp_search_limit(limit)

        query_embedding = await self.embedding_service.embed_text(claim)
        chunk_pks = await self.evidence_store.search(owner_id, query_embedding, limit)
        logger.info(f"Vector search returned {len(chunk_pks)} chunks (limit {limit})")

        if not chunk_pks:
            return []

        return await self.evidence_store.hydrate(owner_id, chunk_pks)
