"""Claim verification: extract, retrieve and adjudicate concurrently."""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from factchat.agents.adjudicator import ClaimAdjudicator
from factchat.agents.claim import ClaimExtractor
from factchat.config import settings
from factchat.schemas.evidence import VerificationResult
from factchat.services.retrieval import EvidenceRetriever

logger = logging.getLogger(__name__)

SOURCE_MEDIA_TYPE = "application/pdf"


class VerificationOrchestrator:
    """Coordinates claim extraction, evidence retrieval and adjudication."""

    def __init__(
        self,
        extractor: ClaimExtractor,
        retriever: EvidenceRetriever,
        adjudicator: ClaimAdjudicator,
        search_limit: Optional[int] = None,
    ):
        """Initialize the orchestrator."""
        self.extractor = extractor
        self.retriever = retriever
        self.adjudicator = adjudicator
        self.search_limit = search_limit or settings.VERIFY_SEARCH_LIMIT

    async def verify(
        self,
        owner_id: str,
        content: str,
        extract_prompt: Optional[str] = None,
        adjudicate_prompt: Optional[str] = None,
    ) -> List[VerificationResult]:
        """
        Verify every claim in a piece of text.

        Claims are checked concurrently. Results come back in the order the
        extractor listed the claims. If any claim fails to retrieve or
        adjudicate, the whole verification fails.

        Args:
            owner_id: Principal whose knowledge base is searched
            content: Text to verify
            extract_prompt: Override for the extraction instructions
            adjudicate_prompt: Override for the adjudication instructions

        Returns:
            One VerificationResult per claim; empty when nothing is checkable
        """
        claims = await self.extractor.extract(content, extract_prompt)
        if not claims:
            logger.info("No claims to verify")
            return []

        async def check(index: int, claim: str) -> Tuple[int, VerificationResult]:
            evidence = await self.retriever.retrieve(owner_id, claim, self.search_limit)
            result = await self.adjudicator.adjudicate(claim, evidence, adjudicate_prompt)
            return index, result

        tasks = [asyncio.ensure_future(check(index, claim)) for index, claim in enumerate(claims)]
        try:
            tagged = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        results: List[Optional[VerificationResult]] = [None] * len(claims)
        for index, result in tagged:
            results[index] = result

        supported = sum(1 for r in results if r.is_supported)
        logger.info(f"Verified {len(results)} claims, {supported} supported")
        return results


def failed_claims(results: List[VerificationResult]) -> List[VerificationResult]:
    """Results whose claim is not supported."""
    return [result for result in results if not result.is_supported]


def to_source_parts(results: List[VerificationResult]) -> List[Dict[str, Any]]:
    """
    Build citation parts for supported, cited claims.

    Each evidence chunk appears once even if several claims cite it.
    """
    parts = []
    seen = set()
    for result in results:
        source = result.source
        if source is None or source.source_id in seen:
            continue
        seen.add(source.source_id)
        parts.append(
            {
                "type": "source-document",
                "sourceId": source.source_id,
                "mediaType": SOURCE_MEDIA_TYPE,
                "title": source.filename,
                "filename": source.filename,
                "providerMetadata": {
                    "rag": {
                        "fileId": source.file_id,
                        "segmentId": source.segment_id,
                        "chunkId": source.chunk_id,
                        "pageNumber": source.page_number,
                        "pageWidth": source.page_width,
                        "pageHeight": source.page_height,
                        "bbox": source.bbox.model_dump() if source.bbox else None,
                        "snippet": result.matching_text,
                    }
                },
            }
        )
    return parts
