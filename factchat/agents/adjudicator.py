"""Claim adjudication agent."""

import logging
from typing import List, Optional

from factchat.agents.base import BaseAgent
from factchat.schemas.agents import VerdictOutput
from factchat.schemas.evidence import EvidenceMatch, VerificationResult

logger = logging.getLogger(__name__)

MAX_EXCERPT_WORDS = 25

VERIFY_CLAIM_SYSTEM_PROMPT = """Decide whether the context supports the claim.

The context is a list of evidence blocks. Each block starts with its source_id and document name.

If the claim is supported:
- set isSupported to true
- pick exactly one source_id, the block that best supports the claim
- copy that block's document name into document_name
- copy a short verbatim excerpt (at most 25 words) from that block into matching_text

If the claim is not supported, or the context is unrelated or contradicts it:
- set isSupported to false and set document_name, matching_text and source_id to null

Return JSON: {"isSupported": true|false, "document_name": string|null, "matching_text": string|null, "source_id": string|null}
"""


def format_evidence(evidence: List[EvidenceMatch]) -> str:
    """Render evidence blocks tagged with their source ids."""
    return "\n\n".join(
        f"source_id: {item.source_id}\nDocument: {item.filename}\n{item.content}" for item in evidence
    )


def truncate_words(text: str, max_words: int = MAX_EXCERPT_WORDS) -> str:
    words = text.split()
    if len(words) <= max_words:
        return text.strip()
    return " ".join(words[:max_words])


class ClaimAdjudicator(BaseAgent):
    """Agent deciding support for one claim and picking its best citation."""

    MODEL_SETTING = "VERIFY_MODEL"
    TEMPERATURE = 0.1
    MAX_TOKENS = 1000

    async def adjudicate(
        self,
        claim: str,
        evidence: List[EvidenceMatch],
        system_prompt: Optional[str] = None,
    ) -> VerificationResult:
        """
        Adjudicate a claim against the evidence retrieved for it.

        A ``source_id`` that is not among ``evidence`` is never propagated; the
        claim is then reported as supported without a citation.

        Args:
            claim: The claim to check
            evidence: Evidence retrieved for this claim only
            system_prompt: Override for the adjudication instructions

        Returns:
            VerificationResult for the claim
        """
        if not evidence:
            logger.info("No evidence retrieved, claim is unsupported")
            return VerificationResult(claim=claim, is_supported=False)

        verdict = await self._complete_json(
            VerdictOutput,
            system=system_prompt or VERIFY_CLAIM_SYSTEM_PROMPT,
            user=f"Claim: {claim}\nContext: {format_evidence(evidence)}",
        )

        if not verdict.is_supported:
            return VerificationResult(claim=claim, is_supported=False)

        source = None
        if verdict.source_id is not None:
            source = next((item for item in evidence if item.source_id == verdict.source_id), None)
            if source is None:
                logger.warning(f"Adjudicator cited unknown source_id {verdict.source_id!r}, dropping citation")

        if source is None:
            return VerificationResult(claim=claim, is_supported=True)

        return VerificationResult(
            claim=claim,
            is_supported=True,
            document_name=source.filename,
            matching_text=truncate_words(verdict.matching_text) if verdict.matching_text else None,
            source=source,
        )
