"""Claim extraction agent."""

import logging
from typing import List, Optional

from factchat.agents.base import BaseAgent
from factchat.schemas.agents import ClaimsOutput

logger = logging.getLogger(__name__)

EXTRACT_CLAIMS_SYSTEM_PROMPT = """Decompose the text into atomic, self-contained, checkable factual statements.

Requirements:
1. Each claim states exactly one fact and can be understood without the rest of the text (resolve pronouns and references).
2. Preserve every qualifier: population, comparator, dosage, timeframe, units, quantities and conditions.
3. Exclude opinions, questions, instructions, greetings and marketing language with no factual content.
4. Do not add facts that are not in the text.
5. If there is nothing checkable, return an empty list.

Return JSON: {"claims": ["...", "..."]}
"""


class ClaimExtractor(BaseAgent):
    """Agent extracting checkable claims from free text."""

    MODEL_SETTING = "EXTRACT_MODEL"
    TEMPERATURE = 0.1
    MAX_TOKENS = 3000

    async def extract(self, content: str, system_prompt: Optional[str] = None) -> List[str]:
        """
        Extract claims from text.

        Args:
            content: Text to decompose
            system_prompt: Override for the extraction instructions

        Returns:
            Claims in the order the model listed them; empty when there is nothing to check
        """
        if not content.strip():
            return []

        output = await self._complete_json(
            ClaimsOutput,
            system=system_prompt or EXTRACT_CLAIMS_SYSTEM_PROMPT,
            user=content,
        )
        claims = [claim.strip() for claim in output.claims if claim.strip()]
        logger.info(f"Extracted {len(claims)} claims")
        return claims
