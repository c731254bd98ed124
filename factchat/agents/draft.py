"""Draft agent and the prompts for the streamed generation branches."""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from factchat.agents.base import BaseAgent
from factchat.schemas.evidence import VerificationResult

logger = logging.getLogger(__name__)

AGENT_INSTRUCTIONS_TEMPLATE = """- You are a helpful assistant that can answer questions and help with tasks.
- Today's date is {date}."""

DRAFT_SYSTEM_PROMPT = """You write content on request: marketing copy, posts, emails, descriptions and articles.

Requirements:
1. Write exactly what was asked for, ready to use, with no preamble or closing remarks.
2. State facts precisely, keeping numbers, units, timeframes and populations explicit.
3. Use facts from any attached files where relevant; do not invent statistics.
"""

REWRITE_SYSTEM_PROMPT = """You correct drafts whose factual statements could not be verified against the user's knowledge base.

Rewrite the draft so that every unsupported statement is removed or replaced with wording that makes no unverified factual claim.
Keep the tone, structure and every statement that is not listed as unsupported.
Return only the corrected content."""

SUMMARY_SYSTEM_PROMPT = """You report the results of checking statements against the user's knowledge base.

Requirements:
1. Go through the claims in the order given.
2. For each supported claim, say it is supported and name the document it comes from.
3. For each unsupported claim, state explicitly that it is not supported by the knowledge base.
4. Be concise. Do not add facts that are not in the results."""


def build_agent_instructions(now: Optional[datetime] = None) -> str:
    """System prompt for general conversation."""
    now = now or datetime.now()
    return AGENT_INSTRUCTIONS_TEMPLATE.format(date=now.strftime("%Y-%m-%d"))


def build_rewrite_prompt(draft: str, failed_claims: List[VerificationResult]) -> str:
    """User prompt asking for a corrected version of a draft."""
    unsupported = "\n".join(f"- {result.claim}" for result in failed_claims)
    return f"""Draft:
{draft}

Unsupported statements:
{unsupported}
"""


def format_verification_results(results: List[VerificationResult]) -> str:
    """Render verdicts in claim order for the summary prompt."""
    if not results:
        return "No checkable factual claims were found."

    lines = []
    for index, result in enumerate(results, start=1):
        if result.is_supported:
            line = f"{index}. SUPPORTED: {result.claim}"
            if result.document_name:
                line += f"\n   Document: {result.document_name}"
            if result.matching_text:
                line += f"\n   Excerpt: \"{result.matching_text}\""
            if result.source is None:
                line += "\n   (no citation available)"
        else:
            line = f"{index}. UNSUPPORTED: {result.claim}"
        lines.append(line)
    return "\n".join(lines)


def build_summary_prompt(results: List[VerificationResult], draft: Optional[str] = None) -> str:
    """User prompt asking for a summary of verification results."""
    prompt = ""
    if draft is not None:
        prompt += f"The following draft was written and checked; it has already been shown to the user above your reply. Do not repeat it.\n\nDraft:\n{draft}\n\n"
    prompt += f"Verification results:\n{format_verification_results(results)}\n"
    return prompt


class DraftAgent(BaseAgent):
    """Agent writing requested content before it is verified."""

    MODEL_SETTING = "DRAFT_MODEL"
    TEMPERATURE = 0.5
    MAX_TOKENS = 3000

    async def draft(self, messages: List[Dict[str, str]], context: str = "") -> str:
        """
        Write the requested content without streaming.

        Args:
            messages: Conversation as role/content dicts
            context: Extra system context such as attached file contents

        Returns:
            Draft text
        """
        system = "\n\n".join(filter(None, [DRAFT_SYSTEM_PROMPT, context]))
        draft = await self._complete_text([{"role": "system", "content": system}, *messages])
        logger.info(f"Drafted {len(draft)} characters")
        return draft
