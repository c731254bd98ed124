"""Thread title agent."""

import logging

from factchat.agents.base import BaseAgent
from factchat.models.chat import DEFAULT_THREAD_TITLE

logger = logging.getLogger(__name__)

MAX_TITLE_WORDS = 5

TITLE_SYSTEM_PROMPT = "Write a 3-5 word Title Case chat title from the user's first message. No quotes."


class ThreadTitleAgent(BaseAgent):
    """Agent naming a thread from its first message."""

    MODEL_SETTING = "TITLE_MODEL"
    TEMPERATURE = 0.3
    MAX_TOKENS = 30

    async def generate(self, message: str) -> str:
        """Return a short title, or the default title if the model gave nothing usable."""
        text = await self._complete_text(
            [
                {"role": "system", "content": TITLE_SYSTEM_PROMPT},
                {"role": "user", "content": f"The user's message is: {message}"},
            ]
        )
        words = " ".join(text.split()[:MAX_TITLE_WORDS])
        return words or DEFAULT_THREAD_TITLE
