"""Intent router agent."""

import logging

from factchat.agents.base import BaseAgent
from factchat.schemas.agents import Route, RouteOutput

logger = logging.getLogger(__name__)

ROUTER_SYSTEM_PROMPT = """You route messages for an assistant that checks facts against the user's own knowledge base.

Classify the latest user message into exactly one route:
- general_chat: greetings, small talk, questions, requests for help or explanations, anything that is neither of the routes below.
- fact_check_input: the user supplies a statement, paragraph or document excerpt and wants to know whether it is true, accurate or supported.
- generate_content: the user asks you to write new content (copy, a post, an email, a description, an article) whose factual statements must be accurate.

Return JSON: {"route": "general_chat" | "fact_check_input" | "generate_content"}
"""


class IntentRouter(BaseAgent):
    """Agent classifying an inbound turn into a route."""

    MODEL_SETTING = "ROUTER_MODEL"
    TEMPERATURE = 0.0
    MAX_TOKENS = 50

    async def classify(self, latest_user_text: str) -> Route:
        """
        Classify the latest user message.

        Args:
            latest_user_text: Text of the newest user turn

        Returns:
            The route for this turn

        Raises:
            ModelOutputError: If the model does not return one of the three routes
        """
        output = await self._complete_json(
            RouteOutput,
            system=ROUTER_SYSTEM_PROMPT,
            user=f"Latest user message:\n{latest_user_text}",
        )
        logger.info(f"Routed turn to {output.route.value}")
        return output.route
