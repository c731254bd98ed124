"""Base agent with structured output parsing and validation."""

import json
import logging
from typing import Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from factchat.config import settings
from factchat.errors import ModelOutputError
from factchat.services.llm_client import LLMClient

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def strip_code_fences(text: str) -> str:
    """Remove a markdown code fence wrapped around a JSON answer."""
    text = text.strip()
    if "```json" in text:
        return text.split("```json")[1].split("```")[0].strip()
    if text.startswith("```"):
        return text.split("```")[1].split("```")[0].strip()
    return text


class BaseAgent:
    """Base class for all agents making a single LLM call."""

    MODEL_SETTING = "CHAT_MODEL"
    TEMPERATURE = 0.1
    MAX_TOKENS = 2000

    def __init__(self, llm_client: LLMClient, model: Optional[str] = None):
        """Initialize base agent."""
        self.llm = llm_client
        self.model = model or getattr(settings, self.MODEL_SETTING)

    async def _complete_json(
        self,
        schema: Type[SchemaT],
        system: str,
        user: str,
    ) -> SchemaT:
        """
        Run one JSON-mode completion and validate it against a schema.

        Args:
            schema: Pydantic model the output must satisfy
            system: System prompt
            user: User prompt

        Returns:
            Validated schema instance

        Raises:
            ModelOutputError: If the output is not valid JSON for the schema
        """
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        response = await self.llm.chat_completion(
            model=self.model,
            messages=messages,
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
            json_mode=True,
        )
        return self._parse(schema, response)

    async def _complete_text(self, messages: List[Dict[str, str]]) -> str:
        """Run one plain-text completion."""
        response = await self.llm.chat_completion(
            model=self.model,
            messages=messages,
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )
        return response.strip()

    def _parse(self, schema: Type[SchemaT], response: str) -> SchemaT:
        name = self.__class__.__name__
        try:
            data = json.loads(strip_code_fences(response))
        except json.JSONDecodeError as e:
            logger.error(f"Agent {name} returned invalid JSON: {e}")
            raise ModelOutputError(f"{name} returned invalid JSON") from e

        try:
            return schema.model_validate(data)
        except ValidationError as e:
            logger.error(f"Agent {name} output failed validation: {e}")
            raise ModelOutputError(f"{name} output did not match {schema.__name__}") from e
