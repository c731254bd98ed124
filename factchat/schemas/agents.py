"""Structured LLM output schemas."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Route(str, Enum):
    """Intent of an inbound user turn."""

    GENERAL_CHAT = "general_chat"
    FACT_CHECK_INPUT = "fact_check_input"
    GENERATE_CONTENT = "generate_content"


# Intent Router
class RouteOutput(BaseModel):
    """Output from IntentRouter."""

    route: Route


# Claim Extractor
class ClaimsOutput(BaseModel):
    """Output from ClaimExtractor."""

    claims: List[str]


# Claim Adjudicator
class VerdictOutput(BaseModel):
    """Output from ClaimAdjudicator."""

    model_config = ConfigDict(populate_by_name=True)

    is_supported: bool = Field(alias="isSupported")
    document_name: Optional[str] = None
    matching_text: Optional[str] = None
    source_id: Optional[str] = None
