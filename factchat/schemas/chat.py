"""Chat request, message and metadata schemas."""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

Role = Literal["system", "user", "assistant"]

REGENERATE_TRIGGER = "regenerate-message"


class UIMessage(BaseModel):
    """A client message made of ordered heterogeneous parts."""

    id: str = Field(min_length=1)
    role: Role
    parts: List[Dict[str, Any]] = Field(min_length=1)
    metadata: Optional[Any] = None

    @field_validator("parts")
    @classmethod
    def _check_parts(cls, parts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        for part in parts:
            part_type = part.get("type")
            if not isinstance(part_type, str) or not part_type:
                raise ValueError("Every part needs a string type")
            if part_type in ("text", "reasoning") and not isinstance(part.get("text"), str):
                raise ValueError(f"{part_type} part needs a string text")
        return parts


class ChatRequest(BaseModel):
    """Inbound turn request body."""

    model_config = ConfigDict(populate_by_name=True)

    messages: List[Dict[str, Any]] = Field(default_factory=list)
    thread_id: Optional[UUID] = Field(default=None, alias="threadId")
    chat_file_ids: List[UUID] = Field(default_factory=list, alias="chatFileIds")
    trigger: Optional[str] = None


# Message metadata
class UserTurnMetadata(BaseModel):
    """Metadata stored with user turns that referenced attachments."""

    kind: Literal["user_turn"] = "user_turn"
    chat_file_ids: List[str] = Field(default_factory=list)


class AssistantTurnMetadata(BaseModel):
    """Metadata stored with assistant turns that did not complete normally."""

    kind: Literal["assistant_turn"] = "assistant_turn"
    aborted: bool = False
    error: bool = False


class UnknownMetadata(BaseModel):
    """Stored metadata of a shape this version does not recognise."""

    kind: Literal["unknown"] = "unknown"
    raw: Any = None


MessageMetadata = Union[UserTurnMetadata, AssistantTurnMetadata, UnknownMetadata]

_known_metadata = TypeAdapter(
    Annotated[Union[UserTurnMetadata, AssistantTurnMetadata], Field(discriminator="kind")]
)


def parse_metadata(raw: Any) -> Optional[MessageMetadata]:
    """Read stored metadata, falling back to UnknownMetadata for foreign shapes."""
    if raw is None:
        return None
    if isinstance(raw, dict) and raw.get("kind") == "unknown":
        return UnknownMetadata(raw=raw.get("raw"))
    try:
        return _known_metadata.validate_python(raw)
    except ValidationError:
        return UnknownMetadata(raw=raw)


def dump_metadata(metadata: Optional[MessageMetadata]) -> Optional[Dict[str, Any]]:
    """Serialize metadata for storage."""
    if metadata is None:
        return None
    return metadata.model_dump()


# Threads
class ThreadCreate(BaseModel):
    """Schema for creating a thread."""

    message: Optional[str] = None


class ThreadResponse(BaseModel):
    """Thread summary."""

    model_config = ConfigDict(from_attributes=True)

    thread_id: UUID
    title: str
    created_at: datetime
    updated_at: datetime


class MessageResponse(BaseModel):
    """Persisted message as returned to clients."""

    message_id: str
    role: Role
    parts: List[Dict[str, Any]]
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime


class ChatFileUploadResponse(BaseModel):
    """Id to pass back in chatFileIds on a later turn."""

    model_config = ConfigDict(populate_by_name=True)

    chat_file_id: UUID = Field(alias="chatFileId")
