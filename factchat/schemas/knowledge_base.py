"""Knowledge base schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class UploadResponse(BaseModel):
    """Response after registering an upload."""

    file_id: UUID


class KnowledgeBaseFileResponse(BaseModel):
    """Knowledge base file listing entry."""

    model_config = ConfigDict(from_attributes=True)

    file_id: UUID
    filename: str
    content_type: str
    url: str
    size: int
    status: str
    error_message: Optional[str] = None
    chunk_count: Optional[int] = None
    created_at: datetime
    updated_at: datetime
