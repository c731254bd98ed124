"""Knowledge base routes."""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, File, UploadFile

from factchat.config import settings
from factchat.dependencies import Services, get_current_user_id, get_services
from factchat.schemas.evidence import SearchRequest, SearchResponse
from factchat.schemas.knowledge_base import KnowledgeBaseFileResponse, UploadResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/knowledge-base", tags=["knowledge-base"])


@router.post("/files", response_model=UploadResponse)
async def upload_file(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """
    Upload a PDF or image and schedule its ingestion.

    Args:
        file: Uploaded file
        user_id: Authenticated principal
        services: Service container

    Returns:
        UploadResponse with the new file id
    """
    # One byte past the limit is enough to reject oversize files
    data = await file.read(settings.MAX_FILE_BYTES + 1)
    file_id = await services.ingestion.register_upload(
        user_id,
        filename=file.filename or "upload",
        content_type=file.content_type or "",
        data=data,
    )
    background_tasks.add_task(services.ingestion.process_file, file_id)
    return UploadResponse(file_id=file_id)


@router.get("/files", response_model=List[KnowledgeBaseFileResponse])
async def list_files(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """List the caller's files with their processing status."""
    return await services.ingestion.list_files(user_id)


@router.post("/files/{file_id}/retry")
async def retry_file(
    file_id: UUID,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """Re-run ingestion for a file."""
    await services.ingestion.retry(user_id, file_id)
    background_tasks.add_task(services.ingestion.process_file, file_id)
    return {"file_id": str(file_id), "status": "processing"}


@router.delete("/files/{file_id}")
async def delete_file(
    file_id: UUID,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    await services.ingestion.delete(user_id, file_id)
    return {"file_id": str(file_id), "status": "deleted"}


@router.post("/search", response_model=SearchResponse)
async def search(
    data: SearchRequest,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """Semantic search over the caller's knowledge base."""
    matches = await services.retriever.retrieve(user_id, data.query, data.limit)
    return SearchResponse(matches=matches)
