"""Thread routes."""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query

from factchat.dependencies import Services, get_current_user_id, get_services
from factchat.schemas.chat import MessageResponse, ThreadCreate, ThreadResponse
from factchat.services.threads import generate_thread_title, to_message_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/threads", tags=["threads"])


@router.post("", response_model=ThreadResponse)
async def create_thread(
    background_tasks: BackgroundTasks,
    data: Optional[ThreadCreate] = None,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """Create a thread; a first message schedules a title job."""
    thread = await services.repository.create_thread(user_id)

    if data is not None and data.message and data.message.strip():
        background_tasks.add_task(
            generate_thread_title,
            services.title_agent,
            services.repository,
            user_id,
            thread.thread_id,
            data.message,
        )

    return thread


@router.get("", response_model=List[ThreadResponse])
async def list_threads(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """List the caller's threads, most recently active first."""
    return await services.repository.list_threads(user_id, limit)


@router.get("/{thread_id}", response_model=ThreadResponse)
async def get_thread(
    thread_id: UUID,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    return await services.repository.get_thread(user_id, thread_id)


@router.get("/{thread_id}/messages", response_model=List[MessageResponse])
async def list_messages(
    thread_id: UUID,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """Messages of a thread in the order they were appended."""
    messages = await services.repository.list_messages(user_id, thread_id)
    return [to_message_response(message) for message in messages]
