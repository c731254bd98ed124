"""Chat turn and chat attachment routes."""

import logging

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import StreamingResponse

from factchat.config import settings
from factchat.dependencies import Services, get_current_user_id, get_services
from factchat.schemas.chat import ChatFileUploadResponse, ChatRequest
from factchat.services.streaming import STREAM_HEADERS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


@router.post("/chat")
async def chat(
    data: ChatRequest,
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """
    Answer one chat turn as a UI message stream.

    Validation, ownership and routing failures are returned as JSON errors
    before the stream opens. Once streaming, failures arrive as an error frame.

    Args:
        data: Messages, thread id, attachment ids and trigger
        user_id: Authenticated principal
        services: Service container

    Returns:
        text/event-stream response
    """
    turn = await services.assembler.prepare_turn(user_id, data)
    logger.info(f"Streaming turn {turn.writer.message_id} for thread {data.thread_id}")
    return StreamingResponse(turn.frames(), media_type="text/event-stream", headers=STREAM_HEADERS)


@router.post("/chat/files", response_model=ChatFileUploadResponse)
async def upload_chat_file(
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """Attach a PDF or image to upcoming chat turns."""
    data = await file.read(settings.MAX_FILE_BYTES + 1)
    chat_file_id = await services.ingestion.register_chat_file(
        user_id,
        filename=file.filename or "upload",
        content_type=file.content_type or "",
        data=data,
    )
    return ChatFileUploadResponse(chat_file_id=chat_file_id)
