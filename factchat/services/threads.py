"""Owner-scoped persistence for chat threads, messages and attachments."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from factchat.errors import AppError, ErrorCode
from factchat.models.chat import DEFAULT_THREAD_TITLE, ChatFile, ChatMessage, ChatThread
from factchat.schemas.chat import MessageMetadata, MessageResponse, dump_metadata, parse_metadata

logger = logging.getLogger(__name__)

FILE_PART_TYPE = "file"


def strip_file_parts(parts: Sequence[Any]) -> List[Any]:
    """Drop raw file attachment parts; attachments are re-resolved at render time."""
    return [part for part in parts if not (isinstance(part, dict) and part.get("type") == FILE_PART_TYPE)]


def to_message_response(message: ChatMessage) -> MessageResponse:
    metadata = parse_metadata(message.message_metadata)
    return MessageResponse(
        message_id=message.message_id,
        role=message.role,
        parts=message.parts,
        metadata=dump_metadata(metadata),
        created_at=message.created_at,
    )


class ChatRepository:
    """Threads and messages, every access checked against the caller."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize the repository."""
        self.session_factory = session_factory

    async def _owned_thread(self, db: AsyncSession, owner_id: str, thread_id: UUID) -> ChatThread:
        thread = await db.get(ChatThread, thread_id)
        if thread is None or thread.user_id != owner_id:
            raise AppError(ErrorCode.THREAD_NOT_FOUND)
        return thread

    async def create_thread(self, owner_id: str) -> ChatThread:
        """Create a thread with the default title."""
        async with self.session_factory() as db:
            thread = ChatThread(user_id=owner_id, title=DEFAULT_THREAD_TITLE)
            db.add(thread)
            await db.commit()
            await db.refresh(thread)

        logger.info(f"Created thread {thread.thread_id}")
        return thread

    async def list_threads(self, owner_id: str, limit: int = 50) -> List[ChatThread]:
        """Most recently updated threads first."""
        stmt = (
            select(ChatThread)
            .where(ChatThread.user_id == owner_id)
            .order_by(ChatThread.updated_at.desc())
            .limit(limit)
        )
        async with self.session_factory() as db:
            return list((await db.execute(stmt)).scalars().all())

    async def get_thread(self, owner_id: str, thread_id: UUID) -> ChatThread:
        """
        Resolve a thread under the caller's identity.

        Raises:
            AppError: THREAD_NOT_FOUND if missing or owned by someone else
        """
        async with self.session_factory() as db:
            return await self._owned_thread(db, owner_id, thread_id)

    async def update_title_if_default(self, owner_id: str, thread_id: UUID, title: str) -> bool:
        """Set a derived title only while the thread still has the default one."""
        stmt = (
            update(ChatThread)
            .where(
                ChatThread.thread_id == thread_id,
                ChatThread.user_id == owner_id,
                ChatThread.title == DEFAULT_THREAD_TITLE,
            )
            .values(title=title, updated_at=datetime.utcnow())
        )
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            await db.commit()
        return result.rowcount > 0

    async def append_message(
        self,
        owner_id: str,
        thread_id: UUID,
        role: str,
        message_id: str,
        parts: Sequence[Dict[str, Any]],
        metadata: Optional[MessageMetadata] = None,
    ) -> ChatMessage:
        """
        Append a turn to a thread.

        Raw file parts are stripped; only user turns record the owner.

        Raises:
            AppError: THREAD_NOT_FOUND if the thread is not the caller's
        """
        async with self.session_factory() as db:
            thread = await self._owned_thread(db, owner_id, thread_id)
            now = datetime.utcnow()
            message = ChatMessage(
                thread_id=thread_id,
                user_id=owner_id if role == "user" else None,
                role=role,
                message_id=message_id,
                parts=strip_file_parts(parts),
                message_metadata=dump_metadata(metadata),
                created_at=now,
            )
            thread.updated_at = now
            db.add(message)
            await db.commit()
            await db.refresh(message)

        logger.info(f"Appended {role} message {message_id} to thread {thread_id}")
        return message

    async def list_messages(self, owner_id: str, thread_id: UUID) -> List[ChatMessage]:
        """Messages of a thread in insertion order."""
        async with self.session_factory() as db:
            await self._owned_thread(db, owner_id, thread_id)
            stmt = (
                select(ChatMessage)
                .where(ChatMessage.thread_id == thread_id)
                .order_by(ChatMessage.message_pk)
            )
            return list((await db.execute(stmt)).scalars().all())

    async def get_files_for_chat(self, owner_id: str, chat_file_ids: Sequence[UUID]) -> List[ChatFile]:
        """
        Load chat attachments in request order.

        Raises:
            AppError: FORBIDDEN if any id is missing or owned by someone else
        """
        if not chat_file_ids:
            return []

        async with self.session_factory() as db:
            stmt = select(ChatFile).where(ChatFile.chat_file_id.in_(list(chat_file_ids)))
            files = {f.chat_file_id: f for f in (await db.execute(stmt)).scalars().all()}

        results = []
        for chat_file_id in chat_file_ids:
            file = files.get(chat_file_id)
            if file is None or file.user_id != owner_id:
                raise AppError(ErrorCode.FORBIDDEN)
            results.append(file)
        return results


async def generate_thread_title(title_agent, repository: ChatRepository, owner_id: str, thread_id: UUID, message: str) -> None:
    """Background job deriving a thread title from its first message."""
    try:
        title = await title_agent.generate(message)
        updated = await repository.update_title_if_default(owner_id, thread_id, title)
        logger.info(f"Title job for thread {thread_id} finished (updated: {updated})")
    except Exception as e:
        logger.error(f"Title job for thread {thread_id} failed: {e}", exc_info=True)
