"""Chat thread, message and attachment models."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from factchat.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")

DEFAULT_THREAD_TITLE = "New chat"


class ChatThread(Base):
    """Conversation container owned by a single user."""

    __tablename__ = "chat_threads"

    thread_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False)
    title = Column(Text, nullable=False, default=DEFAULT_THREAD_TITLE)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    messages = relationship("ChatMessage", back_populates="thread", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_chat_threads_user_id", "user_id", "updated_at"),)


class ChatMessage(Base):
    """Append-only persisted turn."""

    __tablename__ = "chat_messages"

    message_pk = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(Uuid, ForeignKey("chat_threads.thread_id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Text)  # Set for user turns only
    role = Column(Text, nullable=False)  # 'system', 'user', 'assistant'
    message_id = Column(Text, nullable=False)  # Client-facing message id
    parts = Column(JSONType, nullable=False)
    message_metadata = Column("metadata", JSONType)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    thread = relationship("ChatThread", back_populates="messages")

    __table_args__ = (Index("idx_chat_messages_thread", "thread_id", "message_pk"),)


class ChatFile(Base):
    """File attached to a chat turn; markdown is filled in by the OCR pipeline."""

    __tablename__ = "chat_files"

    chat_file_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False)
    filename = Column(Text, nullable=False)
    content_type = Column(Text, nullable=False)
    size = Column(Integer, nullable=False)
    storage_id = Column(Text, nullable=False)
    markdown = Column(Text)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_chat_files_user_id", "user_id"),
        Index("idx_chat_files_expires_at", "expires_at"),
    )
