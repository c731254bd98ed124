"""SQLAlchemy ORM models."""

from factchat.models.chat import ChatFile, ChatMessage, ChatThread
from factchat.models.knowledge_base import KnowledgeBaseChunk, KnowledgeBaseFile

__all__ = [
    "ChatThread",
    "ChatMessage",
    "ChatFile",
    "KnowledgeBaseFile",
    "KnowledgeBaseChunk",
]
