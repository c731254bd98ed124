"""Knowledge base file and chunk models."""

import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.orm import relationship

from factchat.config import settings
from factchat.database import Base
from factchat.models.chat import JSONType


class KnowledgeBaseFile(Base):
    """Uploaded source document and its ingestion status."""

    __tablename__ = "knowledge_base_files"

    file_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False)
    filename = Column(Text, nullable=False)
    content_type = Column(Text, nullable=False)
    size = Column(Integer, nullable=False)
    storage_id = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="processing")  # 'processing', 'ready', 'failed'
    error_message = Column(Text)
    chunk_count = Column(Integer)
    task_id = Column(Text)  # Document-processing job id
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    chunks = relationship("KnowledgeBaseChunk", back_populates="file", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_kb_files_user_created", "user_id", "created_at"),)


class KnowledgeBaseChunk(Base):
    """Embedded segment of a knowledge base file."""

    __tablename__ = "knowledge_base_chunks"

    chunk_pk = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False)
    file_id = Column(Uuid, ForeignKey("knowledge_base_files.file_id", ondelete="CASCADE"), nullable=False)
    chunk_index = Column(Integer, nullable=False)
    chunk_id = Column(Text)
    segment_id = Column(Text)
    page_number = Column(Integer)
    page_width = Column(Float)
    page_height = Column(Float)
    bbox = Column(JSONType)  # {left, top, width, height}
    content = Column(Text, nullable=False)
    embed = Column(Text, nullable=False)  # Text that was embedded
    embedding = Column(Vector(settings.EMBED_DIM))

    # Relationships
    file = relationship("KnowledgeBaseFile", back_populates="chunks")

    __table_args__ = (
        Index("idx_kb_chunks_file_id", "file_id"),
        Index("idx_kb_chunks_user_id", "user_id"),
        Index(
            "idx_kb_chunks_hnsw_embedding",
            "embedding",
            postgresql_using="hnsw",
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )
