"""Initial schema with pgvector

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects.postgresql import JSONB, UUID

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBED_DIM = 1536


def upgrade() -> None:
    # Enable pgvector extension
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # Check if tables already exist and skip if so
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = inspector.get_table_names()

    if "chat_threads" in existing_tables:
        return

    # Chat
    op.create_table(
        "chat_threads",
        sa.Column("thread_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.Text, nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_chat_threads_user_id", "chat_threads", ["user_id", "updated_at"])

    op.create_table(
        "chat_messages",
        sa.Column("message_pk", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "thread_id",
            UUID(as_uuid=True),
            sa.ForeignKey("chat_threads.thread_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Text),
        sa.Column("role", sa.Text, nullable=False),
        sa.Column("message_id", sa.Text, nullable=False),
        sa.Column("parts", JSONB, nullable=False),
        sa.Column("metadata", JSONB),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_chat_messages_thread", "chat_messages", ["thread_id", "message_pk"])

    op.create_table(
        "chat_files",
        sa.Column("chat_file_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.Text, nullable=False),
        sa.Column("filename", sa.Text, nullable=False),
        sa.Column("content_type", sa.Text, nullable=False),
        sa.Column("size", sa.Integer, nullable=False),
        sa.Column("storage_id", sa.Text, nullable=False),
        sa.Column("markdown", sa.Text),
        sa.Column("expires_at", sa.DateTime, nullable=False),
    )
    op.create_index("idx_chat_files_user_id", "chat_files", ["user_id"])
    op.create_index("idx_chat_files_expires_at", "chat_files", ["expires_at"])

    # Knowledge base
    op.create_table(
        "knowledge_base_files",
        sa.Column("file_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.Text, nullable=False),
        sa.Column("filename", sa.Text, nullable=False),
        sa.Column("content_type", sa.Text, nullable=False),
        sa.Column("size", sa.Integer, nullable=False),
        sa.Column("storage_id", sa.Text, nullable=False),
        sa.Column("status", sa.Text, nullable=False),
        sa.Column("error_message", sa.Text),
        sa.Column("chunk_count", sa.Integer),
        sa.Column("task_id", sa.Text),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("idx_kb_files_user_created", "knowledge_base_files", ["user_id", "created_at"])

    op.create_table(
        "knowledge_base_chunks",
        sa.Column("chunk_pk", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Text, nullable=False),
        sa.Column(
            "file_id",
            UUID(as_uuid=True),
            sa.ForeignKey("knowledge_base_files.file_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("chunk_index", sa.Integer, nullable=False),
        sa.Column("chunk_id", sa.Text),
        sa.Column("segment_id", sa.Text),
        sa.Column("page_number", sa.Integer),
        sa.Column("page_width", sa.Float),
        sa.Column("page_height", sa.Float),
        sa.Column("bbox", JSONB),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("embed", sa.Text, nullable=False),
        sa.Column("embedding", Vector(EMBED_DIM)),
    )
    op.create_index("idx_kb_chunks_file_id", "knowledge_base_chunks", ["file_id"])
    op.create_index("idx_kb_chunks_user_id", "knowledge_base_chunks", ["user_id"])
    # HNSW needs no training data, unlike ivfflat
    op.create_index(
        "idx_kb_chunks_hnsw_embedding",
        "knowledge_base_chunks",
        ["embedding"],
        postgresql_using="hnsw",
        postgresql_ops={"embedding": "vector_cosine_ops"},
    )


def downgrade() -> None:
    op.drop_table("knowledge_base_chunks")
    op.drop_table("knowledge_base_files")
    op.drop_table("chat_files")
    op.drop_table("chat_messages")
    op.drop_table("chat_threads")
    op.execute("DROP EXTENSION IF EXISTS vector")
