# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# The retrieval service reads `documents` and `chunks` (populated by an
# external ingestion pipeline) and writes one `agentic_search_logs` row per
# logged search run.
#
# SCHEMA OVERVIEW:
#
# ┌─────────────────────┐       ┌──────────────────────────────────┐
# │  documents          │       │  chunks                          │
# ├─────────────────────┤       ├──────────────────────────────────┤
# │ id (PK, uuid str)   │──1:N─▶│ id (PK)                          │
# │ organization_id     │       │ document_id (FK → documents.id)  │
# │ title               │       │ content (text)                   │
# │ content_type        │       │ chunk_index (int)                │
# │ tag_ids (text[])    │       │ embedding (vector(1536))         │
# │ created_at          │       │ metadata_ (jsonb)                │
# └─────────────────────┘       │                                  │
#                               │ created_at                       │
#                               └──────────────────────────────────┘
#
#   agentic_search_logs: standalone audit table (no FKs), one row per run
#
# DESIGN DECISIONS:
#
# 1. Organization scope lives on `documents`. Every search is scoped to one
#    organization, so the vector query joins chunks → documents and filters
#    there; source allow-lists filter on the same join.
#    Content type and tags are document attributes for the same reason;
#    tags are a Postgres text[] so "any"/"all" matching maps onto the
#    array overlap (&&) and contains (@>) operators, backed by a GIN index.
#
# 2. pgvector `Vector(1536)` column with an HNSW cosine index.
#
# 3. JSONB for everything in the search log that is a nested structure
#    (sub-queries, per-iteration summaries, result ids). The log is for
#    inspection and offline analysis, not for joins.
# =============================================================================

import uuid
from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from agentic_rag.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class Document(Base):
    """
    A source document in an organization's knowledge base.

    Surfaces in search results as `source_id` / `source_title`.
    """

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4()),
    )
    organization_id: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    # "document", "recording", "video", "audio", "text"
    content_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="document", server_default="document",
    )
    tag_ids: Mapped[list[str]] = mapped_column(
        ARRAY(String(64)), nullable=False, default=list, server_default="{}",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    chunks: Mapped[list["Chunk"]] = relationship(
        "Chunk",
        back_populates="document",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, title='{self.title}')>"


class Chunk(Base):
    """A searchable piece of a document, with its embedding."""

    __tablename__ = "chunks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    document_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )

    content: Mapped[str] = mapped_column(Text, nullable=False)

    # Position within the document (0-indexed)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)

    # Must match the model/dimensions in services/embedder.py
    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(settings.embedding_dimensions),
        nullable=True,
    )

    # Named `metadata_` to avoid SQLAlchemy's built-in `.metadata`
    metadata_: Mapped[dict | None] = mapped_column(
        JSONB,
        nullable=True,
        default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    document: Mapped["Document"] = relationship("Document", back_populates="chunks")

    def __repr__(self) -> str:
        return (
            f"<Chunk(id={self.id}, doc_id={self.document_id}, "
            f"index={self.chunk_index})>"
        )


# HNSW index for cosine similarity search
chunk_embedding_idx = Index(
    "idx_chunk_embedding_hnsw",
    Chunk.embedding,
    postgresql_using="hnsw",
    postgresql_with={"m": 16, "ef_construction": 64},
    postgresql_ops={"embedding": "vector_cosine_ops"},
)

chunk_document_idx = Index("idx_chunk_document_id", Chunk.document_id)
document_org_idx = Index("idx_document_organization_id", Document.organization_id)
document_tags_idx = Index("idx_document_tag_ids", Document.tag_ids, postgresql_using="gin")


# =============================================================================
# Agentic Search Logs — One Row per Logged Run
# =============================================================================
#
# Written by services/search_log.py after the run has finished, with its
# own session. A failed insert is logged and dropped; the caller already
# has its result.
#
# DESIGN DECISION: Nullable org/user ids.
# Internal callers (tests, scripts) can run unscoped searches; logging them
# is still useful.
# =============================================================================


class AgenticSearchLog(Base):
    """Audit record of an agentic search run."""

    __tablename__ = "agentic_search_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    org_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    original_query: Mapped[str] = mapped_column(Text, nullable=False)
    query_intent: Mapped[str] = mapped_column(String(50), nullable=False)

    # [{"id", "text", "intent", "dependency", "priority"}, ...]
    subqueries: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    # [{"iteration", "subQuery", "chunksFound", "confidence", "gaps", "durationMs"}]
    iterations: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    # Ids of the returned chunks, in rank order
    final_results: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    total_duration_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    chunks_retrieved: Mapped[int] = mapped_column(Integer, nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    reasoning_path: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<AgenticSearchLog(id={self.id}, intent={self.query_intent}, "
            f"chunks={self.chunks_retrieved})>"
        )


search_log_org_idx = Index(
    "idx_search_log_org_created", AgenticSearchLog.org_id, AgenticSearchLog.created_at,
)
