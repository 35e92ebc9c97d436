# =============================================================================
# Vector Store Abstraction — Pluggable Similarity Search
# =============================================================================
#
# Read side of the knowledge base: given a query embedding and filters,
# return the most similar chunks. Two interchangeable backends:
#
#   VectorStore (Protocol)
#   ├── PgVectorStore     — PostgreSQL + pgvector, chunks JOIN documents
#   └── ChromaVectorStore — ChromaDB collection, org/doc ids in metadata
#
# On top sits VectorStoreSearchBackend, the SearchBackend the agentic loop
# talks to: embed sub-query text → store.search() → similarity threshold.
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Any class with the right `search()` works, which keeps test doubles
# trivial.
#
# DESIGN DECISION: Threshold applied in Python, not in SQL.
# The stores return the top `limit` rows by distance; the backend drops
# those below the similarity threshold. Both stores then behave the same,
# and the HNSW index is used for the ORDER BY/LIMIT as intended.
#
# DESIGN DECISION: Scores are cosine similarity, 1 - cosine distance.
# For normalised embeddings (OpenAI's are) that lands in [0, 1].
#
# SCOPING FILTERS (all optional, combined with AND):
#   org_id         documents.organization_id   / metadata "organization_id"
#   source_ids     chunks.document_id IN (...) / metadata "document_id"
#   content_types  documents.content_type      / metadata "content_type"
#   tag_ids        documents.tag_ids && or @>  / one boolean "tag_<id>" key
#                  per tag; tag_filter_mode "any" needs one tag, "all" every tag
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import chromadb
from sqlalchemy import Select, select

from agentic_rag.agents.types import RetrievedItem, SearchFilters
from agentic_rag.config import settings
from agentic_rag.db.engine import async_session_factory
from agentic_rag.db.models import Chunk, Document
from agentic_rag.services.embedder import embed_query

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class VectorStore(Protocol):
    async def search(
        self,
        query_embedding: list[float],
        filters: SearchFilters,
    ) -> list[RetrievedItem]:
        """
        Find the chunks most similar to the query embedding.

        Args:
            query_embedding: The query vector.
            filters: Organization scope, source allow-list and `limit`.
                The threshold is NOT applied here.

        Returns:
            Up to `filters.limit` items, highest similarity first.
        """
        ...


# ---------------------------------------------------------------------------
# Implementation 1: pgvector (PostgreSQL)
# ---------------------------------------------------------------------------


class PgVectorStore:
    """pgvector-backed store; chunks are joined to documents for scoping."""

    async def search(
        self,
        query_embedding: list[float],
        filters: SearchFilters,
    ) -> list[RetrievedItem]:
        stmt = build_pgvector_query(query_embedding, filters)

        async with async_session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        logger.debug(
            "pgvector search returned %d rows (limit=%d, org=%s, sources=%s)",
            len(rows), filters.limit, filters.org_id,
            len(filters.source_ids) if filters.source_ids else "all",
        )

        return [
            RetrievedItem(
                id=str(chunk.id),
                content=chunk.content,
                source_id=chunk.document_id,
                source_title=title,
                relevance_score=round(1.0 - dist, 4),
                metadata=chunk.metadata_ or {},
                created_at=chunk.created_at,
            )
            for chunk, title, dist in rows
        ]


def build_pgvector_query(query_embedding: list[float], filters: SearchFilters) -> Select:
    """Nearest-neighbour SELECT over chunks JOIN documents, scoped by `filters`."""
    distance = Chunk.embedding.cosine_distance(query_embedding)

    stmt = (
        select(Chunk, Document.title, distance.label("distance"))
        .join(Document, Chunk.document_id == Document.id)
        .where(Chunk.embedding.is_not(None))
        .order_by(distance)
        .limit(filters.limit)
    )
    if filters.org_id is not None:
        stmt = stmt.where(Document.organization_id == filters.org_id)
    if filters.source_ids:
        stmt = stmt.where(Chunk.document_id.in_(filters.source_ids))
    if filters.content_types:
        stmt = stmt.where(Document.content_type.in_(filters.content_types))
    if filters.tag_ids:
        if filters.tag_filter_mode == "all":
            stmt = stmt.where(Document.tag_ids.contains(filters.tag_ids))
        else:
            stmt = stmt.where(Document.tag_ids.overlap(filters.tag_ids))
    return stmt


# ---------------------------------------------------------------------------
# Implementation 2: ChromaDB
# ---------------------------------------------------------------------------


class ChromaVectorStore:
    """
    ChromaDB-backed store.

    One collection for all organizations; every record's metadata carries
    `organization_id`, `document_id`, `source_title` and `content_type`,
    plus a `tag_<id>: True` flag per tag (see `tag_metadata_key`). Chroma
    metadata values are scalars, so tags are flattened into keys the `where`
    filter can test.

    ChromaDB supports both in-process and client/server modes:
    - In-process (default): no extra infra
    - Client/server: set CHROMA_URL
    """

    def __init__(self, collection_name: str | None = None) -> None:
        if settings.chroma_url:
            self._client = chromadb.HttpClient(host=settings.chroma_url)
        else:
            self._client = chromadb.Client()

        # Cosine distance, to score the same way as pgvector
        self._collection = self._client.get_or_create_collection(
            name=collection_name or settings.chroma_collection,
            metadata={"hnsw:space": "cosine"},
        )

    async def search(
        self,
        query_embedding: list[float],
        filters: SearchFilters,
    ) -> list[RetrievedItem]:
        """
        Similarity search in ChromaDB.

        The Chroma client is synchronous, so the query runs in a worker
        thread to keep the event loop free.
        """

        def _sync_search() -> list[RetrievedItem]:
            results = self._collection.query(
                query_embeddings=[query_embedding],
                n_results=filters.limit,
                where=_build_where(filters),
                include=["documents", "metadatas", "distances"],
            )

            items: list[RetrievedItem] = []
            if not (results and results["ids"] and results["ids"][0]):
                return items

            for i, chroma_id in enumerate(results["ids"][0]):
                distance = results["distances"][0][i] if results["distances"] else 0.0
                metadata = dict(results["metadatas"][0][i] or {}) if results["metadatas"] else {}
                content = results["documents"][0][i] if results["documents"] else ""

                items.append(RetrievedItem(
                    id=chroma_id,
                    content=content or "",
                    source_id=str(metadata.get("document_id", "")),
                    source_title=str(metadata.get("source_title", "")),
                    relevance_score=round(1.0 - distance, 4),
                    metadata=metadata,
                ))
            return items

        return await asyncio.to_thread(_sync_search)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------


def get_vector_store(
    override_type: str | None = None,
) -> PgVectorStore | ChromaVectorStore:
    """
    Return the configured vector store backend.

    Reads `vectorstore_type` from settings:
    - "pgvector" → PgVectorStore (default)
    - "chroma" → ChromaVectorStore
    """
    store_type = override_type or settings.vectorstore_type

    if store_type == "chroma":
        logger.info("Using ChromaDB vector store")
        return ChromaVectorStore()

    logger.info("Using pgvector vector store")
    return PgVectorStore()


# ---------------------------------------------------------------------------
# SearchBackend Adapter
# ---------------------------------------------------------------------------


class VectorStoreSearchBackend:
    """
    SearchBackend for the agentic loop: embed, search, apply threshold.

    Embedding and search failures propagate; the orchestrator treats a
    failed sub-query search as fatal for the run.
    """

    def __init__(self, store: VectorStore | None = None) -> None:
        self._store = store

    @property
    def store(self) -> VectorStore:
        if self._store is None:
            self._store = get_vector_store()
        return self._store

    async def search(self, text: str, filters: SearchFilters) -> list[RetrievedItem]:
        embedding = await asyncio.to_thread(embed_query, text)
        results = await self.store.search(embedding, filters)

        filtered = [r for r in results if r.relevance_score >= filters.threshold]
        filtered.sort(key=lambda r: r.relevance_score, reverse=True)

        logger.debug(
            "Search '%s': %d results, %d above threshold %.2f",
            text[:60], len(results), len(filtered), filters.threshold,
        )
        return filtered


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def tag_metadata_key(tag_id: str) -> str:
    """Chroma metadata key flagging that a record carries `tag_id`."""
    return f"tag_{tag_id}"


def _build_where(filters: SearchFilters) -> dict | None:
    """Translate SearchFilters into a Chroma `where` clause."""
    clauses: list[dict] = []
    if filters.org_id is not None:
        clauses.append({"organization_id": filters.org_id})
    if filters.source_ids:
        clauses.append({"document_id": {"$in": list(filters.source_ids)}})
    if filters.content_types:
        clauses.append({"content_type": {"$in": list(filters.content_types)}})
    if filters.tag_ids:
        tag_clauses = [{tag_metadata_key(t): True} for t in filters.tag_ids]
        if filters.tag_filter_mode == "all":
            clauses.extend(tag_clauses)
        elif len(tag_clauses) == 1:
            clauses.append(tag_clauses[0])
        else:
            clauses.append({"$or": tag_clauses})

    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}
