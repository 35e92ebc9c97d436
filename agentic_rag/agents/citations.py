# =============================================================================
# Citation Tracker — Deduplicated Result Pool + Provenance
# =============================================================================
#
# Every chunk the agentic search keeps is recorded here together with the
# sub-queries that found it. The tracker is both:
#
# 1. The RESULT POOL — one entry per chunk id, first-seen payload wins
# 2. The CITATION MAP — chunk id → ids of the sub-queries that surfaced it
#
# Keeping both in one object means they cannot drift apart: a chunk enters
# the pool and gets its first citation in the same call, so the set of
# pooled ids and the set of cited ids are always identical.
#
# DESIGN DECISION: First-seen payload wins.
# If two sub-queries return the same chunk with different scores (e.g. one
# was reranked), we keep the first copy. Later sightings only add a
# citation. This makes merging idempotent and order-stable.
#
# DESIGN DECISION: Plain dicts, no locking here.
# The orchestrator serialises writes through its own asyncio.Lock, so the
# tracker itself stays a simple synchronous container.
# =============================================================================

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field

from agentic_rag.agents.types import RetrievedItem, SubQuery

# Report formatting
_REPORT_TEXT_LIMIT = 60
_REPORT_CHUNKS_PER_SOURCE = 3


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class Citation:
    """A pooled chunk with the sub-queries that cite it."""

    chunk_id: str
    chunk_text: str
    source_id: str
    source_title: str
    sub_query_ids: list[str] = field(default_factory=list)
    sub_query_texts: list[str] = field(default_factory=list)


@dataclass
class CitationStats:
    total_chunks: int
    total_sub_queries: int
    avg_citations_per_chunk: float
    max_citations_per_chunk: int


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class CitationTracker:
    """
    Deduplicated chunk pool with per-chunk provenance.

    Usage:
        tracker = CitationTracker()
        tracker.register_sub_query(sub_query)
        tracker.add_chunks(items, sub_query.id)
        tracker.get_citation_map()  # {"chunk-1": ["q1", "q2"], ...}
    """

    def __init__(self) -> None:
        self._sub_queries: dict[str, SubQuery] = {}
        # dict preserves insertion order, which doubles as first-seen order
        self._chunks: dict[str, RetrievedItem] = {}
        self._citations: dict[str, list[str]] = {}

    def register_sub_query(self, sub_query: SubQuery) -> None:
        self._sub_queries[sub_query.id] = sub_query

    def add_chunk(self, item: RetrievedItem, sub_query_id: str) -> bool:
        """
        Record that `sub_query_id` retrieved `item`.

        Returns:
            True if the chunk was new to the pool, False if it was
            already there (only the citation may have been added).
        """
        is_new = item.id not in self._chunks
        if is_new:
            self._chunks[item.id] = item
            self._citations[item.id] = []

        cited_by = self._citations[item.id]
        if sub_query_id not in cited_by:
            cited_by.append(sub_query_id)
        return is_new

    def add_chunks(self, items: list[RetrievedItem], sub_query_id: str) -> int:
        """Add several chunks for one sub-query. Returns how many were new."""
        return sum(1 for item in items if self.add_chunk(item, sub_query_id))

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._chunks)

    def __contains__(self, chunk_id: object) -> bool:
        return chunk_id in self._chunks

    @property
    def chunks(self) -> list[RetrievedItem]:
        """Pooled chunks in first-seen order."""
        return list(self._chunks.values())

    def get_sub_queries_for_chunk(self, chunk_id: str) -> list[SubQuery]:
        """Registered sub-queries that retrieved this chunk."""
        return [
            self._sub_queries[sq_id]
            for sq_id in self._citations.get(chunk_id, [])
            if sq_id in self._sub_queries
        ]

    def get_chunks_for_sub_query(self, sub_query_id: str) -> list[RetrievedItem]:
        return [
            self._chunks[chunk_id]
            for chunk_id, cited_by in self._citations.items()
            if sub_query_id in cited_by
        ]

    def get_citation_map(self) -> dict[str, list[str]]:
        """Chunk id → citing sub-query ids, as fresh lists."""
        return {
            chunk_id: list(cited_by)
            for chunk_id, cited_by in self._citations.items()
        }

    def get_all_citations(self) -> list[Citation]:
        citations = []
        for chunk_id, item in self._chunks.items():
            cited_by = self._citations[chunk_id]
            citations.append(Citation(
                chunk_id=chunk_id,
                chunk_text=item.content,
                source_id=item.source_id,
                source_title=item.source_title,
                sub_query_ids=list(cited_by),
                sub_query_texts=[
                    self._sub_queries[sq_id].text
                    for sq_id in cited_by
                    if sq_id in self._sub_queries
                ],
            ))
        return citations

    def get_stats(self) -> CitationStats:
        counts = [len(cited_by) for cited_by in self._citations.values()]
        return CitationStats(
            total_chunks=len(self._chunks),
            total_sub_queries=len(self._sub_queries),
            avg_citations_per_chunk=sum(counts) / len(counts) if counts else 0.0,
            max_citations_per_chunk=max(counts, default=0),
        )

    def generate_report(self) -> str:
        """
        Human-readable summary of where the pooled chunks came from,
        grouped by source document.
        """
        stats = self.get_stats()
        lines = [
            "Citation Report",
            "===============",
            f"Total Chunks: {stats.total_chunks}",
            f"Total Sub-Queries: {stats.total_sub_queries}",
            f"Avg Citations/Chunk: {stats.avg_citations_per_chunk:.2f}",
        ]

        by_source: dict[str, list[Citation]] = defaultdict(list)
        for citation in self.get_all_citations():
            by_source[citation.source_id].append(citation)

        if by_source:
            lines.append("")
            lines.append("Sources:")

        for source_id, citations in by_source.items():
            title = citations[0].source_title or f"Source {source_id[:8]}"
            lines.append(f"- {title} (Chunks: {len(citations)})")

            for citation in citations[:_REPORT_CHUNKS_PER_SOURCE]:
                text = citation.chunk_text
                if len(text) > _REPORT_TEXT_LIMIT:
                    text = text[:_REPORT_TEXT_LIMIT] + "..."
                queries = "; ".join(citation.sub_query_texts) or "unregistered"
                lines.append(f'  * "{text}" <- {queries}')

            hidden = len(citations) - _REPORT_CHUNKS_PER_SOURCE
            if hidden > 0:
                lines.append(f"  ... and {hidden} more chunks")

        return "\n".join(lines)
