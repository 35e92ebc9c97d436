# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
#
# DESIGN DECISION: Separate response models from the core dataclasses.
# IterationRecord carries raw, reranked and relevant result sets plus the
# full evaluation; sending all of it for every sub-query would multiply
# the payload. The response keeps per-iteration counts and verdict
# summaries, and the full chunk payload only once, in `final_results`.
# =============================================================================

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from agentic_rag.agents.types import (
    AgenticSearchResult,
    IterationRecord,
    RetrievedItem,
    SubQuery,
)


class HealthResponse(BaseModel):
    """Response for GET /health: confirms the API is running."""

    status: str = "ok"
    version: str
    service: str


class SubQueryResponse(BaseModel):
    id: str
    text: str
    intent: str
    dependency: str | None = None
    priority: int

    @classmethod
    def from_sub_query(cls, sub_query: SubQuery) -> SubQueryResponse:
        return cls(**sub_query.to_dict())


class ResultChunk(BaseModel):
    """A retrieved chunk as returned to the client (no embedding)."""

    id: str
    content: str
    source_id: str
    source_title: str
    relevance_score: float = Field(
        description="Vector similarity, or reranker score if reranked",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None

    @classmethod
    def from_item(cls, item: RetrievedItem) -> ResultChunk:
        return cls(
            id=item.id,
            content=item.content,
            source_id=item.source_id,
            source_title=item.source_title,
            relevance_score=item.relevance_score,
            metadata=item.metadata,
            created_at=item.created_at,
        )


class IterationResponse(BaseModel):
    """Summary of one sub-query's search."""

    iteration_number: int = Field(description="Stage number (1-based)")
    sub_query: SubQueryResponse
    raw_count: int
    reranked_count: int | None = None
    relevant_ids: list[str]
    confidence: float
    gaps_identified: list[str]
    refinement_needed: bool
    evaluated: bool
    duration_ms: int

    @classmethod
    def from_record(cls, record: IterationRecord) -> IterationResponse:
        return cls(
            iteration_number=record.iteration_number,
            sub_query=SubQueryResponse.from_sub_query(record.sub_query),
            raw_count=len(record.raw_results),
            reranked_count=(
                len(record.reranked_results)
                if record.reranked_results is not None
                else None
            ),
            relevant_ids=[item.id for item in record.relevant_results],
            confidence=record.confidence,
            gaps_identified=list(record.gaps_identified),
            refinement_needed=record.refinement_needed,
            evaluated=record.evaluation is not None,
            duration_ms=record.duration_ms,
        )


class SearchMetadataResponse(BaseModel):
    iteration_count: int
    chunks_retrieved: int = Field(description="Unique chunks pooled, before truncation")
    refinements: int
    sub_queries_executed: int


class AgenticSearchResponse(BaseModel):
    """Response for POST /search/agentic."""

    query: str
    intent: str
    complexity: int
    decomposition_reasoning: str
    sub_queries: list[SubQueryResponse]
    final_results: list[ResultChunk]
    iterations: list[IterationResponse]
    citation_map: dict[str, list[str]] = Field(
        description="Chunk id → ids of the sub-queries that retrieved it",
    )
    reasoning: str
    confidence: float
    total_duration_ms: int
    metadata: SearchMetadataResponse

    @classmethod
    def from_result(cls, result: AgenticSearchResult) -> AgenticSearchResponse:
        decomposition = result.decomposition
        return cls(
            query=result.query,
            intent=result.intent,
            complexity=decomposition.complexity,
            decomposition_reasoning=decomposition.reasoning,
            sub_queries=[
                SubQueryResponse.from_sub_query(sq)
                for sq in decomposition.sub_queries
            ],
            final_results=[ResultChunk.from_item(i) for i in result.final_results],
            iterations=[IterationResponse.from_record(r) for r in result.iterations],
            citation_map=result.citation_map,
            reasoning=result.reasoning,
            confidence=result.confidence,
            total_duration_ms=result.total_duration_ms,
            metadata=SearchMetadataResponse(
                iteration_count=result.metadata.iteration_count,
                chunks_retrieved=result.metadata.chunks_retrieved,
                refinements=result.metadata.refinements,
                sub_queries_executed=result.metadata.sub_queries_executed,
            ),
        )
