# =============================================================================
# Agentic Search Types — Data Structures & Collaborator Protocols
# =============================================================================
#
# Everything the agentic search loop passes around lives here, so that the
# agents package and the services package can share one vocabulary without
# importing each other.
#
# DESIGN DECISION: Dataclasses over Pydantic models.
# These values never cross the HTTP boundary directly — the API layer maps
# them onto Pydantic response schemas (models/responses.py). Dataclasses
# keep the core free of validation overhead and easy to construct in tests.
#
# DESIGN DECISION: IterationRecord is frozen and holds tuples.
# The iteration log is append-only: once a sub-query's record is written it
# is never touched again. Freezing the record makes that a property of the
# type rather than a convention.
#
# DESIGN DECISION: Protocol (structural typing) for collaborators.
# Same pattern as LLMProvider and VectorStore in the services package. The
# orchestrator depends on five narrow interfaces; any object with the right
# method works, which is what lets the tests drive the loop with AsyncMocks.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Protocol, get_args

# ---------------------------------------------------------------------------
# Query Intents
# ---------------------------------------------------------------------------

IntentName = Literal[
    "single_fact", "multi_part", "comparison", "how_to", "exploration",
]

INTENTS: tuple[str, ...] = get_args(IntentName)

TagFilterMode = Literal["any", "all"]


# ---------------------------------------------------------------------------
# Decomposition
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubQuery:
    """
    One independently searchable piece of the user's query.

    `dependency` names another sub-query (by id) whose stage must complete
    before this one runs. Higher `priority` = more important (1–5).
    """

    id: str
    text: str
    intent: IntentName = "single_fact"
    dependency: str | None = None
    priority: int = 3

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "intent": self.intent,
            "dependency": self.dependency,
            "priority": self.priority,
        }


@dataclass
class QueryIntent:
    """Result of rule-based intent classification."""

    intent: IntentName
    confidence: float
    complexity: int  # 1 (trivial lookup) – 5 (open-ended research)
    reasoning: str


@dataclass
class QueryDecomposition:
    """The user's query broken into sub-queries, plus the decomposer's notes."""

    original_query: str
    intent: IntentName
    complexity: int
    sub_queries: list[SubQuery]
    reasoning: str


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


@dataclass
class RetrievedItem:
    """
    A chunk returned by the search backend.

    Identity is `id`: two items with the same id are the same chunk, even
    when found by different sub-queries. `relevance_score` is the vector
    similarity, or the reranker's score once the item has been reranked.
    """

    id: str
    content: str
    source_id: str
    source_title: str
    relevance_score: float
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass
class SearchFilters:
    """Scope and size of a single sub-query search."""

    org_id: str | None = None
    source_ids: list[str] | None = None  # Allow-list; None = all sources
    content_types: list[str] | None = None  # e.g. "document", "recording"
    tag_ids: list[str] | None = None
    tag_filter_mode: TagFilterMode = "any"  # "any": at least one tag, "all": every tag
    limit: int = 15
    threshold: float = 0.55


@dataclass
class RerankResult:
    results: list[RetrievedItem]
    original_count: int = 0
    reranked_count: int = 0
    reranking_time_ms: int = 0
    cost_estimate: float = 0.0


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


@dataclass
class ChunkEvaluation:
    """The evaluator's verdict on a single retrieved item."""

    chunk_id: str
    is_relevant: bool
    confidence: float
    reasoning: str = ""


@dataclass
class Evaluation:
    """
    Self-reflection output for one sub-query's results.

    `relevant` + `irrelevant` partition the evaluated items.
    """

    relevant: list[RetrievedItem]
    irrelevant: list[RetrievedItem]
    evaluations: list[ChunkEvaluation]
    avg_confidence: float
    gaps_identified: list[str] = field(default_factory=list)
    needs_refinement: bool = False


# ---------------------------------------------------------------------------
# Run Log
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IterationRecord:
    """
    Everything that happened while processing one sub-query.

    `iteration_number` is the 1-based stage number, so siblings that ran
    concurrently share it.
    """

    iteration_number: int
    sub_query: SubQuery
    raw_results: tuple[RetrievedItem, ...]
    reranked_results: tuple[RetrievedItem, ...] | None
    evaluation: Evaluation | None
    relevant_results: tuple[RetrievedItem, ...]
    confidence: float
    gaps_identified: tuple[str, ...]
    refinement_needed: bool
    duration_ms: int


# ---------------------------------------------------------------------------
# Run Configuration & Output
# ---------------------------------------------------------------------------


@dataclass
class AgenticSearchOptions:
    """
    Per-call knobs. `None` means "use the configured default", resolved
    once at call entry.
    """

    org_id: str | None = None
    user_id: str | None = None
    source_ids: list[str] | None = None
    content_types: list[str] | None = None
    tag_ids: list[str] | None = None
    tag_filter_mode: TagFilterMode = "any"
    enable_reranking: bool = True
    enable_self_reflection: bool | None = None
    max_iterations: int | None = None
    chunks_per_query: int | None = None
    log_results: bool = True


@dataclass(frozen=True)
class RunCapabilities:
    """Options and collaborator availability, resolved once per run."""

    use_reranking: bool
    use_evaluation: bool
    max_iterations: int
    chunks_per_query: int
    rerank_top_n: int
    similarity_threshold: float
    confidence_stop_threshold: float
    final_results_limit: int


@dataclass
class SearchMetadata:
    iteration_count: int
    chunks_retrieved: int  # Deduplicated pool size, before truncation
    refinements: int
    sub_queries_executed: int


@dataclass
class AgenticSearchResult:
    """Complete output of one agentic search run."""

    query: str
    intent: str
    decomposition: QueryDecomposition
    final_results: list[RetrievedItem]
    iterations: list[IterationRecord]
    citation_map: dict[str, list[str]]
    reasoning: str
    confidence: float
    total_duration_ms: int
    metadata: SearchMetadata


@dataclass
class SearchLogRecord:
    """Flattened, JSON-friendly summary of a run for the audit log."""

    org_id: str | None
    user_id: str | None
    original_query: str
    query_intent: str
    sub_queries: list[dict[str, Any]]
    iterations: list[dict[str, Any]]
    final_result_ids: list[str]
    total_duration_ms: int
    chunks_retrieved: int
    confidence_score: float
    reasoning_path: str


# ---------------------------------------------------------------------------
# Collaborator Protocols
# ---------------------------------------------------------------------------


class QueryDecomposer(Protocol):
    async def decompose(self, query: str) -> QueryDecomposition:
        """Break a query into sub-queries."""
        ...


class SearchBackend(Protocol):
    async def search(
        self, text: str, filters: SearchFilters,
    ) -> list[RetrievedItem]:
        """
        Return items similar to `text`, scoped by `filters`.

        Results are sorted by relevance_score (highest first) and already
        cut at `filters.threshold` and `filters.limit`.
        """
        ...


class Reranker(Protocol):
    def is_configured(self) -> bool:
        """True when the reranker can actually be called (e.g. has a key)."""
        ...

    async def rerank(
        self, query: str, items: list[RetrievedItem], top_n: int,
    ) -> RerankResult:
        ...


class RelevanceEvaluator(Protocol):
    async def evaluate(
        self, query: str, items: list[RetrievedItem],
    ) -> Evaluation:
        """Judge which items actually answer `query`."""
        ...


class SearchLogSink(Protocol):
    async def persist(self, record: SearchLogRecord) -> None:
        """Store a run summary. Best effort; callers ignore failures."""
        ...
