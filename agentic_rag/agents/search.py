# =============================================================================
# Agentic Search — Multi-Hop Retrieval with Self-Evaluation
# =============================================================================
#
# Instead of one embed→retrieve pass, the agent:
#
# 1. DECOMPOSE — split the query into dependency-annotated sub-queries
# 2. PLAN      — level the sub-queries into stages (agents/planner.py)
# 3. EXECUTE   — per stage, search every sub-query concurrently, then
#                optionally rerank and self-evaluate each result set
# 4. MERGE     — pool relevant chunks, deduplicated, with citations
# 5. STOP?     — after every sub-query: budget spent, or confident enough?
# 6. FINALISE  — rank, truncate, explain, log
#
# DESIGN DECISION: Plain async function (not a LangGraph subgraph).
# The loop's state is small and entirely local to one call. A Python loop
# with an asyncio.Lock is clearer than encoding stage scheduling as graph
# edges. LangGraph sits one level up (agents/orchestrator.py).
#
# DESIGN DECISION: Collaborators are injected, options resolved once.
# The decomposer, backend, reranker, evaluator and log sink arrive as
# Protocol-typed arguments; reranking/evaluation availability and every
# numeric knob are resolved into a RunCapabilities value before the first
# search. The loop branches on those booleans and never reads settings or
# the environment.
#
# DESIGN DECISION: Concurrency within a stage, single merge point.
# Sub-queries of a stage run as asyncio tasks. Each task appends its
# IterationRecord, merges its relevant chunks and runs the termination
# check while holding one asyncio.Lock, so the pool, the citation map and
# the log always agree with each other.
#
# DESIGN DECISION: Termination never cancels running work.
# Once the policy fires, no new sub-query starts. Siblings already running
# in the same stage finish and their records are kept. The iteration
# budget is also enforced at dispatch time: a stage only launches as many
# sub-queries as the budget has left, so the budget itself is never
# overshot. Only a confidence stop can leave extra sibling records.
#
# DESIGN DECISION: Search/rerank/evaluate errors are fatal.
# Concrete collaborators already degrade where that makes sense (evaluator
# and reranker fall back internally). Anything that still escapes aborts
# the run with no partial result; running siblings are cancelled.
# Only the log sink is best-effort.
#
# DESIGN DECISION: The log write is fire-and-forget.
# Like the per-request metric row written from a FastAPI background task,
# the run summary is handed to the sink in its own asyncio task after the
# result is built. The caller gets its result without waiting on the
# database; `wait_for_pending_logs()` drains outstanding writes on shutdown.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field

from agentic_rag.agents.citations import CitationTracker
from agentic_rag.agents.planner import plan_execution_order
from agentic_rag.agents.types import (
    AgenticSearchOptions,
    AgenticSearchResult,
    IterationRecord,
    QueryDecomposer,
    QueryDecomposition,
    RelevanceEvaluator,
    Reranker,
    RetrievedItem,
    RunCapabilities,
    SearchBackend,
    SearchFilters,
    SearchLogRecord,
    SearchLogSink,
    SearchMetadata,
    SubQuery,
)
from agentic_rag.config import settings

logger = logging.getLogger(__name__)

# Confidence recorded for a sub-query whose results were not evaluated
_UNEVALUATED_CONFIDENCE = 0.8

# Strong references to in-flight log writes; the event loop keeps only weak ones
_pending_logs: set[asyncio.Task] = set()


# ---------------------------------------------------------------------------
# Run State
# ---------------------------------------------------------------------------


@dataclass
class RunState:
    """
    Mutable state of one agentic search call.

    Created at call start, discarded when the call returns. Everything
    except `stages` is only written while holding `lock`.
    """

    stages: list[list[SubQuery]]
    tracker: CitationTracker = field(default_factory=CitationTracker)
    iterations: list[IterationRecord] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    stopped: bool = False
    stop_reason: str | None = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def agentic_search(
    query: str,
    *,
    decomposer: QueryDecomposer,
    backend: SearchBackend,
    reranker: Reranker | None = None,
    evaluator: RelevanceEvaluator | None = None,
    log_sink: SearchLogSink | None = None,
    options: AgenticSearchOptions | None = None,
    decomposition: QueryDecomposition | None = None,
) -> AgenticSearchResult:
    """
    Run the full multi-hop retrieval loop for one query.

    Args:
        query: The user's natural-language query.
        decomposer: Splits the query into sub-queries. Skipped when a
            ready-made `decomposition` is passed.
        backend: Vector similarity search.
        reranker: Optional; used only if enabled AND configured.
        evaluator: Optional; used only if self-reflection is enabled.
        log_sink: Optional; receives a run summary if `log_results`, in a
            background task the call does not wait for.
        options: Per-call knobs; unset fields fall back to settings.
        decomposition: Pre-computed decomposition (used by the LangGraph
            pipeline, which decomposes in its own node).

    Returns:
        AgenticSearchResult with ranked results, the iteration log,
        citations and a reasoning narrative.

    Raises:
        PlanningError: If the sub-queries can't be ordered into stages.
        Exception: Any error from decomposition, search, reranking or
            evaluation propagates unchanged.
    """
    start_time = time.monotonic()
    options = options or AgenticSearchOptions()
    caps = resolve_capabilities(options, reranker=reranker, evaluator=evaluator)

    if decomposition is None:
        decomposition = await decomposer.decompose(query)

    # Raises before any search if the plan is broken
    stages = plan_execution_order(decomposition.sub_queries)
    run = RunState(stages=stages)
    for sub_query in decomposition.sub_queries:
        run.tracker.register_sub_query(sub_query)

    logger.info(
        "Agentic search: query='%s', intent=%s, %d sub-queries in %d stages, "
        "max_iterations=%d, rerank=%s, evaluate=%s",
        query[:80], decomposition.intent, len(decomposition.sub_queries),
        len(stages), caps.max_iterations, caps.use_reranking, caps.use_evaluation,
    )

    filters = SearchFilters(
        org_id=options.org_id,
        source_ids=options.source_ids,
        content_types=options.content_types,
        tag_ids=options.tag_ids,
        tag_filter_mode=options.tag_filter_mode,
        limit=caps.chunks_per_query,
        threshold=caps.similarity_threshold,
    )

    for stage_number, stage in enumerate(stages, 1):
        if run.stopped:
            break

        remaining_budget = caps.max_iterations - len(run.iterations)
        batch = stage[:remaining_budget]
        if len(batch) < len(stage):
            logger.info(
                "Stage %d: budget allows %d of %d sub-queries",
                stage_number, len(batch), len(stage),
            )

        await _execute_stage(
            batch, stage_number, run, caps, filters,
            backend=backend, reranker=reranker, evaluator=evaluator,
        )

    result = _finalise(query, decomposition, run, caps, start_time)

    if options.log_results and log_sink is not None:
        _schedule_log(log_sink, result, options)

    return result


def resolve_capabilities(
    options: AgenticSearchOptions,
    reranker: Reranker | None = None,
    evaluator: RelevanceEvaluator | None = None,
) -> RunCapabilities:
    """
    Resolve per-call options against settings, once, at call entry.

    Precedence for every knob: explicit option → settings (environment /
    .env) → built-in default from Settings.

    Raises:
        ValueError: If the resolved iteration budget or chunk count is < 1.
    """
    max_iterations = (
        options.max_iterations
        if options.max_iterations is not None
        else settings.agentic_max_iterations
    )
    if max_iterations < 1:
        raise ValueError(f"max_iterations must be at least 1, got {max_iterations}")

    chunks_per_query = options.chunks_per_query or settings.agentic_chunks_per_query
    if chunks_per_query < 1:
        raise ValueError(f"chunks_per_query must be at least 1, got {chunks_per_query}")

    self_reflection = (
        options.enable_self_reflection
        if options.enable_self_reflection is not None
        else settings.enable_self_reflection
    )

    return RunCapabilities(
        use_reranking=bool(
            options.enable_reranking
            and reranker is not None
            and reranker.is_configured()
        ),
        use_evaluation=bool(self_reflection and evaluator is not None),
        max_iterations=max_iterations,
        chunks_per_query=chunks_per_query,
        rerank_top_n=math.ceil(chunks_per_query / 2),
        similarity_threshold=settings.agentic_similarity_threshold,
        confidence_stop_threshold=settings.agentic_early_stop_confidence,
        final_results_limit=settings.agentic_final_results_limit,
    )


# ---------------------------------------------------------------------------
# Stage Executor
# ---------------------------------------------------------------------------


async def _execute_stage(
    batch: list[SubQuery],
    stage_number: int,
    run: RunState,
    caps: RunCapabilities,
    filters: SearchFilters,
    *,
    backend: SearchBackend,
    reranker: Reranker | None,
    evaluator: RelevanceEvaluator | None,
) -> None:
    """Run one stage's sub-queries concurrently; cancel all if one fails."""
    tasks = [
        asyncio.create_task(
            _process_sub_query(
                sub_query, stage_number, run, caps, filters,
                backend=backend, reranker=reranker, evaluator=evaluator,
            ),
            name=f"agentic-search-{sub_query.id}",
        )
        for sub_query in batch
    ]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def _process_sub_query(
    sub_query: SubQuery,
    stage_number: int,
    run: RunState,
    caps: RunCapabilities,
    filters: SearchFilters,
    *,
    backend: SearchBackend,
    reranker: Reranker | None,
    evaluator: RelevanceEvaluator | None,
) -> None:
    """search → [rerank] → [evaluate] → record + merge + termination check."""
    started = time.monotonic()

    # --- Step 1: Search ---
    raw_results = await backend.search(sub_query.text, filters)
    working = list(raw_results)

    # --- Step 2: Rerank (optional) ---
    reranked: tuple[RetrievedItem, ...] | None = None
    if caps.use_reranking and reranker is not None and working:
        rerank_result = await reranker.rerank(sub_query.text, working, caps.rerank_top_n)
        reranked = tuple(rerank_result.results)
        working = list(rerank_result.results)

    # --- Step 3: Evaluate (optional) ---
    evaluation = None
    if caps.use_evaluation and evaluator is not None:
        evaluation = await evaluator.evaluate(sub_query.text, working)
        relevant = list(evaluation.relevant)
        confidence = evaluation.avg_confidence
        gaps = tuple(evaluation.gaps_identified)
        refinement_needed = evaluation.needs_refinement
    else:
        relevant = working
        confidence = _UNEVALUATED_CONFIDENCE
        gaps = ()
        refinement_needed = False

    record = IterationRecord(
        iteration_number=stage_number,
        sub_query=sub_query,
        raw_results=tuple(raw_results),
        reranked_results=reranked,
        evaluation=evaluation,
        relevant_results=tuple(relevant),
        confidence=confidence,
        gaps_identified=gaps,
        refinement_needed=refinement_needed,
        duration_ms=int((time.monotonic() - started) * 1000),
    )

    # --- Step 4: Record, merge, decide (single writer) ---
    async with run.lock:
        run.iterations.append(record)
        new_chunks = run.tracker.add_chunks(list(relevant), sub_query.id)

        logger.info(
            "Sub-query %s (stage %d): %d raw, %d relevant (%d new), "
            "confidence=%.2f, gaps=%d",
            sub_query.id, stage_number, len(raw_results), len(relevant),
            new_chunks, confidence, len(gaps),
        )

        if not run.stopped:
            reason = _termination_reason(record, len(run.iterations), caps)
            if reason:
                run.stopped = True
                run.stop_reason = reason
                logger.info("Stopping agentic search: %s", reason)


# ---------------------------------------------------------------------------
# Termination Policy
# ---------------------------------------------------------------------------


def _termination_reason(
    record: IterationRecord, records_so_far: int, caps: RunCapabilities,
) -> str | None:
    """Return why the run should stop after `record`, or None to continue."""
    if records_so_far >= caps.max_iterations:
        return f"iteration budget reached ({records_so_far}/{caps.max_iterations})"

    if (
        record.evaluation is not None
        and record.confidence >= caps.confidence_stop_threshold
        and not record.gaps_identified
        and not record.refinement_needed
    ):
        return (
            f"high confidence on {record.sub_query.id} "
            f"({record.confidence:.2f} >= {caps.confidence_stop_threshold:.2f}, no gaps)"
        )

    return None


# ---------------------------------------------------------------------------
# Run Finalizer
# ---------------------------------------------------------------------------


def _finalise(
    query: str,
    decomposition: QueryDecomposition,
    run: RunState,
    caps: RunCapabilities,
    start_time: float,
) -> AgenticSearchResult:
    pool = run.tracker.chunks
    final_results = _rank_results(pool, caps.final_results_limit)
    iterations = list(run.iterations)

    confidence = (
        sum(r.confidence for r in iterations) / len(iterations)
        if iterations
        else 0.0
    )
    metadata = SearchMetadata(
        iteration_count=len(iterations),
        chunks_retrieved=len(pool),
        refinements=sum(1 for r in iterations if r.refinement_needed),
        sub_queries_executed=len({r.sub_query.id for r in iterations}),
    )
    total_duration_ms = int((time.monotonic() - start_time) * 1000)

    logger.info(
        "Agentic search complete: %d results (pool %d), %d iterations, "
        "confidence=%.2f, %dms",
        len(final_results), len(pool), len(iterations), confidence, total_duration_ms,
    )

    return AgenticSearchResult(
        query=query,
        intent=decomposition.intent,
        decomposition=decomposition,
        final_results=final_results,
        iterations=iterations,
        citation_map=run.tracker.get_citation_map(),
        reasoning=build_reasoning_path(decomposition, iterations),
        confidence=confidence,
        total_duration_ms=total_duration_ms,
        metadata=metadata,
    )


def _rank_results(pool: list[RetrievedItem], limit: int) -> list[RetrievedItem]:
    """
    Highest relevance_score first; ties keep first-seen order.

    `pool` is in first-seen order and sorted() is stable.
    """
    return sorted(pool, key=lambda item: item.relevance_score, reverse=True)[:limit]


def build_reasoning_path(
    decomposition: QueryDecomposition, iterations: list[IterationRecord],
) -> str:
    """
    Human-readable account of how the query was handled.

    Example:
        Query Analysis: Split the comparison into one query per product
        (intent: comparison, complexity: 4)

        Search Strategy:
        1. What is React? → 4 relevant chunks (confidence: 90%)
        1. What is Vue? → 2 relevant chunks (confidence: 60%)
           Gaps: release history
    """
    lines = [
        f"Query Analysis: {decomposition.reasoning} "
        f"(intent: {decomposition.intent}, complexity: {decomposition.complexity})",
        "",
        "Search Strategy:",
    ]

    for record in iterations:
        lines.append(
            f"{record.iteration_number}. {record.sub_query.text} → "
            f"{len(record.relevant_results)} relevant chunks "
            f"(confidence: {record.confidence * 100:.0f}%)"
        )
        if record.gaps_identified:
            lines.append(f"   Gaps: {', '.join(record.gaps_identified)}")

    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Log Persistence
# ---------------------------------------------------------------------------


def build_log_record(
    result: AgenticSearchResult, options: AgenticSearchOptions,
) -> SearchLogRecord:
    return SearchLogRecord(
        org_id=options.org_id,
        user_id=options.user_id,
        original_query=result.query,
        query_intent=result.intent,
        sub_queries=[sq.to_dict() for sq in result.decomposition.sub_queries],
        iterations=[
            {
                "iteration": r.iteration_number,
                "subQuery": r.sub_query.text,
                "chunksFound": len(r.relevant_results),
                "confidence": r.confidence,
                "gaps": list(r.gaps_identified),
                "durationMs": r.duration_ms,
            }
            for r in result.iterations
        ],
        final_result_ids=[item.id for item in result.final_results],
        total_duration_ms=result.total_duration_ms,
        chunks_retrieved=result.metadata.chunks_retrieved,
        confidence_score=result.confidence,
        reasoning_path=result.reasoning,
    )


async def _persist_log(
    log_sink: SearchLogSink,
    result: AgenticSearchResult,
    options: AgenticSearchOptions,
) -> None:
    """Hand the run summary to the sink; failures are logged, never raised."""
    try:
        await log_sink.persist(build_log_record(result, options))
    except Exception as e:
        logger.warning("Failed to log agentic search: %s", e)


def _schedule_log(
    log_sink: SearchLogSink,
    result: AgenticSearchResult,
    options: AgenticSearchOptions,
) -> asyncio.Task:
    """Start the log write in the background and return without awaiting it."""
    task = asyncio.create_task(
        _persist_log(log_sink, result, options), name="agentic-search-log",
    )
    _pending_logs.add(task)
    task.add_done_callback(_pending_logs.discard)
    return task


async def wait_for_pending_logs() -> None:
    """Wait for every scheduled log write to finish (used on shutdown)."""
    if _pending_logs:
        await asyncio.gather(*list(_pending_logs), return_exceptions=True)
