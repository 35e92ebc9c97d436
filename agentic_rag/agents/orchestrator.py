# =============================================================================
# LangGraph Orchestrator — Agentic Search Pipeline Assembly
# =============================================================================
#
# Wires decomposition and the agentic retrieval loop into a LangGraph
# StateGraph:
#
#   START ──▶ decompose ──▶ retrieve ──▶ END
#
# DESIGN DECISION: Linear graph (no conditional edges).
# The interesting control flow (stages, early stopping, iteration budget)
# lives INSIDE the retrieve node, in agents/search.py. Decomposition is a
# separate node so its output is visible in the graph state on its own,
# which is where you look first when a multi-hop answer goes wrong.
#
# DESIGN DECISION: Plain TypedDict state (not MessagesState).
# This is a retrieval pipeline, not a chatbot; no message history.
#
# DESIGN DECISION: Collaborators travel in the state.
# Nodes read the decomposer/backend/reranker/evaluator/sink from state,
# falling back to the configured defaults. Tests inject doubles; the API
# passes nothing and gets the production stack.
# NOTE: Not JSON-serialisable. Safe as long as no checkpointer is
# configured on the graph (current: no checkpointer).
#
# DESIGN DECISION: Graph compiled once at module level.
# =============================================================================

from __future__ import annotations

import logging
from typing import Any

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from agentic_rag.agents.decomposition import LLMQueryDecomposer
from agentic_rag.agents.search import agentic_search
from agentic_rag.agents.types import (
    AgenticSearchOptions,
    AgenticSearchResult,
    QueryDecomposer,
    QueryDecomposition,
    RelevanceEvaluator,
    Reranker,
    SearchBackend,
    SearchLogSink,
)
from agentic_rag.services.evaluator import LLMRelevanceEvaluator
from agentic_rag.services.reranker import CohereReranker
from agentic_rag.services.search_log import DatabaseSearchLogSink
from agentic_rag.services.vectorstore import VectorStoreSearchBackend

logger = logging.getLogger(__name__)

_COLLABORATOR_KEYS = {"decomposer", "backend", "reranker", "evaluator", "log_sink"}


# ---------------------------------------------------------------------------
# Pipeline State Schema
# ---------------------------------------------------------------------------


class PipelineState(TypedDict, total=False):
    """
    State that flows through the LangGraph graph.

    total=False so nodes only return the keys they update.
    """

    # --- Input (set by caller) ---
    query: str
    options: AgenticSearchOptions

    # --- Collaborator injection (optional) ---
    decomposer: QueryDecomposer | None
    backend: SearchBackend | None
    reranker: Reranker | None
    evaluator: RelevanceEvaluator | None
    log_sink: SearchLogSink | None

    # --- Set by nodes ---
    decomposition: QueryDecomposition
    result: AgenticSearchResult


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


async def decompose_node(state: PipelineState) -> dict:
    """Split the query into sub-queries."""
    decomposer = state.get("decomposer") or LLMQueryDecomposer()
    decomposition = await decomposer.decompose(state["query"])

    logger.info(
        "Decomposed into %d sub-queries (intent=%s): %s",
        len(decomposition.sub_queries),
        decomposition.intent,
        [sq.id for sq in decomposition.sub_queries],
    )
    return {"decomposition": decomposition}


async def retrieve_node(state: PipelineState) -> dict:
    """Run the staged multi-hop search over the decomposition."""
    result = await agentic_search(
        state["query"],
        decomposer=state.get("decomposer") or LLMQueryDecomposer(),
        backend=state.get("backend") or VectorStoreSearchBackend(),
        reranker=state.get("reranker") or CohereReranker(),
        evaluator=state.get("evaluator") or LLMRelevanceEvaluator(),
        log_sink=state.get("log_sink") or DatabaseSearchLogSink(),
        options=state.get("options"),
        decomposition=state["decomposition"],
    )
    return {"result": result}


# ---------------------------------------------------------------------------
# Graph Assembly
# ---------------------------------------------------------------------------

_builder = StateGraph(PipelineState)
_builder.add_node("decompose", decompose_node)
_builder.add_node("retrieve", retrieve_node)

_builder.add_edge(START, "decompose")
_builder.add_edge("decompose", "retrieve")
_builder.add_edge("retrieve", END)

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def run_agentic_search(
    query: str,
    options: AgenticSearchOptions | None = None,
    **collaborators: Any,
) -> AgenticSearchResult:
    """
    Entry point: invoke the pipeline graph and return the search result.

    Args:
        query: The user's query.
        options: Per-call knobs (org scope, budget, toggles).
        **collaborators: Optional overrides, any of `decomposer`,
            `backend`, `reranker`, `evaluator`, `log_sink`. Omitted ones
            use the production implementations; to switch reranking or
            self-reflection off, use `options` instead.

    Returns:
        The AgenticSearchResult produced by the retrieve node.
    """
    unknown = set(collaborators) - _COLLABORATOR_KEYS
    if unknown:
        raise TypeError(f"Unknown collaborators: {sorted(unknown)}")

    initial_state: PipelineState = {
        "query": query,
        "options": options or AgenticSearchOptions(),
        **collaborators,
    }

    logger.info("Invoking agentic search graph: query='%s'", query[:80])

    final_state = await graph.ainvoke(initial_state)
    return final_state["result"]

