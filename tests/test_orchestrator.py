# =============================================================================
# Unit Tests — LangGraph Pipeline
# =============================================================================
#
# Runs the compiled decompose → retrieve graph with injected collaborators.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from agentic_rag.agents.orchestrator import run_agentic_search
from agentic_rag.agents.search import wait_for_pending_logs
from agentic_rag.agents.types import (
    AgenticSearchOptions,
    QueryDecomposition,
    RetrievedItem,
    SubQuery,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _decomposer() -> AsyncMock:
    decomposer = AsyncMock()
    decomposer.decompose.return_value = QueryDecomposition(
        original_query="Compare A and B",
        intent="comparison",
        complexity=4,
        sub_queries=[SubQuery(id="q1", text="What is A?"), SubQuery(id="q2", text="What is B?")],
        reasoning="One query per product",
    )
    return decomposer


def _backend() -> AsyncMock:
    async def search(text, filters):
        item_id = "a" if text == "What is A?" else "b"
        return [RetrievedItem(
            id=item_id, content=text, source_id="doc", source_title="Doc",
            relevance_score=0.9 if item_id == "a" else 0.7,
        )]

    backend = AsyncMock()
    backend.search.side_effect = search
    return backend


class TestRunAgenticSearch:
    def test_graph_runs_decompose_then_retrieve(self):
        decomposer = _decomposer()
        backend = _backend()
        log_sink = AsyncMock()

        async def scenario():
            result = await run_agentic_search(
                "Compare A and B",
                options=AgenticSearchOptions(
                    org_id="org-1", enable_reranking=False, enable_self_reflection=False,
                ),
                decomposer=decomposer,
                backend=backend,
                log_sink=log_sink,
            )
            await wait_for_pending_logs()
            return result

        result = _run(scenario())

        decomposer.decompose.assert_awaited_once_with("Compare A and B")
        assert backend.search.await_count == 2
        assert [i.id for i in result.final_results] == ["a", "b"]
        assert result.intent == "comparison"
        assert result.decomposition.reasoning == "One query per product"
        log_sink.persist.assert_awaited_once()

    def test_unknown_collaborator_rejected(self):
        with pytest.raises(TypeError, match="Unknown collaborators"):
            _run(run_agentic_search("query", searcher=AsyncMock()))
