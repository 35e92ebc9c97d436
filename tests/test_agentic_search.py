# =============================================================================
# Unit Tests — Agentic Search Loop
# =============================================================================
#
# Exercises agents/search.py end to end with mock collaborators: no LLM,
# no embeddings, no database. Each test builds a fixed decomposition and a
# backend that answers per sub-query text.
# =============================================================================

from __future__ import annotations

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agentic_rag.agents.errors import PlanningError
from agentic_rag.agents.search import (
    agentic_search,
    build_log_record,
    build_reasoning_path,
    resolve_capabilities,
    wait_for_pending_logs,
)
from agentic_rag.agents.types import (
    AgenticSearchOptions,
    Evaluation,
    QueryDecomposition,
    RerankResult,
    RetrievedItem,
    SearchFilters,
    SubQuery,
)
from agentic_rag.config import settings


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _item(item_id: str, score: float = 0.8) -> RetrievedItem:
    return RetrievedItem(
        id=item_id,
        content=f"Content {item_id}",
        source_id=f"doc-{item_id}",
        source_title=f"Doc {item_id}",
        relevance_score=score,
    )


def _decomposition(*sub_queries: SubQuery, reasoning: str = "test plan") -> QueryDecomposition:
    return QueryDecomposition(
        original_query="original question",
        intent="multi_part" if len(sub_queries) > 1 else "single_fact",
        complexity=3 if len(sub_queries) > 1 else 1,
        sub_queries=list(sub_queries),
        reasoning=reasoning,
    )


def _decomposer(decomposition: QueryDecomposition) -> AsyncMock:
    decomposer = AsyncMock()
    decomposer.decompose.return_value = decomposition
    return decomposer


def _backend(results_by_text: dict[str, list[RetrievedItem]]) -> AsyncMock:
    async def search(text: str, filters: SearchFilters) -> list[RetrievedItem]:
        return list(results_by_text.get(text, []))

    backend = AsyncMock()
    backend.search.side_effect = search
    return backend


def _evaluator(confidence: float, gaps: list[str] | None = None, refine: bool = False) -> AsyncMock:
    async def evaluate(query: str, items: list[RetrievedItem]) -> Evaluation:
        return Evaluation(
            relevant=list(items),
            irrelevant=[],
            evaluations=[],
            avg_confidence=confidence,
            gaps_identified=list(gaps or []),
            needs_refinement=refine,
        )

    evaluator = AsyncMock()
    evaluator.evaluate.side_effect = evaluate
    return evaluator


# ---------------------------------------------------------------------------
# Test: Stage Execution
# ---------------------------------------------------------------------------


class TestStageExecution:
    def test_single_sub_query(self):
        sq = SubQuery(id="q1", text="What is React?", priority=5)
        backend = _backend({"What is React?": [_item("c1", 0.9), _item("c2", 0.7)]})

        result = _run(agentic_search(
            "What is React?",
            decomposer=_decomposer(_decomposition(sq)),
            backend=backend,
            options=AgenticSearchOptions(enable_self_reflection=False),
        ))

        assert [i.id for i in result.final_results] == ["c1", "c2"]
        assert len(result.iterations) == 1
        assert result.iterations[0].iteration_number == 1
        assert result.citation_map == {"c1": ["q1"], "c2": ["q1"]}
        assert result.confidence == pytest.approx(0.8)
        assert result.metadata.sub_queries_executed == 1

    def test_independent_sub_queries_share_a_stage(self):
        q1 = SubQuery(id="q1", text="What is React?")
        q2 = SubQuery(id="q2", text="What is Vue?")
        backend = _backend({
            "What is React?": [_item("react")],
            "What is Vue?": [_item("vue")],
        })

        result = _run(agentic_search(
            "Compare React and Vue",
            decomposer=_decomposer(_decomposition(q1, q2)),
            backend=backend,
            options=AgenticSearchOptions(enable_self_reflection=False),
        ))

        assert [r.iteration_number for r in result.iterations] == [1, 1]
        assert {r.sub_query.id for r in result.iterations} == {"q1", "q2"}
        assert backend.search.await_count == 2

    def test_dependent_sub_query_runs_in_later_stage(self):
        q1 = SubQuery(id="q1", text="Who created Python?")
        q2 = SubQuery(id="q2", text="What else did they build?", dependency="q1")
        calls: list[str] = []

        async def search(text, filters):
            calls.append(text)
            return [_item(f"c-{len(calls)}")]

        backend = AsyncMock()
        backend.search.side_effect = search

        result = _run(agentic_search(
            "Who created Python and what else did they build?",
            decomposer=_decomposer(_decomposition(q1, q2)),
            backend=backend,
            options=AgenticSearchOptions(enable_self_reflection=False),
        ))

        assert calls == ["Who created Python?", "What else did they build?"]
        assert [r.iteration_number for r in result.iterations] == [1, 2]

    def test_zero_sub_queries_runs_no_search(self):
        backend = _backend({})

        result = _run(agentic_search(
            "anything",
            decomposer=_decomposer(_decomposition()),
            backend=backend,
        ))

        backend.search.assert_not_called()
        assert result.final_results == []
        assert result.iterations == []
        assert result.confidence == 0.0
        assert result.metadata.iteration_count == 0

    def test_filters_passed_to_backend(self):
        sq = SubQuery(id="q1", text="query")
        backend = _backend({"query": []})

        _run(agentic_search(
            "query",
            decomposer=_decomposer(_decomposition(sq)),
            backend=backend,
            options=AgenticSearchOptions(
                org_id="org-1",
                source_ids=["doc-a", "doc-b"],
                chunks_per_query=7,
                content_types=["recording"],
                tag_ids=["tag-1", "tag-2"],
                tag_filter_mode="all",
                enable_self_reflection=False,
            ),
        ))

        _, filters = backend.search.await_args.args
        assert filters.org_id == "org-1"
        assert filters.source_ids == ["doc-a", "doc-b"]
        assert filters.limit == 7
        assert filters.threshold == settings.agentic_similarity_threshold
        assert filters.content_types == ["recording"]
        assert filters.tag_ids == ["tag-1", "tag-2"]
        assert filters.tag_filter_mode == "all"

    def test_precomputed_decomposition_skips_decomposer(self):
        sq = SubQuery(id="q1", text="query")
        decomposer = _decomposer(_decomposition())

        result = _run(agentic_search(
            "query",
            decomposer=decomposer,
            backend=_backend({"query": [_item("c1")]}),
            options=AgenticSearchOptions(enable_self_reflection=False),
            decomposition=_decomposition(sq),
        ))

        decomposer.decompose.assert_not_called()
        assert len(result.iterations) == 1


# ---------------------------------------------------------------------------
# Test: Termination
# ---------------------------------------------------------------------------


class TestTermination:
    def test_high_confidence_stops_before_next_stage(self):
        q1 = SubQuery(id="q1", text="first")
        q2 = SubQuery(id="q2", text="second", dependency="q1")
        backend = _backend({"first": [_item("a")], "second": [_item("b")]})

        result = _run(agentic_search(
            "q",
            decomposer=_decomposer(_decomposition(q1, q2)),
            backend=backend,
            evaluator=_evaluator(0.95),
            options=AgenticSearchOptions(enable_self_reflection=True, max_iterations=3),
        ))

        assert [r.sub_query.id for r in result.iterations] == ["q1"]
        assert backend.search.await_count == 1

    def test_three_stage_chain_stops_after_first_stage(self):
        q1 = SubQuery(id="q1", text="first")
        q2 = SubQuery(id="q2", text="second", dependency="q1")
        q3 = SubQuery(id="q3", text="third", dependency="q2")
        backend = _backend({
            "first": [_item("a")],
            "second": [_item("b")],
            "third": [_item("c")],
        })

        result = _run(agentic_search(
            "q",
            decomposer=_decomposer(_decomposition(q1, q2, q3)),
            backend=backend,
            evaluator=_evaluator(0.95),
            options=AgenticSearchOptions(enable_self_reflection=True, max_iterations=3),
        ))

        assert backend.search.await_count == 1
        assert len(result.iterations) == 1
        assert result.iterations[0].sub_query.id == "q1"
        assert [i.id for i in result.final_results] == ["a"]

    def test_gaps_prevent_early_stop(self):
        q1 = SubQuery(id="q1", text="first")
        q2 = SubQuery(id="q2", text="second", dependency="q1")

        result = _run(agentic_search(
            "q",
            decomposer=_decomposer(_decomposition(q1, q2)),
            backend=_backend({"first": [_item("a")], "second": [_item("b")]}),
            evaluator=_evaluator(0.95, gaps=["pricing"]),
            options=AgenticSearchOptions(enable_self_reflection=True, max_iterations=3),
        ))

        assert [r.sub_query.id for r in result.iterations] == ["q1", "q2"]

    def test_siblings_finish_after_early_stop(self):
        q1 = SubQuery(id="q1", text="first")
        q2 = SubQuery(id="q2", text="second")

        result = _run(agentic_search(
            "q",
            decomposer=_decomposer(_decomposition(q1, q2)),
            backend=_backend({"first": [_item("a")], "second": [_item("b")]}),
            evaluator=_evaluator(0.95),
            options=AgenticSearchOptions(enable_self_reflection=True, max_iterations=3),
        ))

        assert len(result.iterations) == 2
        assert set(result.citation_map) == {"a", "b"}

    def test_budget_caps_stage_at_dispatch(self):
        stage = [SubQuery(id=f"q{i}", text=f"text {i}") for i in range(1, 4)]
        backend = _backend({sq.text: [_item(sq.id)] for sq in stage})

        result = _run(agentic_search(
            "q",
            decomposer=_decomposer(_decomposition(*stage)),
            backend=backend,
            options=AgenticSearchOptions(enable_self_reflection=False, max_iterations=1),
        ))

        assert len(result.iterations) == 1
        assert result.iterations[0].sub_query.id == "q1"
        assert backend.search.await_count == 1

    def test_unevaluated_run_never_stops_on_confidence(self):
        q1 = SubQuery(id="q1", text="first")
        q2 = SubQuery(id="q2", text="second", dependency="q1")

        with patch.object(settings, "agentic_early_stop_confidence", 0.5):
            result = _run(agentic_search(
                "q",
                decomposer=_decomposer(_decomposition(q1, q2)),
                backend=_backend({"first": [_item("a")], "second": [_item("b")]}),
                options=AgenticSearchOptions(enable_self_reflection=False, max_iterations=3),
            ))

        assert len(result.iterations) == 2

    def test_max_iterations_defaults_to_settings(self):
        stage = [SubQuery(id=f"q{i}", text=f"text {i}") for i in range(1, 5)]

        with patch.object(settings, "agentic_max_iterations", 2):
            result = _run(agentic_search(
                "q",
                decomposer=_decomposer(_decomposition(*stage)),
                backend=_backend({sq.text: [_item(sq.id)] for sq in stage}),
                options=AgenticSearchOptions(enable_self_reflection=False),
            ))

        assert len(result.iterations) == 2


# ---------------------------------------------------------------------------
# Test: Reranking and Evaluation
# ---------------------------------------------------------------------------


class TestCollaborators:
    def test_self_reflection_disabled_skips_evaluator(self):
        sq = SubQuery(id="q1", text="query")
        raw = [_item("c1", 0.9), _item("c2", 0.6)]
        evaluator = _evaluator(0.9)

        result = _run(agentic_search(
            "query",
            decomposer=_decomposer(_decomposition(sq)),
            backend=_backend({"query": raw}),
            evaluator=evaluator,
            options=AgenticSearchOptions(enable_self_reflection=False),
        ))

        evaluator.evaluate.assert_not_called()
        record = result.iterations[0]
        assert record.evaluation is None
        assert list(record.relevant_results) == raw
        assert record.confidence == pytest.approx(0.8)

    def test_evaluator_filters_irrelevant_chunks(self):
        sq = SubQuery(id="q1", text="query")
        good, bad = _item("good"), _item("bad")

        async def evaluate(query, items):
            return Evaluation(
                relevant=[good], irrelevant=[bad], evaluations=[],
                avg_confidence=0.6, gaps_identified=["dates"], needs_refinement=True,
            )

        evaluator = AsyncMock()
        evaluator.evaluate.side_effect = evaluate

        result = _run(agentic_search(
            "query",
            decomposer=_decomposer(_decomposition(sq)),
            backend=_backend({"query": [good, bad]}),
            evaluator=evaluator,
            options=AgenticSearchOptions(enable_self_reflection=True),
        ))

        assert [i.id for i in result.final_results] == ["good"]
        assert result.iterations[0].gaps_identified == ("dates",)
        assert result.metadata.refinements == 1

    def test_reranker_not_configured_is_skipped(self):
        sq = SubQuery(id="q1", text="query")
        reranker = MagicMock()
        reranker.is_configured.return_value = False
        reranker.rerank = AsyncMock()

        result = _run(agentic_search(
            "query",
            decomposer=_decomposer(_decomposition(sq)),
            backend=_backend({"query": [_item("c1"), _item("c2")]}),
            reranker=reranker,
            options=AgenticSearchOptions(enable_self_reflection=False),
        ))

        reranker.rerank.assert_not_called()
        assert result.iterations[0].reranked_results is None

    def test_configured_reranker_uses_half_the_chunk_count(self):
        sq = SubQuery(id="q1", text="query")
        raw = [_item(f"c{i}", 0.6) for i in range(4)]
        reranked = [RetrievedItem(**{**vars(raw[3]), "relevance_score": 0.99})]

        reranker = MagicMock()
        reranker.is_configured.return_value = True
        reranker.rerank = AsyncMock(return_value=RerankResult(results=reranked))

        result = _run(agentic_search(
            "query",
            decomposer=_decomposer(_decomposition(sq)),
            backend=_backend({"query": raw}),
            reranker=reranker,
            options=AgenticSearchOptions(enable_self_reflection=False, chunks_per_query=15),
        ))

        reranker.rerank.assert_awaited_once_with("query", raw, 8)
        assert [i.id for i in result.final_results] == ["c3"]
        assert result.iterations[0].reranked_results == tuple(reranked)

    def test_reranking_disabled_by_option(self):
        sq = SubQuery(id="q1", text="query")
        reranker = MagicMock()
        reranker.is_configured.return_value = True
        reranker.rerank = AsyncMock()

        _run(agentic_search(
            "query",
            decomposer=_decomposer(_decomposition(sq)),
            backend=_backend({"query": [_item("c1")]}),
            reranker=reranker,
            options=AgenticSearchOptions(enable_reranking=False, enable_self_reflection=False),
        ))

        reranker.rerank.assert_not_called()

    def test_empty_search_result_skips_reranker(self):
        sq = SubQuery(id="q1", text="query")
        reranker = MagicMock()
        reranker.is_configured.return_value = True
        reranker.rerank = AsyncMock()

        _run(agentic_search(
            "query",
            decomposer=_decomposer(_decomposition(sq)),
            backend=_backend({}),
            reranker=reranker,
            options=AgenticSearchOptions(enable_self_reflection=False),
        ))

        reranker.rerank.assert_not_called()


# ---------------------------------------------------------------------------
# Test: Merge and Ranking
# ---------------------------------------------------------------------------


class TestMergeAndRanking:
    def test_shared_chunk_is_pooled_once_with_both_citations(self):
        q1 = SubQuery(id="q1", text="first")
        q2 = SubQuery(id="q2", text="second")
        shared = _item("shared", 0.9)

        result = _run(agentic_search(
            "q",
            decomposer=_decomposer(_decomposition(q1, q2)),
            backend=_backend({
                "first": [shared, _item("a", 0.5)],
                "second": [shared, _item("b", 0.7)],
            }),
            options=AgenticSearchOptions(enable_self_reflection=False),
        ))

        assert [i.id for i in result.final_results] == ["shared", "b", "a"]
        assert result.citation_map["shared"] == ["q1", "q2"]
        assert set(result.citation_map) == {i.id for i in result.final_results}
        assert result.metadata.chunks_retrieved == 3

    def test_final_results_truncated_to_top_twenty(self):
        sq = SubQuery(id="q1", text="query")
        items = [_item(f"c{i:02d}", score=i / 100) for i in range(30)]

        result = _run(agentic_search(
            "query",
            decomposer=_decomposer(_decomposition(sq)),
            backend=_backend({"query": items}),
            options=AgenticSearchOptions(enable_self_reflection=False, chunks_per_query=30),
        ))

        assert len(result.final_results) == 20
        assert result.final_results[0].id == "c29"
        assert result.final_results[-1].id == "c10"
        assert result.metadata.chunks_retrieved == 30
        assert len(result.citation_map) == 30

    def test_ties_keep_first_seen_order(self):
        sq = SubQuery(id="q1", text="query")

        result = _run(agentic_search(
            "query",
            decomposer=_decomposer(_decomposition(sq)),
            backend=_backend({"query": [_item("x", 0.7), _item("y", 0.7), _item("z", 0.7)]}),
            options=AgenticSearchOptions(enable_self_reflection=False),
        ))

        assert [i.id for i in result.final_results] == ["x", "y", "z"]

    def test_confidence_is_mean_of_iterations(self):
        q1 = SubQuery(id="q1", text="first")
        q2 = SubQuery(id="q2", text="second")
        confidences = {"first": 0.4, "second": 0.6}

        async def evaluate(query, items):
            return Evaluation(
                relevant=list(items), irrelevant=[], evaluations=[],
                avg_confidence=confidences[query], needs_refinement=True,
            )

        evaluator = AsyncMock()
        evaluator.evaluate.side_effect = evaluate

        result = _run(agentic_search(
            "q",
            decomposer=_decomposer(_decomposition(q1, q2)),
            backend=_backend({"first": [_item("a")], "second": [_item("b")]}),
            evaluator=evaluator,
            options=AgenticSearchOptions(enable_self_reflection=True),
        ))

        assert result.confidence == pytest.approx(0.5)


# ---------------------------------------------------------------------------
# Test: Failures
# ---------------------------------------------------------------------------


class TestFailures:
    def test_search_error_propagates(self):
        sq = SubQuery(id="q1", text="query")
        backend = AsyncMock()
        backend.search.side_effect = RuntimeError("database down")

        with pytest.raises(RuntimeError, match="database down"):
            _run(agentic_search(
                "query",
                decomposer=_decomposer(_decomposition(sq)),
                backend=backend,
                options=AgenticSearchOptions(enable_self_reflection=False),
            ))

    def test_planning_error_before_any_search(self):
        q1 = SubQuery(id="q1", text="first", dependency="q2")
        q2 = SubQuery(id="q2", text="second", dependency="q1")
        backend = _backend({})

        with pytest.raises(PlanningError):
            _run(agentic_search(
                "q",
                decomposer=_decomposer(_decomposition(q1, q2)),
                backend=backend,
            ))

        backend.search.assert_not_called()

    def test_invalid_max_iterations_rejected(self):
        with pytest.raises(ValueError):
            resolve_capabilities(AgenticSearchOptions(max_iterations=0))


# ---------------------------------------------------------------------------
# Test: Logging Sink
# ---------------------------------------------------------------------------


async def _search_and_flush_logs(query: str, **kwargs):
    """Run a search, then wait for its background log write."""
    result = await agentic_search(query, **kwargs)
    await wait_for_pending_logs()
    return result


class TestSearchLog:
    def test_log_record_written(self):
        sq = SubQuery(id="q1", text="query")
        sink = AsyncMock()

        result = _run(_search_and_flush_logs(
            "query",
            decomposer=_decomposer(_decomposition(sq)),
            backend=_backend({"query": [_item("c1")]}),
            log_sink=sink,
            options=AgenticSearchOptions(
                org_id="org-1", user_id="user-1", enable_self_reflection=False,
            ),
        ))

        record = sink.persist.await_args.args[0]
        assert record.org_id == "org-1"
        assert record.user_id == "user-1"
        assert record.final_result_ids == ["c1"]
        assert record.reasoning_path == result.reasoning

    def test_slow_sink_does_not_delay_result(self):
        sq = SubQuery(id="q1", text="query")
        persisted = []

        async def slow_persist(record):
            await asyncio.sleep(1.0)
            persisted.append(record)

        sink = AsyncMock()
        sink.persist.side_effect = slow_persist

        async def scenario():
            started = time.monotonic()
            result = await agentic_search(
                "query",
                decomposer=_decomposer(_decomposition(sq)),
                backend=_backend({"query": [_item("c1")]}),
                log_sink=sink,
                options=AgenticSearchOptions(enable_self_reflection=False),
            )
            elapsed = time.monotonic() - started
            assert persisted == []
            await wait_for_pending_logs()
            return result, elapsed

        result, elapsed = _run(scenario())

        assert elapsed < 0.5
        assert [i.id for i in result.final_results] == ["c1"]
        assert len(persisted) == 1

    def test_log_failure_is_swallowed(self):
        sq = SubQuery(id="q1", text="query")
        sink = AsyncMock()
        sink.persist.side_effect = RuntimeError("log table missing")

        result = _run(_search_and_flush_logs(
            "query",
            decomposer=_decomposer(_decomposition(sq)),
            backend=_backend({"query": [_item("c1")]}),
            log_sink=sink,
            options=AgenticSearchOptions(enable_self_reflection=False),
        ))

        sink.persist.assert_awaited_once()
        assert [i.id for i in result.final_results] == ["c1"]

    def test_log_results_false_skips_sink(self):
        sq = SubQuery(id="q1", text="query")
        sink = AsyncMock()

        _run(_search_and_flush_logs(
            "query",
            decomposer=_decomposer(_decomposition(sq)),
            backend=_backend({"query": [_item("c1")]}),
            log_sink=sink,
            options=AgenticSearchOptions(log_results=False, enable_self_reflection=False),
        ))

        sink.persist.assert_not_called()

    def test_log_record_iteration_summary(self):
        sq = SubQuery(id="q1", text="query")
        result = _run(agentic_search(
            "query",
            decomposer=_decomposer(_decomposition(sq)),
            backend=_backend({"query": [_item("c1"), _item("c2")]}),
            options=AgenticSearchOptions(enable_self_reflection=False),
        ))

        record = build_log_record(result, AgenticSearchOptions())
        [summary] = record.iterations
        assert summary["iteration"] == 1
        assert summary["subQuery"] == "query"
        assert summary["chunksFound"] == 2
        assert summary["gaps"] == []


# ---------------------------------------------------------------------------
# Test: Reasoning Path
# ---------------------------------------------------------------------------


class TestReasoningPath:
    def test_format(self):
        q1 = SubQuery(id="q1", text="What is React?")
        q2 = SubQuery(id="q2", text="What is Vue?")

        async def evaluate(query, items):
            gaps = ["release history"] if query == "What is Vue?" else []
            return Evaluation(
                relevant=list(items), irrelevant=[], evaluations=[],
                avg_confidence=0.6, gaps_identified=gaps,
            )

        evaluator = AsyncMock()
        evaluator.evaluate.side_effect = evaluate

        result = _run(agentic_search(
            "Compare React and Vue",
            decomposer=_decomposer(_decomposition(q1, q2, reasoning="Split by framework")),
            backend=_backend({
                "What is React?": [_item("r1"), _item("r2")],
                "What is Vue?": [_item("v1")],
            }),
            evaluator=evaluator,
            options=AgenticSearchOptions(enable_self_reflection=True),
        ))

        lines = result.reasoning.split("\n")
        assert lines[0] == "Query Analysis: Split by framework (intent: multi_part, complexity: 3)"
        assert lines[1] == ""
        assert lines[2] == "Search Strategy:"
        assert "1. What is React? → 2 relevant chunks (confidence: 60%)" in lines
        assert "1. What is Vue? → 1 relevant chunks (confidence: 60%)" in lines
        assert "   Gaps: release history" in lines

    def test_no_iterations(self):
        text = build_reasoning_path(_decomposition(reasoning="nothing to do"), [])
        assert text == (
            "Query Analysis: nothing to do (intent: single_fact, complexity: 1)"
            "\n\nSearch Strategy:"
        )
