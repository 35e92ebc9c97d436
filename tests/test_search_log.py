# =============================================================================
# Unit Tests — Search Log Sink
# =============================================================================
#
# The session factory is mocked; no database is needed.
# =============================================================================

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

from agentic_rag.agents.types import SearchLogRecord
from agentic_rag.db.models import AgenticSearchLog
from agentic_rag.services.search_log import DatabaseSearchLogSink


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _record() -> SearchLogRecord:
    return SearchLogRecord(
        org_id="org-1",
        user_id="user-1",
        original_query="Compare A and B",
        query_intent="comparison",
        sub_queries=[{"id": "q1", "text": "What is A?"}],
        iterations=[{"iteration": 1, "subQuery": "What is A?", "chunksFound": 2}],
        final_result_ids=["c1", "c2"],
        total_duration_ms=420,
        chunks_retrieved=2,
        confidence_score=0.8,
        reasoning_path="Query Analysis: test",
    )


def _session_factory(session: MagicMock) -> MagicMock:
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = session
    return factory


class TestDatabaseSearchLogSink:
    def test_persists_one_row(self):
        session = MagicMock()
        session.commit = AsyncMock()

        _run(DatabaseSearchLogSink(_session_factory(session)).persist(_record()))

        [row] = session.add.call_args.args
        assert isinstance(row, AgenticSearchLog)
        assert row.org_id == "org-1"
        assert row.query_intent == "comparison"
        assert row.final_results == ["c1", "c2"]
        assert row.confidence_score == 0.8
        session.commit.assert_awaited_once()

    def test_commit_failure_is_swallowed(self):
        session = MagicMock()
        session.commit = AsyncMock(side_effect=RuntimeError("relation does not exist"))

        # Must not raise
        _run(DatabaseSearchLogSink(_session_factory(session)).persist(_record()))
