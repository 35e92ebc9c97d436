# =============================================================================
# Search Log Sink — Best-Effort Persistence of Run Summaries
# =============================================================================
#
# Writes one `agentic_search_logs` row per logged agentic search. Used for
# offline analysis of decomposition quality, iteration counts and latency.
#
# DESIGN DECISION: Own session, swallow failures.
# Same pattern as background metric persistence: the sink runs after the
# result is computed, opens its own session, and a failed insert is logged
# at WARNING and dropped. Logging must never turn a successful search into
# an error response.
# =============================================================================

from __future__ import annotations

import logging

from agentic_rag.agents.types import SearchLogRecord
from agentic_rag.db.engine import async_session_factory
from agentic_rag.db.models import AgenticSearchLog

logger = logging.getLogger(__name__)


class DatabaseSearchLogSink:
    """SearchLogSink writing to PostgreSQL."""

    def __init__(self, session_factory=None) -> None:
        self._session_factory = session_factory or async_session_factory

    async def persist(self, record: SearchLogRecord) -> None:
        try:
            async with self._session_factory() as session:
                session.add(AgenticSearchLog(
                    org_id=record.org_id,
                    user_id=record.user_id,
                    original_query=record.original_query,
                    query_intent=record.query_intent,
                    subqueries=record.sub_queries,
                    iterations=record.iterations,
                    final_results=record.final_result_ids,
                    total_duration_ms=record.total_duration_ms,
                    chunks_retrieved=record.chunks_retrieved,
                    confidence_score=record.confidence_score,
                    reasoning_path=record.reasoning_path,
                ))
                await session.commit()
            logger.debug("Persisted agentic search log (intent=%s)", record.query_intent)
        except Exception as e:
            logger.warning("Failed to persist agentic search log: %s", e)
