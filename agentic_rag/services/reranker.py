# =============================================================================
# Reranker — Cohere Cross-Encoder Reranking
# =============================================================================
#
# Vector similarity is a recall tool: it finds chunks that are *about* the
# right thing. A cross-encoder reranker reads query and chunk together and
# is much better at ordering them by how well the chunk actually answers.
#
# The agentic search uses it per sub-query: retrieve `chunks_per_query`
# candidates by vector similarity, keep the best half after reranking.
#
# DESIGN DECISION: Reranking is optional and degrades to "no reranking".
# - No COHERE_API_KEY  → is_configured() is False, orchestrator skips it
# - API error/timeout  → original order, truncated to top_n
# A reranker outage costs ranking quality, never the whole request.
# Argument validation (empty query, bad top_n/timeout) is a caller bug and
# still raises ValueError.
#
# DESIGN DECISION: AsyncClientV2 with asyncio.wait_for.
# The SDK's own timeout covers the HTTP request; wait_for bounds the whole
# call including retries, which is what a latency budget actually means.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace

import cohere

from agentic_rag.agents.types import RerankResult, RetrievedItem
from agentic_rag.config import settings

logger = logging.getLogger(__name__)

# Rough per-document price used for the cost estimate (USD)
_COST_PER_DOCUMENT = 0.001

_MIN_TIMEOUT_MS = 100
_MAX_TIMEOUT_MS = 5000

# Cohere truncates long documents anyway; sending less keeps requests small
_MAX_DOCUMENT_CHARS = 4000


class CohereReranker:
    """
    Reranker backed by Cohere's rerank endpoint.

    The client is created lazily on the first rerank() call, so
    constructing a CohereReranker never needs network or a key.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout_ms: int | None = None,
    ) -> None:
        self._api_key = settings.cohere_api_key if api_key is None else api_key
        self._model = model or settings.rerank_model
        self._timeout_ms = timeout_ms or settings.rerank_timeout_ms
        self._client: cohere.AsyncClientV2 | None = None

    def is_configured(self) -> bool:
        return bool(self._api_key and self._api_key.strip())

    def _get_client(self) -> cohere.AsyncClientV2:
        if self._client is None:
            self._client = cohere.AsyncClientV2(api_key=self._api_key)
            logger.info("Initialized Cohere reranker (model=%s)", self._model)
        return self._client

    async def rerank(
        self,
        query: str,
        items: list[RetrievedItem],
        top_n: int,
        model: str | None = None,
        timeout_ms: int | None = None,
    ) -> RerankResult:
        """
        Reorder `items` by Cohere relevance and keep the best `top_n`.

        Reranked items carry the Cohere relevance score as their
        `relevance_score`; everything else about them is unchanged.

        Raises:
            ValueError: Empty query, top_n < 1, or timeout_ms outside
                [100, 5000].
        """
        timeout = self._timeout_ms if timeout_ms is None else timeout_ms
        _validate(query, top_n, timeout)

        if len(items) < 2:
            return RerankResult(
                results=list(items),
                original_count=len(items),
                reranked_count=len(items),
            )

        if not self.is_configured():
            logger.debug("COHERE_API_KEY not set, returning original order")
            return RerankResult(
                results=list(items),
                original_count=len(items),
                reranked_count=len(items),
            )

        effective_top_n = min(top_n, len(items))
        start = time.monotonic()

        try:
            response = await asyncio.wait_for(
                self._get_client().rerank(
                    model=model or self._model,
                    query=query,
                    documents=[item.content[:_MAX_DOCUMENT_CHARS] for item in items],
                    top_n=effective_top_n,
                ),
                timeout=timeout / 1000,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Cohere rerank timed out after %dms, using original order", timeout,
            )
            return _original_order(items, effective_top_n, start)
        except Exception as e:
            logger.warning("Cohere rerank failed: %s, using original order", e)
            return _original_order(items, effective_top_n, start)

        reranked = [
            replace(items[r.index], relevance_score=r.relevance_score)
            for r in response.results
        ]
        elapsed_ms = int((time.monotonic() - start) * 1000)

        logger.debug(
            "Reranked %d → %d items in %dms", len(items), len(reranked), elapsed_ms,
        )

        return RerankResult(
            results=reranked,
            original_count=len(items),
            reranked_count=len(reranked),
            reranking_time_ms=elapsed_ms,
            cost_estimate=len(items) * _COST_PER_DOCUMENT,
        )


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _validate(query: str, top_n: int, timeout_ms: int) -> None:
    if not query or not query.strip():
        raise ValueError("query must be a non-empty string")
    if top_n < 1:
        raise ValueError("top_n must be at least 1")
    if timeout_ms < _MIN_TIMEOUT_MS:
        raise ValueError(f"timeout_ms must be at least {_MIN_TIMEOUT_MS}ms")
    if timeout_ms > _MAX_TIMEOUT_MS:
        raise ValueError(f"timeout_ms must be at most {_MAX_TIMEOUT_MS}ms")


def _original_order(
    items: list[RetrievedItem], top_n: int, start: float,
) -> RerankResult:
    kept = list(items[:top_n])
    return RerankResult(
        results=kept,
        original_count=len(items),
        reranked_count=len(kept),
        reranking_time_ms=int((time.monotonic() - start) * 1000),
    )
