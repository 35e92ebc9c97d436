# =============================================================================
# Search API — Agentic Multi-Hop Retrieval Endpoint
# =============================================================================
#
# Provides POST /search/agentic, a thin wrapper around the LangGraph
# pipeline (agents/orchestrator.py):
#
#   1. Validate the request (Pydantic)
#   2. Map it onto AgenticSearchOptions
#   3. Run decompose → retrieve
#   4. Map the result onto the response schema
#
# Error mapping:
#   - PlanningError (broken sub-query dependencies) → 422
#   - ValueError (missing API key / bad configuration) → 503
#   - anything else (LLM, embedding, database errors) → 502
# A failed run returns no partial result. The search log is written by the
# pipeline itself and can't fail the request.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from agentic_rag.agents.errors import PlanningError
from agentic_rag.agents.orchestrator import run_agentic_search
from agentic_rag.agents.types import AgenticSearchOptions
from agentic_rag.models.requests import AgenticSearchRequest
from agentic_rag.models.responses import AgenticSearchResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["Agentic Search"])


@router.post(
    "/agentic",
    response_model=AgenticSearchResponse,
    summary="Multi-hop agentic search",
    description=(
        "Decompose the query into sub-queries, search them in dependency "
        "order, optionally rerank and self-evaluate each result set, and "
        "return the ranked, deduplicated chunks with citations and a "
        "reasoning trace."
    ),
)
async def agentic_search_endpoint(request: AgenticSearchRequest) -> AgenticSearchResponse:
    logger.info(
        "Agentic search request: query='%s', org_id=%s, max_iterations=%s",
        request.query[:80], request.org_id, request.max_iterations,
    )

    options = AgenticSearchOptions(
        org_id=request.org_id,
        user_id=request.user_id,
        source_ids=request.source_ids,
        content_types=request.content_types,
        tag_ids=request.tag_ids,
        tag_filter_mode=request.tag_filter_mode,
        enable_reranking=request.enable_reranking,
        enable_self_reflection=request.enable_self_reflection,
        max_iterations=request.max_iterations,
        chunks_per_query=request.chunks_per_query,
        log_results=request.log_results,
    )

    try:
        result = await run_agentic_search(request.query, options=options)
    except PlanningError as e:
        logger.warning("Unresolvable query plan: %s", e)
        raise HTTPException(
            status_code=422,
            detail=f"Could not plan sub-queries: {e}",
        ) from e
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(
            status_code=503,
            detail=f"Service configuration error: {e}",
        ) from e
    except Exception as e:
        logger.exception("Agentic search failed: %s", e)
        raise HTTPException(
            status_code=502,
            detail=f"Upstream service error: {e}",
        ) from e

    return AgenticSearchResponse.from_result(result)
