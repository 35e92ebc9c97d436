# =============================================================================
# Query Decomposition — Intent Classification + Sub-Query Generation
# =============================================================================
#
# Multi-hop questions ("How does X compare to Y, and what changed since
# Z?") rarely match any single chunk in embedding space. Decomposition
# splits them into sub-queries that each can, and records dependencies
# between them so the planner can order the searches.
#
# PIPELINE:
#   1. classify_query_intent() — rule-based intent + complexity (free, instant)
#   2. Simple query?  → one sub-query, no LLM call
#   3. Otherwise      → LLM proposes sub-queries as JSON
#   4. Sanitise       → fill defaults, cap count, drop unknown dependencies
#
# DESIGN DECISION: Rule-based classification over LLM.
# Same trade-off as capability routing: zero latency, zero cost, and good
# enough to decide whether decomposition is worth an LLM call at all.
#
# DESIGN DECISION: Unparsable LLM output falls back to the original query.
# A malformed decomposition should degrade to plain single-query search,
# not fail the request. LLM *API* errors still propagate: they mean the
# provider is down, and the caller maps them to HTTP 502.
# =============================================================================

from __future__ import annotations

import json
import logging
from dataclasses import replace

from agentic_rag.agents.types import INTENTS, QueryDecomposition, QueryIntent, SubQuery
from agentic_rag.config import settings
from agentic_rag.services.llm import LLMProvider, get_llm_provider, parse_json_content

logger = logging.getLogger(__name__)

_DEFAULT_PRIORITY = 3


# ---------------------------------------------------------------------------
# Decomposition Prompt
# ---------------------------------------------------------------------------

_DECOMPOSITION_SYSTEM = """You are a query planner for a multi-hop \
retrieval system over an organisation's knowledge base.

Break the user's query into at most {max_sub_queries} focused sub-queries \
that can each be answered by searching the knowledge base independently.

Respond with ONLY valid JSON (no markdown, no explanation):
{{
  "reasoning": "One or two sentences on how you split the query",
  "subQueries": [
    {{
      "id": "q1",
      "text": "A standalone search query",
      "intent": "single_fact | multi_part | comparison | how_to | exploration",
      "dependency": null or the id of a sub-query that must be answered first,
      "priority": 1-5 (5 = most important)
    }}
  ]
}}

Guidelines:
- Each sub-query must make sense on its own, without the original query
- Only set "dependency" when a sub-query genuinely needs another's answer
- Never create circular dependencies
- Prefer fewer, sharper sub-queries over many overlapping ones"""


# ---------------------------------------------------------------------------
# Intent Classification
# ---------------------------------------------------------------------------

_COMPARISON_KEYWORDS = [
    "compare", "comparison", "versus", " vs ", " vs.", "difference between",
    "differences between", "compared to", "better than", "worse than",
    "pros and cons",
]
_HOW_TO_KEYWORDS = [
    "how to", "how do i", "how can i", "how should i", "steps to",
    "step by step", "guide to", "walk me through", "set up", "configure",
]
_EXPLORATION_KEYWORDS = [
    "tell me about", "tell me everything", "everything about", "overview",
    "explain", "explore", "what do we know", "background on", "deep dive",
]
_MULTI_PART_MARKERS = [
    " and also ", " as well as ", "; ", " and then ", " additionally ",
]

_BASE_COMPLEXITY = {
    "single_fact": 1,
    "multi_part": 3,
    "comparison": 4,
    "how_to": 3,
    "exploration": 4,
}


def classify_query_intent(query: str) -> QueryIntent:
    """
    Rule-based intent classification.

    Checks keyword patterns in order of specificity:
    1. Comparison — most specific
    2. How-to — procedural phrasing
    3. Multi-part — several questions joined together
    4. Exploration — open-ended requests
    5. Single fact — default fallback

    Complexity starts from the intent's base and grows by one for long
    queries (over 20 words), capped at 5.
    """
    query_lower = f" {query.lower().strip()} "

    if any(kw in query_lower for kw in _COMPARISON_KEYWORDS):
        intent, confidence, reason = "comparison", 0.85, "comparison keywords"
    elif any(kw in query_lower for kw in _HOW_TO_KEYWORDS):
        intent, confidence, reason = "how_to", 0.85, "procedural phrasing"
    elif query_lower.count("?") > 1 or any(
        marker in query_lower for marker in _MULTI_PART_MARKERS
    ):
        intent, confidence, reason = "multi_part", 0.8, "several questions in one"
    elif any(kw in query_lower for kw in _EXPLORATION_KEYWORDS):
        intent, confidence, reason = "exploration", 0.75, "open-ended request"
    else:
        intent, confidence, reason = "single_fact", 0.7, "no multi-hop markers"

    complexity = _BASE_COMPLEXITY[intent]
    if len(query.split()) > 20:
        complexity += 1
    complexity = min(complexity, 5)

    return QueryIntent(
        intent=intent,
        confidence=confidence,
        complexity=complexity,
        reasoning=f"Classified as {intent}: {reason}",
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def decompose_query(
    query: str,
    llm: LLMProvider,
    max_sub_queries: int | None = None,
) -> QueryDecomposition:
    """
    Break a query into dependency-annotated sub-queries.

    Args:
        query: The user's natural-language query.
        llm: Provider used for non-trivial queries.
        max_sub_queries: Cap on sub-queries (default settings.max_subqueries).

    Returns:
        QueryDecomposition with at least one sub-query.

    Raises:
        Whatever the LLM provider raises on API failure.
    """
    limit = max_sub_queries or settings.max_subqueries
    classification = classify_query_intent(query)

    if classification.intent == "single_fact" or classification.complexity <= 2:
        logger.info(
            "Simple query (%s, complexity=%d), no decomposition needed",
            classification.intent, classification.complexity,
        )
        return _single_query_decomposition(
            query, classification,
            f"{classification.reasoning}; no decomposition needed",
        )

    response = await llm.complete(
        messages=[{"role": "user", "content": f"Query: {query}"}],
        system=_DECOMPOSITION_SYSTEM.format(max_sub_queries=limit),
        temperature=0.0,
        max_tokens=1024,
    )

    try:
        parsed = parse_json_content(response.content)
        raw_sub_queries = parsed.get("subQueries") or []
        if not isinstance(raw_sub_queries, list):
            raise ValueError("subQueries is not a list")
        sub_queries = _sanitise_sub_queries(raw_sub_queries, limit)
    except (json.JSONDecodeError, ValueError, TypeError, AttributeError) as e:
        logger.warning(
            "Failed to parse decomposition response: %s. "
            "Falling back to single query.",
            e,
        )
        return _single_query_decomposition(
            query, classification,
            "Fallback: could not parse decomposition, searching the original query",
        )

    if not sub_queries:
        return _single_query_decomposition(
            query, classification,
            "Fallback: decomposition produced no sub-queries",
        )

    logger.info(
        "Decomposed query into %d sub-queries (intent=%s, complexity=%d)",
        len(sub_queries), classification.intent, classification.complexity,
    )

    return QueryDecomposition(
        original_query=query,
        intent=classification.intent,
        complexity=classification.complexity,
        sub_queries=sub_queries,
        reasoning=str(parsed.get("reasoning") or classification.reasoning),
    )


class LLMQueryDecomposer:
    """QueryDecomposer backed by `decompose_query`."""

    def __init__(
        self,
        llm: LLMProvider | None = None,
        max_sub_queries: int | None = None,
    ) -> None:
        self._llm = llm
        self._max_sub_queries = max_sub_queries

    async def decompose(self, query: str) -> QueryDecomposition:
        return await decompose_query(
            query,
            llm=self._llm or get_llm_provider(),
            max_sub_queries=self._max_sub_queries,
        )


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _single_query_decomposition(
    query: str, classification: QueryIntent, reasoning: str,
) -> QueryDecomposition:
    return QueryDecomposition(
        original_query=query,
        intent=classification.intent,
        complexity=classification.complexity,
        sub_queries=[
            SubQuery(id="q1", text=query, intent=classification.intent, priority=5),
        ],
        reasoning=reasoning,
    )


def _sanitise_sub_queries(raw: list, limit: int) -> list[SubQuery]:
    """
    Turn the LLM's sub-query dicts into SubQuery objects.

    - Missing/blank id → "q{position}"
    - Unknown intent → "single_fact"
    - Missing/invalid priority → 3
    - Entries without text are dropped
    - Over `limit`: keep the highest-priority ones, in their original order
    - Dependencies on ids that didn't survive, or on the sub-query itself,
      are cleared
    """
    candidates: list[SubQuery] = []
    for position, item in enumerate(raw, 1):
        if not isinstance(item, dict):
            continue
        text = str(item.get("text") or "").strip()
        if not text:
            continue

        sq_id = str(item.get("id") or "").strip() or f"q{position}"
        intent = item.get("intent")
        if intent not in INTENTS:
            intent = "single_fact"
        try:
            priority = int(item.get("priority", _DEFAULT_PRIORITY))
        except (TypeError, ValueError):
            priority = _DEFAULT_PRIORITY
        dependency = item.get("dependency")

        candidates.append(SubQuery(
            id=sq_id,
            text=text,
            intent=intent,
            dependency=str(dependency) if dependency else None,
            priority=priority,
        ))

    if len(candidates) > limit:
        # sorted() is stable, so equal priorities keep decomposer order
        ranked = sorted(
            range(len(candidates)), key=lambda i: -candidates[i].priority,
        )
        keep = sorted(ranked[:limit])
        candidates = [candidates[i] for i in keep]

    kept_ids = {sq.id for sq in candidates}
    sanitised = []
    for sq in candidates:
        if sq.dependency is not None and (
            sq.dependency not in kept_ids or sq.dependency == sq.id
        ):
            logger.debug(
                "Dropping dependency %s -> %s (not in final plan)",
                sq.id, sq.dependency,
            )
            sq = replace(sq, dependency=None)
        sanitised.append(sq)
    return sanitised
