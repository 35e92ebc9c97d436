# =============================================================================
# Relevance Evaluator — LLM Self-Reflection on Retrieved Chunks
# =============================================================================
#
# After each sub-query's search, the evaluator asks the LLM to judge every
# retrieved chunk: is it relevant, how confident are you, and what is still
# missing? The orchestrator uses the answer two ways:
#
# 1. FILTER — only chunks judged relevant enter the result pool
# 2. STOP   — high average confidence with no gaps ends the run early
#
# DESIGN DECISION: Evaluation failures never block the search.
# If the LLM call fails or returns something we can't parse, we fall back
# to "everything is relevant at 0.7 confidence". The search still returns
# the vector store's results; it just can't stop early on that iteration
# (0.7 is below the early-stop threshold).
#
# DESIGN DECISION: Chunks are numbered in the prompt, not identified by id.
# Models copy small integers back reliably; long chunk ids not so much.
# We map `chunkIndex` back to the item ourselves.
# =============================================================================

from __future__ import annotations

import logging

from agentic_rag.agents.types import ChunkEvaluation, Evaluation, RetrievedItem
from agentic_rag.config import settings
from agentic_rag.services.llm import LLMProvider, get_llm_provider, parse_json_content

logger = logging.getLogger(__name__)

_PROMPT_CHUNK_CHARS = 500
_FALLBACK_CONFIDENCE = 0.7


# ---------------------------------------------------------------------------
# Evaluation Prompt
# ---------------------------------------------------------------------------

_EVALUATION_SYSTEM = """You are a retrieval quality evaluator for a \
multi-hop search system.

For each numbered chunk, decide whether it helps answer the query.

Respond with ONLY valid JSON (no markdown, no explanation):
{
  "evaluations": [
    {
      "chunkIndex": 0,
      "isRelevant": true or false,
      "confidence": 0.0-1.0,
      "reasoning": "Brief justification"
    }
  ],
  "gapsIdentified": ["Information the query needs that no chunk provides"],
  "needsRefinement": true or false
}

Guidelines:
- Judge every chunk, using the index shown in its header
- A chunk is relevant only if it directly contributes to the answer
- "confidence" is how sure you are of your verdict for that chunk
- Set "needsRefinement" when the chunks together cannot answer the query"""


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def evaluate_results(
    query: str,
    items: list[RetrievedItem],
    llm: LLMProvider,
    confidence_threshold: float | None = None,
) -> Evaluation:
    """
    Ask the LLM which retrieved items are relevant to the query.

    Args:
        query: The sub-query the items were retrieved for.
        items: Retrieved items, in ranked order.
        llm: Provider used for judging.
        confidence_threshold: Below this average confidence the result is
            flagged for refinement (default settings.agentic_confidence_threshold).

    Returns:
        Evaluation partitioning `items` into relevant and irrelevant.
    """
    if not items:
        return Evaluation(
            relevant=[],
            irrelevant=[],
            evaluations=[],
            avg_confidence=0.0,
            gaps_identified=["No results retrieved"],
            needs_refinement=True,
        )

    threshold = (
        settings.agentic_confidence_threshold
        if confidence_threshold is None
        else confidence_threshold
    )

    user_message = (
        f"Query: {query}\n\n"
        f"Retrieved chunks ({len(items)} total):\n\n"
        f"{_format_chunks_for_eval(items)}"
    )

    try:
        response = await llm.complete(
            messages=[{"role": "user", "content": user_message}],
            system=_EVALUATION_SYSTEM,
            temperature=0.0,  # Deterministic evaluation
            max_tokens=2048,
        )
        parsed = parse_json_content(response.content)
        return _build_evaluation(parsed, items, threshold)

    except (ValueError, KeyError, TypeError, AttributeError) as e:
        logger.warning(
            "Failed to parse evaluation response: %s. Using fallback evaluation.",
            e,
        )
        return _fallback_evaluation(items)

    except Exception as e:
        logger.warning(
            "Evaluation LLM call failed: %s. Using fallback evaluation.", e,
        )
        return _fallback_evaluation(items)


class LLMRelevanceEvaluator:
    """RelevanceEvaluator backed by `evaluate_results`."""

    def __init__(
        self,
        llm: LLMProvider | None = None,
        confidence_threshold: float | None = None,
    ) -> None:
        self._llm = llm
        self._confidence_threshold = confidence_threshold

    async def evaluate(self, query: str, items: list[RetrievedItem]) -> Evaluation:
        return await evaluate_results(
            query,
            items,
            llm=self._llm or get_llm_provider(),
            confidence_threshold=self._confidence_threshold,
        )


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _build_evaluation(
    parsed: dict, items: list[RetrievedItem], threshold: float,
) -> Evaluation:
    """Map the LLM's per-index verdicts back onto the items."""
    verdicts: list[ChunkEvaluation] = []
    relevant_indices: set[int] = set()

    for raw in parsed.get("evaluations") or []:
        index = int(raw.get("chunkIndex", -1))
        in_range = 0 <= index < len(items)
        is_relevant = bool(raw.get("isRelevant", False))

        verdicts.append(ChunkEvaluation(
            chunk_id=items[index].id if in_range else "",
            is_relevant=is_relevant,
            confidence=_clamp_confidence(raw.get("confidence", 0.0)),
            reasoning=str(raw.get("reasoning", "")),
        ))
        if in_range and is_relevant:
            relevant_indices.add(index)

    # Items the model skipped count as irrelevant
    relevant = [item for i, item in enumerate(items) if i in relevant_indices]
    irrelevant = [item for i, item in enumerate(items) if i not in relevant_indices]

    avg_confidence = (
        sum(v.confidence for v in verdicts) / len(verdicts) if verdicts else 0.0
    )
    gaps = [str(g) for g in parsed.get("gapsIdentified") or []]
    needs_refinement = (
        bool(parsed.get("needsRefinement", False)) or avg_confidence < threshold
    )

    logger.debug(
        "Evaluation: %d/%d relevant, avg_confidence=%.2f, gaps=%d",
        len(relevant), len(items), avg_confidence, len(gaps),
    )

    return Evaluation(
        relevant=relevant,
        irrelevant=irrelevant,
        evaluations=verdicts,
        avg_confidence=avg_confidence,
        gaps_identified=gaps,
        needs_refinement=needs_refinement,
    )


def _clamp_confidence(value) -> float:
    """Model-reported confidence, forced into [0, 1]."""
    return min(max(float(value), 0.0), 1.0)


def _fallback_evaluation(items: list[RetrievedItem]) -> Evaluation:
    return Evaluation(
        relevant=list(items),
        irrelevant=[],
        evaluations=[
            ChunkEvaluation(
                chunk_id=item.id,
                is_relevant=True,
                confidence=_FALLBACK_CONFIDENCE,
                reasoning="Fallback evaluation",
            )
            for item in items
        ],
        avg_confidence=_FALLBACK_CONFIDENCE,
        gaps_identified=[],
        needs_refinement=False,
    )


def _format_chunks_for_eval(items: list[RetrievedItem]) -> str:
    sections = []
    for i, item in enumerate(items):
        text = item.content
        if len(text) > _PROMPT_CHUNK_CHARS:
            text = text[:_PROMPT_CHUNK_CHARS] + "..."
        sections.append(
            f"--- Chunk {i} (source: {item.source_title}) "
            f"[similarity: {item.relevance_score:.3f}] ---\n{text}"
        )
    return "\n\n".join(sections)
