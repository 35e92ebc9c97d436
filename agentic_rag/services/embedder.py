# =============================================================================
# Query Embedding — OpenAI-Compatible Embeddings API
# =============================================================================
#
# Turns sub-query text into the vector the store searches with. Index-side
# embeddings are produced by whatever pipeline populated the store; the
# model and dimensions configured here MUST match that pipeline.
#
# DESIGN DECISION: OpenAI SDK with configurable base_url.
# Most embedding providers (OpenAI, DashScope, local gateways) speak the
# OpenAI embeddings protocol, so one client covers all of them.
#
# DESIGN DECISION: Sync client, called via asyncio.to_thread().
# One short request per sub-query; a thread hop keeps the event loop free
# without a second client type to configure.
#
# API key resolution order:
#   1. OPENAI_API_KEY (explicit embedding key)
#   2. LLM_API_KEY (shared key, e.g. one DashScope key for LLM + embeddings)
# =============================================================================

from __future__ import annotations

import logging

from openai import OpenAI

from agentic_rag.config import settings

logger = logging.getLogger(__name__)

_client: OpenAI | None = None


def _get_client() -> OpenAI:
    """Lazily initialize and cache the embedding client."""
    global _client
    if _client is None:
        resolved_key = settings.openai_api_key or settings.llm_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for embeddings. "
                "Set OPENAI_API_KEY or LLM_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": resolved_key}
        if settings.embedding_base_url:
            client_kwargs["base_url"] = settings.embedding_base_url

        _client = OpenAI(**client_kwargs)

        logger.info(
            "Initialized embedding client (model=%s, base_url=%s)",
            settings.embedding_model,
            settings.embedding_base_url or "https://api.openai.com/v1",
        )
    return _client


def embed_query(text: str) -> list[float]:
    """
    Embed a single query string.

    Raises:
        ValueError: If no embedding API key is configured.
        openai.APIError: If the API call fails.
    """
    create_kwargs: dict = {
        "model": settings.embedding_model,
        "input": [text],
    }
    if settings.embedding_dimensions:
        create_kwargs["dimensions"] = settings.embedding_dimensions

    response = _get_client().embeddings.create(**create_kwargs)

    logger.debug(
        "Embedded query (%d chars, %d prompt tokens)",
        len(text),
        response.usage.prompt_tokens if response.usage else 0,
    )
    return response.data[0].embedding
