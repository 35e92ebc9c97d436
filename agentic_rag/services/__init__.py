# =============================================================================
# Services Package — Collaborators of the Agentic Search
# =============================================================================
#   - llm.py: Multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#   - embedder.py: Query embeddings (OpenAI-compatible API)
#   - vectorstore.py: Pluggable vector store (pgvector, Chroma) + SearchBackend
#   - reranker.py: Cohere reranking
#   - evaluator.py: LLM self-reflection on retrieved chunks
#   - search_log.py: Best-effort persistence of run summaries
# =============================================================================
