# =============================================================================
# Agentic Retrieval Service
# =============================================================================
# Multi-hop retrieval over an organization's knowledge base. One query is
# decomposed into dependency-ordered sub-queries, searched stage by stage,
# optionally reranked and self-evaluated, and merged into a ranked,
# deduplicated, cited result set.
#
# Package structure:
#   agentic_rag/
#   ├── api/          → FastAPI route handlers (POST /search/agentic)
#   ├── agents/       → Decomposition, planning, citation tracking, the
#   │                    agentic search loop and its LangGraph pipeline
#   ├── db/           → Async database engine and ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   └── services/     → Collaborators: LLM, embeddings, vector store,
#                        reranker, relevance evaluator, search log
# =============================================================================
