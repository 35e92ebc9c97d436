# =============================================================================
# Database Package
# =============================================================================
# Async SQLAlchemy engine and ORM models.
#
# Key exports:
#   - async_session_factory: short-lived sessions for the store and the log
#   - Document, Chunk: the searchable knowledge base (pgvector)
#   - AgenticSearchLog: one row per logged search run
# =============================================================================
