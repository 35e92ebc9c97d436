# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# DESIGN DECISION: Async SQLAlchemy engine over asyncpg.
# Everything that touches the database runs on the FastAPI event loop:
# pgvector similarity queries and search-log inserts. Nothing in this
# service is synchronous, so there is no sync engine.
#
# SESSION POLICY:
# There are no request-scoped sessions. The two database users, the
# pgvector store (read-only) and the search-log sink, each open a
# short-lived session from `async_session_factory()` around their own
# statement. Writers MUST commit explicitly.
# =============================================================================

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from agentic_rag.config import settings

# ---------------------------------------------------------------------------
# Async Engine
# ---------------------------------------------------------------------------
# - echo=debug: log generated SQL during development
# - pool_size/max_overflow: one agentic run can issue several concurrent
#   vector queries (one per sub-query in a stage), so keep some headroom
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=10,
)

# expire_on_commit=False: attribute access after commit must not trigger
# a lazy reload, which fails in async context outside a session.
async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)
