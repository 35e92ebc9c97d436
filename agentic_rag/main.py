# =============================================================================
# FastAPI Application Factory
# =============================================================================
#
# Run locally:
#   uvicorn agentic_rag.main:app --reload
#
# Logging is configured here, once, with the level from LOG_LEVEL; every
# module just does `logging.getLogger(__name__)`.
#
# Search-log rows are written in background tasks after each response; the
# lifespan hook waits for any still in flight before the process exits.
# =============================================================================

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from agentic_rag.agents.search import wait_for_pending_logs
from agentic_rag.api.search import router as search_router
from agentic_rag.config import settings
from agentic_rag.models.responses import HealthResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    logger.info("Shutting down: flushing pending search logs")
    await wait_for_pending_logs()


def create_app() -> FastAPI:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Agentic multi-hop retrieval: query decomposition, staged "
            "vector search, reranking and self-reflection."
        ),
        debug=settings.debug,
        lifespan=lifespan,
    )

    app.include_router(search_router)

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health() -> HealthResponse:
        return HealthResponse(version=settings.app_version, service=settings.app_name)

    return app


app = create_app()
