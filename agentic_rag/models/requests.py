# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
# FastAPI uses them for:
# 1. Request body validation (automatic 422 errors for invalid data)
# 2. OpenAPI documentation generation (visible at /docs)
#
# Unset optional fields mean "use the service default" (see config.py);
# the endpoint passes them through as None and the search loop resolves
# them once at call entry.
# =============================================================================

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class AgenticSearchRequest(BaseModel):
    """
    Request body for POST /search/agentic.

    Example:
        {
            "query": "How does our refund policy compare to last year's?",
            "org_id": "org_123",
            "max_iterations": 3
        }
    """

    query: str = Field(
        ...,
        min_length=3,
        max_length=2000,
        description="The natural-language query to research",
        examples=["How does the 2024 pricing model differ from 2023?"],
    )

    # Every search is scoped to one organization's knowledge base
    org_id: str = Field(
        ...,
        min_length=1,
        description="Organization whose documents are searched",
        examples=["org_123"],
    )

    user_id: str | None = Field(
        default=None,
        description="Requesting user, recorded in the search log",
    )

    source_ids: list[str] | None = Field(
        default=None,
        description="Restrict search to these document ids. If omitted, searches all.",
    )

    content_types: list[str] | None = Field(
        default=None,
        description="Only search documents of these content types",
        examples=[["document", "recording"]],
    )

    tag_ids: list[str] | None = Field(
        default=None,
        description="Only search documents carrying these tags",
    )

    tag_filter_mode: Literal["any", "all"] = Field(
        default="any",
        description="'any': at least one of tag_ids; 'all': every one of them",
    )

    max_iterations: int | None = Field(
        default=None,
        ge=1,
        le=10,
        description="Maximum sub-query searches for this run (default from config)",
    )

    enable_self_reflection: bool | None = Field(
        default=None,
        description="LLM-judge each sub-query's results (default from config)",
    )

    enable_reranking: bool = Field(
        default=True,
        description="Rerank results when a reranker is configured",
    )

    chunks_per_query: int | None = Field(
        default=None,
        ge=1,
        le=50,
        description="Candidates retrieved per sub-query (default from config)",
    )

    log_results: bool = Field(
        default=True,
        description="Persist a summary of the run to the search log",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "query": "How does the 2024 pricing model differ from 2023?",
                    "org_id": "org_123",
                },
                {
                    "query": "What are the onboarding steps and who approves access?",
                    "org_id": "org_123",
                    "source_ids": ["3f6c0a52-0d0e-4d5c-9a43-1b2f3c4d5e6f"],
                    "tag_ids": ["onboarding", "security"],
                    "tag_filter_mode": "all",
                    "max_iterations": 5,
                    "enable_self_reflection": False,
                },
            ]
        }
    )
