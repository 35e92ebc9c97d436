# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the API. These are SEPARATE from the core
# dataclasses (agents/types.py) and the ORM models (db/models.py): the API
# contract can change without touching either.
# =============================================================================
