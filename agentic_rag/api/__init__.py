# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - search.py: POST /search/agentic
# GET /health is registered directly in main.py.
# =============================================================================
