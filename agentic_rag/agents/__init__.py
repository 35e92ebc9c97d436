# =============================================================================
# Agents Package — Agentic Multi-Hop Search
# =============================================================================
#   - types.py: shared dataclasses and collaborator Protocols
#   - decomposition.py: intent classification + LLM sub-query generation
#   - planner.py: dependency leveling of sub-queries into stages
#   - citations.py: deduplicated result pool with per-chunk provenance
#   - search.py: the staged search loop, termination policy, finalizer
#   - orchestrator.py: LangGraph graph (decompose → retrieve)
#   - errors.py: PlanningError and friends
# =============================================================================
