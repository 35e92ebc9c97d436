# =============================================================================
# Execution Planner — Dependency Leveling for Sub-Queries
# =============================================================================
#
# Turns a flat list of sub-queries into ordered stages:
#
#   stage 0: sub-queries with no dependency
#   stage 1: sub-queries whose dependency is in stage 0
#   stage N: sub-queries whose dependency is in stage N-1
#
# Members of a stage are independent of each other and run concurrently;
# stages run one after another. This is Kahn-style topological leveling,
# simplified by the fact that each sub-query has at most ONE dependency.
#
# DESIGN DECISION: Fail loudly on an unresolvable plan.
# A cycle, a dependency on an id that doesn't exist, or a duplicate id all
# mean the decomposition is broken. Silently dropping those sub-queries
# would make the final answer quietly incomplete, so we raise PlanningError
# before a single search is issued and let the caller decide.
# =============================================================================

from __future__ import annotations

import logging

from agentic_rag.agents.errors import PlanningError
from agentic_rag.agents.types import SubQuery

logger = logging.getLogger(__name__)


def plan_execution_order(sub_queries: list[SubQuery]) -> list[list[SubQuery]]:
    """
    Group sub-queries into dependency-ordered stages.

    Within a stage, sub-queries keep their input order, so the same input
    always produces the same plan.

    Args:
        sub_queries: Sub-queries from decomposition, in decomposer order.

    Returns:
        List of stages. Empty input gives an empty list.

    Raises:
        PlanningError: On duplicate ids, dangling dependencies, or cycles.
    """
    if not sub_queries:
        return []

    seen_ids: set[str] = set()
    for sq in sub_queries:
        if sq.id in seen_ids:
            raise PlanningError(
                f"Duplicate sub-query id '{sq.id}'", unresolved=[sq.id],
            )
        seen_ids.add(sq.id)

    dangling = [
        sq.id for sq in sub_queries
        if sq.dependency is not None and sq.dependency not in seen_ids
    ]
    if dangling:
        raise PlanningError(
            f"Sub-queries depend on unknown ids: {', '.join(dangling)}",
            unresolved=dangling,
        )

    level_of: dict[str, int] = {}
    stages: list[list[SubQuery]] = []
    remaining = list(sub_queries)

    while remaining:
        current_level = len(stages)
        stage = [
            sq for sq in remaining
            if sq.dependency is None
            or level_of.get(sq.dependency, current_level) < current_level
        ]
        if not stage:
            # Nothing became ready: every remaining sub-query waits on
            # another remaining one, i.e. a cycle.
            unresolved = [sq.id for sq in remaining]
            raise PlanningError(
                f"Circular dependency between sub-queries: {', '.join(unresolved)}",
                unresolved=unresolved,
            )

        for sq in stage:
            level_of[sq.id] = current_level
        stages.append(stage)
        stage_ids = {sq.id for sq in stage}
        remaining = [sq for sq in remaining if sq.id not in stage_ids]

    logger.debug(
        "Planned %d sub-queries into %d stages: %s",
        len(sub_queries), len(stages),
        [[sq.id for sq in stage] for stage in stages],
    )
    return stages
