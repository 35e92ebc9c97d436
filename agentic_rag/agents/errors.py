"""Exceptions raised by the agentic search pipeline."""


class AgenticSearchError(Exception):
    """Base class for errors raised by the orchestrator itself."""


class PlanningError(AgenticSearchError):
    """
    The sub-queries cannot be ordered into stages.

    Raised for dependency cycles, dependencies on unknown ids, and
    duplicate ids. Always raised before any search is issued.
    """

    def __init__(self, message: str, unresolved: list[str] | None = None) -> None:
        super().__init__(message)
        self.unresolved = unresolved or []
