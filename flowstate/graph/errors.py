"""
Error taxonomy for graph construction and execution.

Only GraphValidationError is raised to callers. Everything else is
constructed by the executor, recorded on the ExecutionResult and folded
into the run's State as an error entry, so a run always hands back a
usable State.
"""

from typing import Any


class FlowStateError(Exception):
    """Base class for all flowstate errors."""


class GraphValidationError(FlowStateError):
    """
    Raised by StateGraph.compile() when the graph definition is malformed.

    Carries every problem found, not just the first one, so a broken graph
    can be fixed in one pass.
    """

    def __init__(self, errors: list[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("Invalid graph: " + "; ".join(self.errors))


class StageExecutionError(FlowStateError):
    """A stage raised or returned something that could not be merged."""

    def __init__(self, stage: str, cause: Any):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} failed: {cause}")


class StructuredOutputError(StageExecutionError):
    """A stage's structured result could not be parsed under the strict strategy."""


class IterationCeilingExceeded(FlowStateError):
    """The run hit the engine-wide cap on stage invocations."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Orchestration max iterations reached (limit={limit})")


class UnroutableLabelWarning(UserWarning):
    """A router returned a label that is not in its route map."""

    def __init__(self, stage: str, label: Any, routes: list[str] | None = None):
        self.stage = stage
        self.label = label
        self.routes = list(routes or [])
        super().__init__(
            f"Router after '{stage}' returned unmapped label {label!r} "
            f"(known: {self.routes}); ending run"
        )
