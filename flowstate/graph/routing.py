"""Router helpers for conditional edges.

The revision loop is an ordinary conditional edge: the quality-gate stage
writes ``needs_revision`` and increments ``revision_count`` (the number of
reviews it has completed), and the router below reads both. The executor
never touches either field.
"""

import logging
from collections.abc import Callable

from flowstate.graph.state import WorkflowState

logger = logging.getLogger(__name__)


def revision_router(
    max_revisions: int,
    revise_label: str = "revise",
    forward_label: str = "forward",
) -> Callable[[WorkflowState], str]:
    """
    Build a router that sends work back for revision at most ``max_revisions`` times.

    The gate's target therefore runs at most ``max_revisions + 1`` times; on
    the review after the last allowed revision the forward label is chosen
    whatever the gate decided.

    Example:
        graph.add_conditional_edges(
            "guardian",
            revision_router(2, forward_label="assemble"),
            {"revise": "compassionate_writer", "assemble": "assemble"},
        )
    """
    if max_revisions < 0:
        raise ValueError(f"max_revisions must be >= 0, got {max_revisions}")

    def route(state: WorkflowState) -> str:
        if state.needs_revision and state.revision_count <= max_revisions:
            logger.info(f"[Router] Revision requested (review {state.revision_count})")
            return revise_label
        if state.needs_revision:
            logger.info(f"[Router] Revision limit ({max_revisions}) reached, moving on")
        return forward_label

    route.__name__ = f"revision_router_{revise_label}_{forward_label}"
    return route
