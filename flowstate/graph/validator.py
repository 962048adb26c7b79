"""Structural validation for graph definitions.

Runs once, at compile time. Collects every problem instead of stopping at
the first so a broken graph can be fixed in one pass.
"""

import logging
from collections import Counter

from flowstate.graph.edge import END, ConditionalEdgeSpec, EdgeSpec, ParallelGroupSpec

logger = logging.getLogger(__name__)


def validate_graph(
    stage_names: list[str],
    duplicate_stages: list[str],
    entry: str | None,
    edges: list[EdgeSpec],
    conditional_edges: list[ConditionalEdgeSpec],
    parallel_groups: list[ParallelGroupSpec],
) -> list[str]:
    """
    Check referential integrity and routing ambiguity.

    Returns:
        List of error messages; empty when the graph is valid.
    """
    errors: list[str] = []
    known = set(stage_names)

    def is_target(name: str) -> bool:
        return name == END or name in known

    for name in sorted(set(duplicate_stages)):
        errors.append(f"Stage '{name}' is registered more than once")
    if END in known:
        errors.append(f"'{END}' is reserved for the terminal marker and cannot be a stage name")

    # Entry point
    if not entry:
        errors.append("Entry stage is not set")
    elif entry == END:
        errors.append("Entry stage cannot be the terminal marker")
    elif entry not in known:
        errors.append(f"Entry stage '{entry}' is not registered")

    # Unconditional edges
    for edge in edges:
        if edge.source not in known:
            errors.append(f"Edge '{edge.id}' references missing source '{edge.source}'")
        if not is_target(edge.target):
            errors.append(f"Edge '{edge.id}' references missing target '{edge.target}'")

    # Conditional edges
    cond_counts = Counter(spec.source for spec in conditional_edges)
    for source, count in cond_counts.items():
        if count > 1:
            errors.append(f"Stage '{source}' has {count} conditional edge sets; only one is allowed")

    edge_sources = {edge.source for edge in edges}
    for spec in conditional_edges:
        if spec.source not in known:
            errors.append(f"Conditional edges reference missing source '{spec.source}'")
        if not spec.routes:
            errors.append(f"Conditional edges from '{spec.source}' have an empty route map")
        for label, target in spec.routes.items():
            if not is_target(target):
                errors.append(
                    f"Route '{label}' from '{spec.source}' references missing target '{target}'"
                )
        if spec.source in edge_sources:
            errors.append(
                f"Stage '{spec.source}' mixes conditional and unconditional edges; "
                f"routing would be ambiguous"
            )

    # Parallel groups
    sources_with_groups = Counter(group.source for group in parallel_groups)
    for source, count in sources_with_groups.items():
        if count > 1:
            errors.append(f"Stage '{source}' declares {count} parallel groups; only one is allowed")

    for group in parallel_groups:
        if len(group.members) < 2:
            errors.append(f"Parallel group '{group.id}' needs at least two members")
        if len(set(group.members)) != len(group.members):
            errors.append(f"Parallel group '{group.id}' lists a member more than once")
        for member in group.members:
            if member == END or member not in known:
                errors.append(f"Parallel group '{group.id}' references missing member '{member}'")
            if member == group.join:
                errors.append(f"Parallel group '{group.id}' joins into its own member '{member}'")
        if not is_target(group.join):
            errors.append(f"Parallel group '{group.id}' references missing join '{group.join}'")

    return errors


def find_unreachable(
    stage_names: list[str],
    entry: str,
    successors: dict[str, list[str]],
) -> list[str]:
    """Stages that no path from the entry stage can reach."""
    reachable: set[str] = set()
    to_visit = [entry]
    while to_visit:
        current = to_visit.pop()
        if current in reachable:
            continue
        reachable.add(current)
        to_visit.extend(successors.get(current, []))

    return [name for name in stage_names if name not in reachable]
