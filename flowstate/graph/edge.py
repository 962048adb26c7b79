"""
Edge Protocol - How stages connect in a graph.

Edge kinds:
- unconditional: always followed after the source stage runs
- parallel: an unconditional edge that belongs to a declared parallel
  group; when two or more members of the group are due at once they run
  concurrently against the same State snapshot and rejoin at the group's
  join stage
- conditional: a router function reads the post-merge State and returns a
  label; the label picks the next stage (or END) from a route map

A source stage has either one conditional edge set or any number of
unconditional edges, never both.
"""

from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, Field

END = "__end__"


class EdgeSpec(BaseModel):
    """
    An unconditional transition.

    Examples:
        EdgeSpec(source="navigator", target="security")

        # Fan-out edge, created by StateGraph.add_parallel_edges()
        EdgeSpec(source="security", target="technical_writer", parallel_group="writers")
    """

    source: str = Field(description="Source stage name")
    target: str = Field(description="Target stage name, or END")
    parallel_group: str | None = Field(
        default=None,
        description="ID of the parallel group this fan-out edge belongs to",
    )

    model_config = {"frozen": True}

    @property
    def id(self) -> str:
        return f"{self.source}->{self.target}"


class ConditionalEdgeSpec(BaseModel):
    """
    A router plus its label-to-stage map.

    Example:
        ConditionalEdgeSpec(
            source="guardian",
            router=revision_router(max_revisions=2, forward_label="assemble"),
            routes={"revise": "compassionate_writer", "assemble": "assemble"},
        )
    """

    source: str
    router: Callable[[Any], str]
    routes: dict[str, str] = Field(description="Route label -> target stage or END")

    model_config = {"frozen": True}

    def resolve(self, label: str) -> str | None:
        """Target for a label, or None if the label is not mapped."""
        return self.routes.get(label)


class ParallelGroupSpec(BaseModel):
    """Stages that fan out from one source and fan back in at ``join``."""

    id: str
    source: str
    members: list[str] = Field(description="Member stages in registration order")
    join: str = Field(description="Fan-in successor stage, or END")

    model_config = {"frozen": True}


class EdgeTable:
    """
    Read-only lookup of the edges of a compiled graph, keyed by source.

    Outgoing unconditional edges keep their registration order; the
    executor relies on it for deterministic fan-out and merge order.
    """

    def __init__(
        self,
        edges: Iterable[EdgeSpec],
        conditional_edges: Iterable[ConditionalEdgeSpec],
        parallel_groups: Iterable[ParallelGroupSpec],
    ):
        self.edges: tuple[EdgeSpec, ...] = tuple(edges)

        outgoing: dict[str, list[EdgeSpec]] = {}
        for edge in self.edges:
            outgoing.setdefault(edge.source, []).append(edge)
        self._outgoing: Mapping[str, tuple[EdgeSpec, ...]] = MappingProxyType(
            {source: tuple(group) for source, group in outgoing.items()}
        )

        self._conditional: Mapping[str, ConditionalEdgeSpec] = MappingProxyType(
            {spec.source: spec for spec in conditional_edges}
        )
        self._groups: Mapping[str, ParallelGroupSpec] = MappingProxyType(
            {group.id: group for group in parallel_groups}
        )

    def outgoing(self, source: str) -> tuple[EdgeSpec, ...]:
        return self._outgoing.get(source, ())

    def conditional(self, source: str) -> ConditionalEdgeSpec | None:
        return self._conditional.get(source)

    def parallel_group(self, group_id: str) -> ParallelGroupSpec | None:
        return self._groups.get(group_id)

    @property
    def parallel_groups(self) -> tuple[ParallelGroupSpec, ...]:
        return tuple(self._groups.values())

    @property
    def conditional_edges(self) -> tuple[ConditionalEdgeSpec, ...]:
        return tuple(self._conditional.values())

    def successors(self, source: str) -> list[str]:
        """Every stage that could follow ``source``, ignoring router decisions."""
        conditional = self.conditional(source)
        if conditional is not None:
            return [t for t in conditional.routes.values() if t != END]
        return [e.target for e in self.outgoing(source) if e.target != END]
