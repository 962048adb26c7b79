"""
StateGraph - additive builder for stage graphs.

Usage:
    graph = StateGraph(PageState, graph_id="summary")
    graph.add_stage("navigator", navigator)
    graph.add_stage("security", security)
    graph.add_stage("arbiter", arbiter)
    ...
    graph.set_entry("navigator")
    graph.add_edge("navigator", "security")
    graph.add_parallel_edges(
        "security", ["compassionate_writer", "technical_writer"], join="arbiter"
    )
    graph.add_conditional_edges("guardian", router, {"revise": ..., "assemble": ...})
    compiled = graph.compile()

    result = await compiled.invoke(PageState(page=page))

Builder calls may come in any order; every reference is checked by
compile(). A builder compiles exactly once.
"""

import dataclasses
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Self

from flowstate.config import ExecutionConfig
from flowstate.graph.edge import ConditionalEdgeSpec, EdgeSpec, EdgeTable, ParallelGroupSpec
from flowstate.graph.errors import GraphValidationError
from flowstate.graph.executor import ExecutionResult, GraphExecutor, RunCallbacks
from flowstate.graph.stage import Router, Stage, StageRegistry
from flowstate.graph.state import WorkflowState
from flowstate.graph.validator import find_unreachable, validate_graph

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledGraph:
    """
    Immutable, validated graph ready for execution.

    Holds no per-run state; safe to share across concurrent invocations.
    """

    id: str
    state_type: type[WorkflowState]
    entry: str
    stages: Mapping[str, Stage]
    edges: EdgeTable
    max_iterations: int
    audit_routing: bool = True

    async def invoke(
        self,
        initial_state: WorkflowState | Mapping[str, Any],
        callbacks: RunCallbacks | None = None,
    ) -> ExecutionResult:
        """
        Execute one run from a fresh initial State.

        A mapping is validated into ``state_type`` first; anything that is
        neither raises TypeError before the run starts.
        """
        if isinstance(initial_state, Mapping):
            initial_state = self.state_type.model_validate(initial_state)
        elif not isinstance(initial_state, self.state_type):
            raise TypeError(
                f"initial_state must be a {self.state_type.__name__} or a mapping, "
                f"got {type(initial_state).__name__}"
            )
        return await GraphExecutor(self).execute(initial_state, callbacks)

    @property
    def stage_names(self) -> list[str]:
        return list(self.stages)

    def describe(self) -> dict[str, Any]:
        """Plain-data summary of the graph structure."""
        return {
            "id": self.id,
            "state_type": self.state_type.__name__,
            "entry": self.entry,
            "stages": self.stage_names,
            "edges": [e.id for e in self.edges.edges],
            "conditional_edges": {
                spec.source: dict(spec.routes) for spec in self.edges.conditional_edges
            },
            "parallel_groups": {
                group.id: {"source": group.source, "members": group.members, "join": group.join}
                for group in self.edges.parallel_groups
            },
            "max_iterations": self.max_iterations,
        }


class StateGraph:
    """Collects stages and edges, then compiles them into a CompiledGraph."""

    def __init__(self, state_type: type[WorkflowState] = WorkflowState, graph_id: str = "graph"):
        self.state_type = state_type
        self.id = graph_id
        self._stages = StageRegistry()
        self._entry: str | None = None
        self._edges: list[EdgeSpec] = []
        self._conditional_edges: list[ConditionalEdgeSpec] = []
        self._parallel_groups: list[ParallelGroupSpec] = []
        self._compiled = False

    def _ensure_open(self) -> None:
        if self._compiled:
            raise GraphValidationError(
                f"StateGraph '{self.id}' is already compiled; build a new StateGraph instead"
            )

    def add_stage(self, name: str, fn: Stage) -> Self:
        """Register a stage function under ``name``."""
        self._ensure_open()
        self._stages.register(name, fn)
        return self

    def set_entry(self, name: str) -> Self:
        """Set the stage every run starts from."""
        self._ensure_open()
        self._entry = name
        return self

    def add_edge(self, source: str, target: str) -> Self:
        """Always go from ``source`` to ``target`` (a stage or END)."""
        self._ensure_open()
        self._edges.append(EdgeSpec(source=source, target=target))
        return self

    def add_conditional_edges(
        self,
        source: str,
        router: Router,
        routes: Mapping[str, str],
    ) -> Self:
        """Route from ``source`` by the label ``router(state)`` returns."""
        self._ensure_open()
        self._conditional_edges.append(
            ConditionalEdgeSpec(source=source, router=router, routes=dict(routes))
        )
        return self

    def add_parallel_edges(
        self,
        source: str,
        targets: Iterable[str],
        join: str,
        group_id: str | None = None,
    ) -> Self:
        """
        Fan out from ``source`` to ``targets`` concurrently, fanning in at ``join``.

        Also adds a ``target -> join`` edge for every target, so a member
        re-entered on its own (e.g. by a revision route) still reaches the join.
        """
        self._ensure_open()
        members = list(targets)
        group = ParallelGroupSpec(
            id=group_id or f"{source}-fanout",
            source=source,
            members=members,
            join=join,
        )
        self._parallel_groups.append(group)
        for member in members:
            self._edges.append(EdgeSpec(source=source, target=member, parallel_group=group.id))
        for member in members:
            self._edges.append(EdgeSpec(source=member, target=join))
        return self

    def compile(
        self,
        config: ExecutionConfig | None = None,
        max_iterations: int | None = None,
    ) -> CompiledGraph:
        """
        Validate the definition and freeze it.

        Raises:
            GraphValidationError: listing every dangling reference or
                ambiguous routing declaration, or if already compiled
        """
        self._ensure_open()
        config = config or ExecutionConfig()
        if max_iterations is not None:
            config = dataclasses.replace(config, max_iterations=max_iterations)

        edges = _dedupe_edges(self._edges)
        errors = validate_graph(
            stage_names=self._stages.names(),
            duplicate_stages=self._stages.duplicates,
            entry=self._entry,
            edges=edges,
            conditional_edges=self._conditional_edges,
            parallel_groups=self._parallel_groups,
        )
        if errors:
            for error in errors:
                logger.error(f"✗ {error}")
            raise GraphValidationError(errors)

        table = EdgeTable(edges, self._conditional_edges, self._parallel_groups)
        unreachable = find_unreachable(
            self._stages.names(),
            self._entry,
            {name: table.successors(name) for name in self._stages},
        )
        for name in unreachable:
            logger.warning(f"⚠ Stage '{name}' is unreachable from entry '{self._entry}'")

        self._compiled = True
        compiled = CompiledGraph(
            id=self.id,
            state_type=self.state_type,
            entry=self._entry,
            stages=self._stages.freeze(),
            edges=table,
            max_iterations=config.max_iterations,
            audit_routing=config.audit_routing,
        )
        logger.info(
            f"Compiled graph '{self.id}': {len(self._stages)} stages, {len(edges)} edges, "
            f"{len(self._conditional_edges)} conditional, {len(self._parallel_groups)} parallel"
        )
        return compiled


def _dedupe_edges(edges: list[EdgeSpec]) -> list[EdgeSpec]:
    """Drop repeated identical edges, keeping the first registration."""
    seen: set[tuple[str, str, str | None]] = set()
    unique = []
    for edge in edges:
        key = (edge.source, edge.target, edge.parallel_group)
        if key in seen:
            continue
        seen.add(key)
        unique.append(edge)
    return unique
