"""
Graph Executor - Runs compiled state graphs.

The executor:
1. Takes a CompiledGraph and an initial State
2. Drives a FIFO queue of stage names from the entry stage
3. Merges each stage's partial update into State
4. Follows unconditional, parallel and conditional edges
5. Contains stage failures as error entries and enforces the iteration
   ceiling
6. Returns the final State with an execution summary

Per-stage failures never abort a run. The only run-terminating condition
is the iteration ceiling, and even then the best-effort State is returned.
"""

import asyncio
import inspect
import logging
import time
import uuid
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from flowstate.graph.edge import END, ParallelGroupSpec
from flowstate.graph.errors import (
    IterationCeilingExceeded,
    StageExecutionError,
    UnroutableLabelWarning,
)
from flowstate.graph.stage import Stage, call_stage
from flowstate.graph.state import WorkflowState, merge_state, snapshot, validate_partial
from flowstate.observability import clear_trace_context, get_trace_context, set_trace_context
from flowstate.runtime.audit_log import STATE_TARGET, ActionKind, create_log_entry

if TYPE_CHECKING:
    from flowstate.graph.builder import CompiledGraph


@dataclass
class RunCallbacks:
    """
    Observation hooks for a run.

    Observers only: whatever they return or raise, scheduling is unaffected.
    A coroutine returned by a hook is scheduled as a background task and
    never awaited by the run loop.
    """

    on_stage_start: Callable[[str], Any] | None = None
    on_stage_end: Callable[[str, WorkflowState], Any] | None = None


@dataclass
class ExecutionResult:
    """Result of executing a graph."""

    state: WorkflowState
    error: str | None = None  # set only when the run was cut short
    run_id: str = ""
    reached_end: bool = False
    steps_executed: int = 0
    path: list[str] = field(default_factory=list)  # stage names in execution order
    stage_visit_counts: dict[str, int] = field(default_factory=dict)
    problems: list[Exception] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        """True when the run was not terminated by the iteration ceiling."""
        return self.error is None

    @property
    def execution_quality(self) -> str:
        """"clean", "degraded" (contained failures), or "failed" (run cut short)."""
        if self.error is not None:
            return "failed"
        if self.problems:
            return "degraded"
        return "clean"


@dataclass
class StageOutcome:
    """What one stage invocation produced, before merging."""

    stage: str
    partial: dict[str, Any] = field(default_factory=dict)
    error: StageExecutionError | None = None
    latency_ms: int = 0


@dataclass
class _Run:
    """Everything owned by a single invoke() call."""

    state: WorkflowState
    result: ExecutionResult
    callbacks: RunCallbacks
    queue: deque[str] = field(default_factory=deque)
    visited: set[tuple[str, int]] = field(default_factory=set)
    observer_tasks: set[asyncio.Task] = field(default_factory=set)


class GraphExecutor:
    """
    Executes a compiled graph.

    Holds no per-run state, so one executor (and one CompiledGraph) can
    serve any number of concurrent runs.

    Example:
        executor = GraphExecutor(graph)
        result = await executor.execute(PageState(page="..."))
        print(result.state.errors, result.path)
    """

    def __init__(self, graph: "CompiledGraph"):
        self.graph = graph
        self.max_iterations = graph.max_iterations
        self.audit_routing = graph.audit_routing
        self.logger = logging.getLogger(__name__)

    async def execute(
        self,
        initial_state: WorkflowState,
        callbacks: RunCallbacks | None = None,
    ) -> ExecutionResult:
        """
        Run the graph to completion.

        Never raises for conditions that arise during the run; they are
        reported in ``result.problems`` and ``result.state.errors``.
        """
        run_id = uuid.uuid4().hex
        outer_context = get_trace_context()
        set_trace_context(run_id=run_id, graph_id=self.graph.id)

        run = _Run(
            state=initial_state,
            result=ExecutionResult(state=initial_state, run_id=run_id),
            callbacks=callbacks or RunCallbacks(),
        )
        run.queue.append(self.graph.entry)
        started = time.monotonic()

        self.logger.info(f"🚀 Run started: graph '{self.graph.id}', entry '{self.graph.entry}'")

        try:
            await self._run_loop(run)
        finally:
            run.result.state = run.state
            run.result.stage_visit_counts = dict(Counter(run.result.path))
            run.result.duration_ms = int((time.monotonic() - started) * 1000)
            clear_trace_context()
            if outer_context:
                set_trace_context(**outer_context)

        result = run.result
        if result.success:
            self.logger.info(
                f"✓ Run complete: {result.steps_executed} stage(s) in {result.duration_ms}ms, "
                f"path: {' → '.join(result.path)}"
            )
        else:
            self.logger.warning(f"⚠ Run stopped early: {result.error}")
        return result

    async def _run_loop(self, run: _Run) -> None:
        while run.queue:
            stage_name = run.queue.popleft()
            visit_key = (stage_name, run.state.revision_count)
            if visit_key in run.visited:
                self.logger.debug(
                    f"Skipping '{stage_name}': already ran at revision {run.state.revision_count}"
                )
                continue

            fn = self.graph.stages.get(stage_name)
            if fn is None:
                self.logger.warning(f"Unknown stage '{stage_name}' in queue, skipping")
                continue

            if run.result.steps_executed >= self.max_iterations:
                run.queue.appendleft(stage_name)
                self._stop_at_ceiling(run)
                return

            run.visited.add(visit_key)
            await self._run_sequential(run, stage_name, fn)

            next_stages = self._next_stages(run, stage_name)
            if END in next_stages:
                run.result.reached_end = True
                if run.queue:
                    self.logger.debug(f"END reached; dropping queued stages {list(run.queue)}")
                return

            group, members = self._due_parallel_group(run, stage_name, next_stages)
            if group is not None:
                if run.result.steps_executed + len(members) > self.max_iterations:
                    self._stop_at_ceiling(run)
                    return
                await self._run_parallel(run, group, members)
                if group.join == END:
                    run.result.reached_end = True
                    return
                if group.join not in run.queue:
                    run.queue.append(group.join)
                next_stages = [name for name in next_stages if name not in members]

            run.queue.extend(next_stages)

    # ------------------------------------------------------------------
    # Stage invocation
    # ------------------------------------------------------------------

    async def _invoke_stage(self, stage_name: str, fn: Stage, state: WorkflowState) -> StageOutcome:
        """Call one stage against a private snapshot. Never raises ``Exception``."""
        set_trace_context(stage=stage_name)
        outcome = StageOutcome(stage=stage_name)
        started = time.monotonic()
        try:
            raw = await call_stage(fn, snapshot(state))
            outcome.partial = validate_partial(type(state), raw)
        except StageExecutionError as e:
            outcome.error = e
        except Exception as e:
            outcome.error = StageExecutionError(stage_name, e)
        outcome.latency_ms = int((time.monotonic() - started) * 1000)
        return outcome

    def _apply_outcome(self, run: _Run, outcome: StageOutcome) -> None:
        run.result.path.append(outcome.stage)
        run.result.steps_executed += 1

        if outcome.error is None:
            run.state = merge_state(run.state, outcome.partial)
            self.logger.info(
                f"      ✓ {outcome.stage} done ({len(outcome.partial)} field(s))",
                extra={"stage": outcome.stage, "latency_ms": outcome.latency_ms},
            )
        else:
            error = outcome.error
            self.logger.error(
                f"      ✗ {error}",
                extra={"stage": outcome.stage, "latency_ms": outcome.latency_ms},
            )
            run.result.problems.append(error)
            run.state = merge_state(
                run.state,
                {
                    "errors": [str(error)],
                    "communication_log": [
                        create_log_entry(
                            outcome.stage,
                            STATE_TARGET,
                            ActionKind.OUTPUT,
                            f"Stage failed: {error.cause}",
                        )
                    ],
                },
            )

        self._notify(run, run.callbacks.on_stage_end, outcome.stage, snapshot(run.state))

    async def _run_sequential(self, run: _Run, stage_name: str, fn: Stage) -> None:
        self.logger.info(f"   ▶ Executing: {stage_name}")
        self._notify(run, run.callbacks.on_stage_start, stage_name)
        outcome = await self._invoke_stage(stage_name, fn, run.state)
        self._apply_outcome(run, outcome)

    async def _run_parallel(self, run: _Run, group: ParallelGroupSpec, members: list[str]) -> None:
        """
        Run group members concurrently against one snapshot.

        Results are merged in the group's registration order once every
        member has finished, so completion order never affects the State.
        """
        self.logger.info(f"   ⑂ Fan-out '{group.id}': executing {len(members)} stages in parallel")
        base = run.state
        for member in members:
            self.logger.info(f"      • {member}")
            run.visited.add((member, base.revision_count))
            self._notify(run, run.callbacks.on_stage_start, member)

        outcomes = await asyncio.gather(
            *(self._invoke_stage(m, self.graph.stages[m], base) for m in members)
        )
        for outcome in outcomes:
            self._apply_outcome(run, outcome)

        failed = sum(1 for o in outcomes if o.error is not None)
        self.logger.info(
            f"   ⑃ Fan-in '{group.id}': {len(members) - failed}/{len(members)} succeeded, "
            f"joining at '{group.join}'"
        )

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _next_stages(self, run: _Run, stage_name: str) -> list[str]:
        """Follow the edges of the stage that just ran, using post-merge State."""
        conditional = self.graph.edges.conditional(stage_name)
        if conditional is None:
            return [edge.target for edge in self.graph.edges.outgoing(stage_name)]

        try:
            label = conditional.router(snapshot(run.state))
        except Exception as e:
            error = StageExecutionError(f"{stage_name} router", e)
            self.logger.error(f"      ✗ {error}; ending run")
            run.result.problems.append(error)
            run.state = merge_state(run.state, {"errors": [str(error)]})
            return [END]

        target = conditional.resolve(label) if isinstance(label, str) else None
        if target is None:
            warning = UnroutableLabelWarning(stage_name, label, list(conditional.routes))
            self.logger.warning(f"      ⚠ {warning}")
            run.result.problems.append(warning)
            run.state = merge_state(run.state, {"errors": [str(warning)]})
            return [END]

        backward = target in run.result.path
        self.logger.info(f"      → Route '{label}': {stage_name} → {target}")
        if self.audit_routing:
            entry = create_log_entry(
                stage_name,
                STATE_TARGET if target == END else target,
                ActionKind.REVISE if backward else ActionKind.DECIDE,
                f"Route '{label}' → {target}",
            )
            run.state = merge_state(run.state, {"communication_log": [entry]})
        return [target]

    def _due_parallel_group(
        self, run: _Run, stage_name: str, next_stages: list[str]
    ) -> tuple[ParallelGroupSpec | None, list[str]]:
        """
        Return the declared group and its members if two or more are due now.

        Members that already ran at the current revision are not due.
        """
        revision = run.state.revision_count
        for edge in self.graph.edges.outgoing(stage_name):
            if edge.parallel_group is None:
                continue
            group = self.graph.edges.parallel_group(edge.parallel_group)
            if group is None:
                continue
            due = [
                m
                for m in group.members
                if m in next_stages and (m, revision) not in run.visited
            ]
            if len(due) > 1:
                return group, due
        return None, []

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _stop_at_ceiling(self, run: _Run) -> None:
        problem = IterationCeilingExceeded(self.max_iterations)
        self.logger.error(
            f"✗ {problem}; pending: {list(run.queue)}",
            extra={"iteration": run.result.steps_executed},
        )
        run.result.problems.append(problem)
        run.result.error = str(problem)
        run.state = merge_state(run.state, {"errors": [str(problem)]})

    def _notify(self, run: _Run, callback: Callable | None, *args: Any) -> None:
        """Invoke an observer hook without letting it affect the run."""
        if callback is None:
            return
        try:
            outcome = callback(*args)
        except Exception as e:
            self.logger.warning(f"Observer {getattr(callback, '__name__', callback)!r} raised: {e}")
            return

        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            run.observer_tasks.add(task)
            task.add_done_callback(lambda t: self._observer_done(run, t))

    def _observer_done(self, run: _Run, task: asyncio.Task) -> None:
        run.observer_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.warning(f"Async observer raised: {task.exception()}")
