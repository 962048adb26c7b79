"""Graph structures: stages, edges, state merging and execution."""

from flowstate.graph.builder import CompiledGraph, StateGraph
from flowstate.graph.edge import END, ConditionalEdgeSpec, EdgeSpec, EdgeTable, ParallelGroupSpec
from flowstate.graph.errors import (
    FlowStateError,
    GraphValidationError,
    IterationCeilingExceeded,
    StageExecutionError,
    StructuredOutputError,
    UnroutableLabelWarning,
)
from flowstate.graph.executor import ExecutionResult, GraphExecutor, RunCallbacks
from flowstate.graph.routing import revision_router
from flowstate.graph.stage import PartialState, Router, Stage, StageRegistry
from flowstate.graph.state import (
    Append,
    Input,
    MergeRule,
    Replace,
    UpsertByKey,
    WorkflowState,
    merge_state,
)
from flowstate.graph.structured_output import (
    FallbackStrategy,
    StructuredOutput,
    parse_json_response,
)

__all__ = [
    # Builder
    "StateGraph",
    "CompiledGraph",
    # Edge
    "END",
    "EdgeSpec",
    "ConditionalEdgeSpec",
    "ParallelGroupSpec",
    "EdgeTable",
    # Stage
    "Stage",
    "Router",
    "PartialState",
    "StageRegistry",
    # State
    "WorkflowState",
    "MergeRule",
    "Replace",
    "Append",
    "UpsertByKey",
    "Input",
    "merge_state",
    # Executor
    "GraphExecutor",
    "ExecutionResult",
    "RunCallbacks",
    # Routing
    "revision_router",
    # Structured output
    "StructuredOutput",
    "FallbackStrategy",
    "parse_json_response",
    # Errors
    "FlowStateError",
    "GraphValidationError",
    "StageExecutionError",
    "StructuredOutputError",
    "UnroutableLabelWarning",
    "IterationCeilingExceeded",
]
