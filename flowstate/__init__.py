"""
FlowState - asynchronous stage-graph orchestration.

Build a graph of stages once, then run it per request:

    graph = StateGraph(MyState)
    graph.add_stage("fetch", fetch).add_stage("summarize", summarize)
    graph.set_entry("fetch").add_edge("fetch", "summarize").add_edge("summarize", END)
    result = await graph.compile().invoke(MyState(url=url))
"""

from flowstate.graph import (
    END,
    Append,
    CompiledGraph,
    ExecutionResult,
    GraphValidationError,
    Input,
    Replace,
    RunCallbacks,
    StateGraph,
    UpsertByKey,
    WorkflowState,
    merge_state,
    revision_router,
)
from flowstate.runtime import ActionKind, LogEntry, create_log_entry, format_communication_log

__version__ = "0.1.0"

__all__ = [
    "END",
    "StateGraph",
    "CompiledGraph",
    "ExecutionResult",
    "RunCallbacks",
    "GraphValidationError",
    "WorkflowState",
    "Append",
    "Replace",
    "UpsertByKey",
    "Input",
    "merge_state",
    "revision_router",
    "ActionKind",
    "LogEntry",
    "create_log_entry",
    "format_communication_log",
]
