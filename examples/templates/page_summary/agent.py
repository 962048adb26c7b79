"""Agent graph construction for the Page Summary pipeline."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from flowstate.config import ExecutionConfig
from flowstate.graph import END, CompiledGraph, RunCallbacks, StateGraph, revision_router
from flowstate.runtime import LogEntry, format_communication_log

from .backend import CompletionBackend
from .config import default_config, metadata
from .models import PageAction, PageContent, PageSummaryState
from .stages import SummaryStages

logger = logging.getLogger(__name__)

ENTRY_STAGE = "navigator"
WRITERS = ["compassionate_writer", "technical_writer"]
NO_SUMMARY = "Failed to generate summary"


def create_summary_graph(
    backend: CompletionBackend,
    config: ExecutionConfig | None = None,
) -> CompiledGraph:
    """
    Build and compile the summarization graph.

    Flow:
        navigator → security → {compassionate_writer, technical_writer}
        → arbiter → guardian → (revise: compassionate_writer | assemble) → END
    """
    config = config or default_config
    graph = StateGraph(PageSummaryState, graph_id="page-summary")

    for name, fn in SummaryStages(backend).as_mapping().items():
        graph.add_stage(name, fn)

    graph.set_entry(ENTRY_STAGE)
    graph.add_edge("navigator", "security")
    graph.add_parallel_edges("security", WRITERS, join="arbiter", group_id="writers")
    graph.add_edge("arbiter", "guardian")
    graph.add_conditional_edges(
        "guardian",
        revision_router(config.max_revisions, forward_label="assemble"),
        {"revise": "compassionate_writer", "assemble": "assemble"},
    )
    graph.add_edge("assemble", END)

    return graph.compile(config)


@dataclass
class SummaryResult:
    """What a caller of summarize_page() gets back."""

    summary: str
    errors: list[str] = field(default_factory=list)
    communication_log: list[LogEntry] = field(default_factory=list)
    formatted_log: str = ""
    state: PageSummaryState | None = None


async def summarize_page(
    page: PageContent | dict[str, Any],
    backend: CompletionBackend,
    actions: list[PageAction] | None = None,
    custom_prompt: str = "",
    config: ExecutionConfig | None = None,
    on_progress: Callable[[str, PageSummaryState], Any] | None = None,
    verbose: bool = False,
    graph: CompiledGraph | None = None,
) -> SummaryResult:
    """
    Run the full summarization pipeline for one page.

    Stage failures do not raise; they show up in ``errors``, and the summary
    falls back to a fixed message when no stage produced one. Pass a
    precompiled ``graph`` to skip building one per call.
    """
    graph = graph or create_summary_graph(backend, config)
    initial = PageSummaryState(
        page=PageContent.model_validate(page),
        actions=actions or [],
        custom_prompt=custom_prompt,
    )

    logger.info(f"Starting summarization of '{initial.page.title or 'Untitled'}'")
    result = await graph.invoke(
        initial,
        RunCallbacks(
            on_stage_start=lambda stage: logger.info(f"Agent starting: {stage}"),
            on_stage_end=on_progress,
        ),
    )
    state = result.state

    formatted_log = format_communication_log(state.communication_log)
    if verbose:
        logger.info(f"\n{formatted_log}")

    return SummaryResult(
        summary=state.final_summary or NO_SUMMARY,
        errors=list(state.errors),
        communication_log=list(state.communication_log),
        formatted_log=formatted_log,
        state=state,
    )


class PageSummaryAgent:
    """Page Summary pipeline bound to a completion backend."""

    def __init__(self, backend: CompletionBackend, config: ExecutionConfig | None = None):
        self.backend = backend
        self.config = config or default_config
        self.graph = create_summary_graph(backend, self.config)

    async def run(self, page: PageContent | dict[str, Any], **kwargs: Any) -> SummaryResult:
        return await summarize_page(
            page, self.backend, config=self.config, graph=self.graph, **kwargs
        )

    def info(self) -> dict[str, Any]:
        """Get agent information."""
        structure = self.graph.describe()
        return {
            "name": metadata.name,
            "version": metadata.version,
            "description": metadata.description,
            "stages": structure["stages"],
            "edges": structure["edges"],
            "entry_stage": structure["entry"],
            "parallel_groups": structure["parallel_groups"],
            "conditional_edges": structure["conditional_edges"],
            "max_iterations": self.config.max_iterations,
            "max_revisions": self.config.max_revisions,
        }
