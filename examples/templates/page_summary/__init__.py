"""
Page Summary - multi-stage summarization of web pages for vulnerable readers.

Navigator, security sentinel, two parallel writers, an arbiter and a
guardian quality gate with a bounded revision loop.
"""

from .agent import PageSummaryAgent, SummaryResult, create_summary_graph, summarize_page
from .backend import CompletionBackend, MockCompletionBackend
from .config import default_config, metadata
from .models import PageAction, PageContent, PageSummaryState

__version__ = "1.0.0"

__all__ = [
    "PageSummaryAgent",
    "SummaryResult",
    "create_summary_graph",
    "summarize_page",
    "CompletionBackend",
    "MockCompletionBackend",
    "PageAction",
    "PageContent",
    "PageSummaryState",
    "default_config",
    "metadata",
]
