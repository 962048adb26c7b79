"""
CLI entry point for the Page Summary pipeline.

The model client is not part of this template; ``run --mock`` drives the
pipeline with canned replies so the whole graph can be exercised offline.
"""

import asyncio
import json
import sys

import click

from flowstate.config import get_logging_settings
from flowstate.observability import configure_logging

from .agent import PageSummaryAgent
from .backend import MockCompletionBackend
from .models import PageAction, PageContent

SAMPLE_PAGE = {
    "title": "Start your free trial",
    "url": "https://example.com/checkout",
    "excerpt": "Watch everything free for 7 days.",
    "text_content": (
        "Watch everything free for 7 days. After your trial, your plan renews "
        "automatically at $119.99/year. No refunds for partial periods. "
        "Only 3 trial spots left today!"
    ),
}
SAMPLE_ACTIONS = [
    {"label": "Start free trial", "type": "button", "importance": "primary"},
    {"label": "Add gift card", "type": "link", "href": "/gift", "importance": "secondary"},
]


def setup_logging(verbose=False, debug=False):
    """Configure logging for execution visibility."""
    level, fmt = get_logging_settings()
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    else:
        level = "WARNING" if level.upper() == "INFO" else level
    configure_logging(level=level, format=fmt)


def _load_page(path):
    if path is None:
        return PageContent.model_validate(SAMPLE_PAGE), [
            PageAction.model_validate(a) for a in SAMPLE_ACTIONS
        ]
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    actions = [PageAction.model_validate(a) for a in data.pop("actions", [])]
    return PageContent.model_validate(data), actions


@click.group()
@click.version_option(version="1.0.0")
def cli():
    """Page Summary - calm, accurate summaries of web pages."""
    pass


@cli.command()
@click.option("--mock", is_flag=True, help="Use canned model replies")
@click.option(
    "--page",
    "page_path",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file with title, text_content, excerpt, url and optional actions",
)
@click.option("--prompt", "custom_prompt", default="", help="Extra instructions for the writers")
@click.option("--show-log", is_flag=True, help="Print the communication log")
@click.option("--quiet", "-q", is_flag=True, help="Only output result JSON")
@click.option("--verbose", "-v", is_flag=True, help="Show execution details")
@click.option("--debug", is_flag=True, help="Show debug logging")
def run(mock, page_path, custom_prompt, show_log, quiet, verbose, debug):
    """Summarize a page."""
    if not mock:
        raise click.UsageError("No completion backend is configured; pass --mock")
    if not quiet:
        setup_logging(verbose=verbose, debug=debug)

    page, actions = _load_page(page_path)
    agent = PageSummaryAgent(MockCompletionBackend())
    result = asyncio.run(agent.run(page, actions=actions, custom_prompt=custom_prompt))

    output_data = {
        "summary": result.summary,
        "errors": result.errors,
        "log_entries": len(result.communication_log),
    }
    click.echo(json.dumps(output_data, indent=2, default=str))
    if show_log:
        click.echo(result.formatted_log)
    sys.exit(0 if not result.errors else 1)


@cli.command()
@click.option("--json", "output_json", is_flag=True)
def info(output_json):
    """Show agent information."""
    info_data = PageSummaryAgent(MockCompletionBackend()).info()
    if output_json:
        click.echo(json.dumps(info_data, indent=2))
    else:
        click.echo(f"Agent: {info_data['name']}")
        click.echo(f"Version: {info_data['version']}")
        click.echo(f"Description: {info_data['description']}")
        click.echo(f"\nStages: {', '.join(info_data['stages'])}")
        click.echo(f"Entry: {info_data['entry_stage']}")
        click.echo(f"Max iterations: {info_data['max_iterations']}")
        click.echo(f"Max revisions: {info_data['max_revisions']}")


if __name__ == "__main__":
    cli()
