"""
Tests for the Page Summary template pipeline.

Runs the real graph against MockCompletionBackend with per-role reply
overrides to exercise the happy path, the revision loop and every
fallback path of the model-backed stages.
"""

import json

import pytest
from click.testing import CliRunner
from page_summary import (
    MockCompletionBackend,
    PageAction,
    PageContent,
    PageSummaryAgent,
    create_summary_graph,
    summarize_page,
)
from page_summary.__main__ import cli
from page_summary.backend import MOCK_REPLIES
from page_summary.stages import COMPASSIONATE_SYSTEM, GUARDIAN_SYSTEM, TECHNICAL_SYSTEM

from flowstate.config import ExecutionConfig

PAGE = PageContent(
    title="Start your free trial",
    text_content="Free for 7 days, then $119.99/year. No refunds for partial periods.",
    excerpt="Free for 7 days.",
    url="https://example.com/checkout",
)
ACTIONS = [
    PageAction(label="Start free trial", type="button", importance="primary"),
    PageAction(label="Add gift card", type="link", href="/gift"),
]

REJECTION = json.dumps(
    {
        "approved": False,
        "accuracy": "low",
        "missing_critical_info": ["refund terms"],
        "revision_instructions": "Mention the refund policy",
    }
)

FULL_PATH = [
    "navigator",
    "security",
    "compassionate_writer",
    "technical_writer",
    "arbiter",
    "guardian",
    "assemble",
]


def backend_with(**overrides):
    replies = dict(MOCK_REPLIES)
    for role, reply in overrides.items():
        if reply is None:
            replies.pop(role)
        else:
            replies[role] = reply
    return MockCompletionBackend(replies)


def calls_for(backend, system):
    return [prompt for sys_prompt, prompt in backend.calls if sys_prompt == system]


def config(**kwargs):
    return ExecutionConfig(**{"max_iterations": 50, "max_revisions": 2, **kwargs})


async def run(backend, **kwargs):
    kwargs.setdefault("config", config())
    return await summarize_page(PAGE, backend, actions=ACTIONS, **kwargs)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_full_pipeline_with_mock_backend():
    result = await run(MockCompletionBackend())

    assert result.errors == []
    assert result.state.revision_count == 1
    assert result.state.quality_report.approved is True
    assert [w.writer_id for w in result.state.writer_outputs] == ["compassionate", "technical"]

    summary = result.summary
    assert summary.startswith("# Starting a streaming subscription")
    assert "⚠️ **HIGH RISK**" in summary
    assert "## What You Need to Know" in summary
    assert "## 💰 Financial Actions" in summary
    assert "(⚠️ Cannot be undone)" in summary
    assert "## ⚠️ Watch Out For" in summary
    assert "**hidden_cost**" in summary
    assert "## Main Actions" in summary
    assert "**Start free trial**" in summary
    assert "**Add gift card**" not in summary
    assert "## Fine Print (Simplified)" in summary
    assert "may be incomplete" not in summary


@pytest.mark.asyncio
async def test_stages_run_in_graph_order():
    progress = []
    result = await run(MockCompletionBackend(), on_progress=lambda name, state: progress.append(name))
    assert progress == FULL_PATH
    assert result.state.final_summary == result.summary


@pytest.mark.asyncio
async def test_ctas_are_linked_to_page_actions():
    result = await run(MockCompletionBackend())
    ctas = {c.label: c for c in result.state.identified_ctas}
    assert ctas["Start free trial"].original_action.importance == "primary"
    assert ctas["Add gift card"].original_action.href == "/gift"


@pytest.mark.asyncio
async def test_communication_log_is_collected_and_formatted():
    result = await run(MockCompletionBackend())

    authors = {e.from_stage for e in result.communication_log}
    assert set(FULL_PATH) <= authors
    assert "AGENT COMMUNICATION LOG" in result.formatted_log
    assert "┌─ GUARDIAN" in result.formatted_log


@pytest.mark.asyncio
async def test_custom_prompt_reaches_writers():
    backend = MockCompletionBackend()
    await run(backend, custom_prompt="Use very short sentences")
    assert "Use very short sentences" in calls_for(backend, COMPASSIONATE_SYSTEM)[0]
    assert "Use very short sentences" in calls_for(backend, TECHNICAL_SYSTEM)[0]


@pytest.mark.asyncio
async def test_page_may_be_passed_as_a_mapping():
    result = await summarize_page(PAGE.model_dump(), MockCompletionBackend(), config=config())
    assert result.state.page == PAGE
    assert result.errors == []


# ---------------------------------------------------------------------------
# Revision loop
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_rejected_summary_is_revised_until_ceiling():
    backend = backend_with(guardian=REJECTION)
    result = await run(backend, config=config(max_revisions=2))

    compassionate_prompts = calls_for(backend, COMPASSIONATE_SYSTEM)
    assert len(compassionate_prompts) == 3
    assert len(calls_for(backend, TECHNICAL_SYSTEM)) == 1
    assert len(calls_for(backend, GUARDIAN_SYSTEM)) == 3
    assert "REVISION REQUESTED" not in compassionate_prompts[0]
    assert "Mention the refund policy" in compassionate_prompts[1]

    assert result.state.revision_count == 3
    assert len(result.state.writer_outputs) == 2
    assert result.state.final_summary is not None
    assert "may be incomplete" in result.summary
    assert result.errors == []


@pytest.mark.asyncio
async def test_zero_revisions_goes_straight_to_assembly():
    backend = backend_with(guardian=REJECTION)
    result = await run(backend, config=config(max_revisions=0))
    assert len(calls_for(backend, COMPASSIONATE_SYSTEM)) == 1
    assert "may be incomplete" in result.summary


# ---------------------------------------------------------------------------
# Fallbacks and contained failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_unparseable_writer_reply_is_contained():
    result = await run(backend_with(technical="Sorry, I can't help with that."))

    assert result.errors == ["technical_writer failed: reply is not valid JSON"]
    decision = result.state.arbiter_decision
    assert decision.chosen_writer == "compassionate"
    assert decision.reasoning == "Only one writer output available"
    assert result.summary.startswith("# Starting a streaming subscription")


@pytest.mark.asyncio
async def test_both_writers_failing_uses_page_fallback():
    result = await run(backend_with(compassionate="nope", technical="nope"))

    assert "Arbiter missing all writer outputs" in result.errors
    assert len([e for e in result.errors if "writer failed" in e]) == 2
    assert result.summary.startswith("# Start your free trial")
    assert "Free for 7 days." in result.summary


@pytest.mark.asyncio
async def test_unparseable_arbiter_reply_defaults_to_compassionate_draft():
    result = await run(backend_with(arbiter="{broken"))

    decision = result.state.arbiter_decision
    assert decision.chosen_writer == "compassionate"
    assert decision.merged_content.title == "Starting a streaming subscription"
    assert decision.merged_content.summary.startswith("This page signs you up")
    assert result.errors == []


@pytest.mark.asyncio
async def test_unparseable_guardian_reply_auto_approves():
    backend = backend_with(guardian="looks fine to me")
    result = await run(backend)

    assert result.state.quality_report.approved is True
    assert result.state.needs_revision is False
    assert len(calls_for(backend, GUARDIAN_SYSTEM)) == 1
    assert result.errors == []


@pytest.mark.asyncio
async def test_unparseable_security_reply_is_cautious():
    result = await run(backend_with(security="???"))

    analysis = result.state.security_analysis
    assert analysis.risk_level == "medium"
    assert "proceed with caution" in analysis.recommendations[0]
    assert "HIGH RISK" not in result.summary


@pytest.mark.asyncio
async def test_backend_error_in_navigator_does_not_stop_the_run():
    result = await run(backend_with(navigator=None))

    assert len(result.errors) == 1
    assert result.errors[0].startswith("navigator failed: No mock reply")
    assert result.state.page_structure is None
    assert "## Main Actions" not in result.summary
    assert result.state.final_summary is not None


# ---------------------------------------------------------------------------
# Agent wrapper and CLI
# ---------------------------------------------------------------------------


def test_graph_structure():
    graph = create_summary_graph(MockCompletionBackend(), config())
    info = graph.describe()

    assert info["entry"] == "navigator"
    assert info["stages"] == FULL_PATH
    assert info["parallel_groups"]["writers"] == {
        "source": "security",
        "members": ["compassionate_writer", "technical_writer"],
        "join": "arbiter",
    }
    assert info["conditional_edges"]["guardian"] == {
        "revise": "compassionate_writer",
        "assemble": "assemble",
    }


def test_agent_info():
    info = PageSummaryAgent(MockCompletionBackend(), config(max_revisions=1)).info()
    assert info["name"] == "Page Summary"
    assert info["entry_stage"] == "navigator"
    assert info["max_revisions"] == 1
    assert "assemble" in info["stages"]


@pytest.mark.asyncio
async def test_agent_runs_reuse_its_compiled_graph(monkeypatch):
    from page_summary import agent as agent_module

    agent = PageSummaryAgent(MockCompletionBackend(), config())

    def no_rebuild(*args, **kwargs):
        raise AssertionError("graph rebuilt on run")

    monkeypatch.setattr(agent_module, "create_summary_graph", no_rebuild)
    first = await agent.run(PAGE, actions=ACTIONS)
    second = await agent.run(PAGE, actions=ACTIONS)

    assert first.errors == second.errors == []
    assert first.summary == second.summary


def test_cli_info_json():
    result = CliRunner().invoke(cli, ["info", "--json"])
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["stages"] == FULL_PATH


def test_cli_run_mock():
    result = CliRunner().invoke(cli, ["run", "--mock", "--quiet"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["errors"] == []
    assert data["summary"].startswith("# ")


def test_cli_run_requires_backend():
    result = CliRunner().invoke(cli, ["run", "--quiet"])
    assert result.exit_code == 2
    assert "--mock" in result.output
