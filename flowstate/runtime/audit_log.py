"""Communication log entries written by stages and by the executor.

The log is the cross-stage observability channel of a run. Entries are
accumulated with the append merge rule and are never reordered or
de-duplicated by the engine; routing never reads them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field

STATE_TARGET = "state"


class ActionKind(StrEnum):
    """What a stage did when it wrote the entry."""

    ANALYZE = "analyze"
    OUTPUT = "output"
    CRITIQUE = "critique"
    DECIDE = "decide"
    REVISE = "revise"
    APPROVE = "approve"


class LogEntry(BaseModel):
    """One entry of the communication log."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    from_stage: str
    to_stage: str = STATE_TARGET  # another stage name, or "state"
    action: ActionKind
    summary: str
    detail: str | None = None

    model_config = {"frozen": True}


def create_log_entry(
    from_stage: str,
    to_stage: str,
    action: ActionKind | str,
    summary: str,
    detail: str | None = None,
) -> LogEntry:
    """Build a log entry stamped with the current time."""
    return LogEntry(
        from_stage=from_stage,
        to_stage=to_stage,
        action=ActionKind(action),
        summary=summary,
        detail=detail,
    )


_ACTION_MARKERS = {
    ActionKind.ANALYZE: "🔍",
    ActionKind.OUTPUT: "📤",
    ActionKind.CRITIQUE: "⚠️",
    ActionKind.DECIDE: "⚖️",
    ActionKind.REVISE: "🔄",
    ActionKind.APPROVE: "✅",
}

RULE_WIDTH = 60
DETAIL_WIDTH = 80


def format_communication_log(entries: list[LogEntry]) -> str:
    """
    Render the log as a boxed text report grouped by consecutive author.

    Example output:
        ════════════════════════════════════════════════════════════
                   AGENT COMMUNICATION LOG
        ════════════════════════════════════════════════════════════

        ┌─ NAVIGATOR ────────────────────────────────────────
        │ [12:00:01] 🔍 ANALYZE → 📋
        │   Beginning page structure analysis
    """
    lines = [
        "═" * RULE_WIDTH,
        "           AGENT COMMUNICATION LOG",
        "═" * RULE_WIDTH,
        "",
    ]

    last_author = ""
    for entry in entries:
        if entry.from_stage != last_author:
            lines.append(f"\n┌─ {entry.from_stage.upper()} {'─' * 40}")
            last_author = entry.from_stage

        time = entry.timestamp.strftime("%H:%M:%S")
        arrow = "→ 📋" if entry.to_stage == STATE_TARGET else f"→ {entry.to_stage}"
        marker = _ACTION_MARKERS.get(entry.action, "•")
        lines.append(f"│ [{time}] {marker} {entry.action.value.upper()} {arrow}")
        lines.append(f"│   {entry.summary}")

        if entry.detail:
            detail = entry.detail
            if len(detail) > DETAIL_WIDTH:
                detail = detail[: DETAIL_WIDTH - 3] + "..."
            lines.append(f"│   └─ {detail}")

    lines.append("")
    lines.append("═" * RULE_WIDTH)
    return "\n".join(lines)
