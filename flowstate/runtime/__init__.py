"""Run-time records shared between stages and the executor."""

from flowstate.runtime.audit_log import (
    ActionKind,
    LogEntry,
    create_log_entry,
    format_communication_log,
)

__all__ = [
    "ActionKind",
    "LogEntry",
    "create_log_entry",
    "format_communication_log",
]
