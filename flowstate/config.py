"""Shared flowstate configuration utilities.

Centralises reading of ~/.flowstate/configuration.json so the executor and
every pipeline template share one implementation.

Example file:
    {
        "execution": {"max_iterations": 80, "max_revisions": 2},
        "logging": {"level": "DEBUG", "format": "json"}
    }
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_MAX_ITERATIONS = 50
DEFAULT_MAX_REVISIONS = 2

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWSTATE_CONFIG_FILE = Path.home() / ".flowstate" / "configuration.json"


def get_flowstate_config() -> dict[str, Any]:
    """Load configuration from ~/.flowstate/configuration.json."""
    if not FLOWSTATE_CONFIG_FILE.exists():
        return {}
    try:
        with open(FLOWSTATE_CONFIG_FILE, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def _execution_section() -> dict[str, Any]:
    section = get_flowstate_config().get("execution", {})
    return section if isinstance(section, dict) else {}


def get_max_iterations() -> int:
    """Return the configured iteration ceiling, falling back to DEFAULT_MAX_ITERATIONS."""
    return int(_execution_section().get("max_iterations", DEFAULT_MAX_ITERATIONS))


def get_max_revisions() -> int:
    """Return the configured revision ceiling for revision routers."""
    return int(_execution_section().get("max_revisions", DEFAULT_MAX_REVISIONS))


def get_audit_routing() -> bool:
    return bool(_execution_section().get("audit_routing", True))


def get_logging_settings() -> tuple[str, str]:
    """Return (level, format) for configure_logging()."""
    section = get_flowstate_config().get("logging", {})
    if not isinstance(section, dict):
        section = {}
    return section.get("level", "INFO"), section.get("format", "auto")


# ---------------------------------------------------------------------------
# ExecutionConfig – shared by the executor and templates
# ---------------------------------------------------------------------------


@dataclass
class ExecutionConfig:
    """Executor limits loaded from ~/.flowstate/configuration.json."""

    max_iterations: int = field(default_factory=get_max_iterations)
    max_revisions: int = field(default_factory=get_max_revisions)
    audit_routing: bool = field(default_factory=get_audit_routing)

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.max_revisions < 0:
            raise ValueError(f"max_revisions must be >= 0, got {self.max_revisions}")
