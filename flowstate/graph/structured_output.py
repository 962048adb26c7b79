"""
Structured output parsing at the stage boundary.

Stages that call a model usually expect JSON back. How leniently a bad
reply is treated is the stage's choice, not the executor's:

- STRICT: raise StructuredOutputError; the executor contains it like any
  other stage failure
- LENIENT: log a warning and return a caller-supplied fallback value

Example:
    verdict = StructuredOutput(
        QualityReport,
        strategy=FallbackStrategy.LENIENT,
        fallback=lambda: QualityReport(approved=True, accuracy="medium"),
        stage="guardian",
    )
    report = verdict.parse(reply_text)
"""

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from flowstate.graph.errors import StructuredOutputError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def _heuristic_repair(text: str) -> Any | None:
    """
    Attempt to repair almost-JSON without another model call.

    Handles:
    - Prose around the outermost object or array
    - Python booleans/None (True -> true)
    - Single quotes instead of double quotes
    """
    match = re.search(r"(\{.*\}|\[.*\])", text, re.DOTALL)
    if not match:
        return None

    candidate = match.group(1)
    candidate = re.sub(r"\bTrue\b", "true", candidate)
    candidate = re.sub(r"\bFalse\b", "false", candidate)
    candidate = re.sub(r"\bNone\b", "null", candidate)

    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    # Risky, but effective for simple dicts
    if "'" in candidate and '"' not in candidate:
        try:
            return json.loads(candidate.replace("'", '"'))
        except json.JSONDecodeError:
            pass
    return None


def parse_json_response(text: str) -> Any | None:
    """
    Extract a JSON value from a model reply.

    Accepts bare JSON or JSON inside a ``` / ```json fenced block, then falls
    back to heuristic repair. Returns None when nothing parses.
    """
    if not isinstance(text, str):
        return None

    fenced = _FENCED_BLOCK.search(text)
    candidate = fenced.group(1).strip() if fenced else text.strip()
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    repaired = _heuristic_repair(candidate)
    if repaired is None:
        logger.debug(f"Could not parse JSON from reply: {text[:200]!r}")
    return repaired


class FallbackStrategy(StrEnum):
    """What to do when a structured reply does not parse."""

    STRICT = "strict"
    LENIENT = "lenient"


@dataclass
class StructuredOutput(Generic[M]):
    """Parses replies into ``model`` under a chosen fallback strategy."""

    model: type[M]
    strategy: FallbackStrategy = FallbackStrategy.STRICT
    fallback: Callable[[], M] | None = None
    stage: str = "stage"

    def __post_init__(self) -> None:
        if self.strategy == FallbackStrategy.LENIENT and self.fallback is None:
            raise ValueError("LENIENT strategy needs a fallback factory")

    def parse(self, text: str) -> M:
        """
        Parse ``text`` into the model.

        Raises:
            StructuredOutputError: under STRICT, when the reply does not parse
                or does not validate
        """
        data = parse_json_response(text)
        if data is None:
            return self._fail("reply is not valid JSON", text)

        try:
            return self.model.model_validate(data)
        except ValidationError as e:
            return self._fail(f"reply does not match {self.model.__name__}: {e}", text)

    def _fail(self, reason: str, text: str) -> M:
        if self.strategy == FallbackStrategy.STRICT:
            raise StructuredOutputError(self.stage, reason)
        logger.warning(
            f"⚠ {self.stage}: {reason}; using fallback {self.model.__name__}",
            extra={"stage": self.stage},
        )
        logger.debug(f"Unparsed reply: {text[:500]!r}")
        return self.fallback()
