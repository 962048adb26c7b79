"""
Workflow State and the per-field merge policy.

A run's State is a frozen pydantic model. Each field declares how partial
updates are folded into it, once, at the type level:

    class PageState(WorkflowState):
        page: Annotated[str, Input()] = ""
        analysis: dict | None = None                       # replace (default)
        notes: Annotated[list[str], Append()] = Field(default_factory=list)
        drafts: Annotated[list[Draft], UpsertByKey("writer_id")] = Field(
            default_factory=list
        )

merge_state() applies the same rules whether a partial update came from a
sequential stage or from one branch of a parallel fan-out.
"""

import functools
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Annotated, Any, TypeVar

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from flowstate.runtime.audit_log import LogEntry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Merge rules
# ---------------------------------------------------------------------------


class MergeRule:
    """Base class for field merge rules used as ``Annotated`` metadata."""

    def apply(self, current: Any, incoming: Any) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class Replace(MergeRule):
    """Latest wins. Fields without an explicit rule use this."""

    def apply(self, current: Any, incoming: Any) -> Any:
        return incoming


@dataclass(frozen=True)
class Append(MergeRule):
    """Accumulator: incoming items are appended after the existing ones."""

    def apply(self, current: Any, incoming: Any) -> Any:
        return [*(current or []), *(incoming or [])]


@dataclass(frozen=True)
class UpsertByKey(MergeRule):
    """Keyed collection: replace the item with the same key, else append."""

    key: str

    def key_of(self, item: Any) -> Any:
        if isinstance(item, Mapping):
            return item.get(self.key)
        return getattr(item, self.key, None)

    def apply(self, current: Any, incoming: Any) -> Any:
        merged = list(current or [])
        positions = {}
        for i, item in enumerate(merged):
            positions.setdefault(self.key_of(item), i)

        for item in incoming or []:
            item_key = self.key_of(item)
            if item_key is not None and item_key in positions:
                merged[positions[item_key]] = item
            else:
                positions[item_key] = len(merged)
                merged.append(item)
        return merged


@dataclass(frozen=True)
class Input(MergeRule):
    """Set once when the run starts; partial updates never change it."""

    def apply(self, current: Any, incoming: Any) -> Any:
        return current


REPLACE = Replace()


# ---------------------------------------------------------------------------
# State base model
# ---------------------------------------------------------------------------


class WorkflowState(BaseModel):
    """
    Base State for a workflow run.

    Subclasses add domain fields. The fields defined here are used by the
    executor and by revision routers:

    - communication_log / errors only ever grow
    - needs_revision / revision_count are written by the quality-gate stage
      and read by its router; the executor keys its visited-set on
      revision_count but never writes it
    """

    communication_log: Annotated[list[LogEntry], Append()] = Field(default_factory=list)
    errors: Annotated[list[str], Append()] = Field(default_factory=list)

    needs_revision: bool = False
    revision_count: int = 0

    model_config = {"frozen": True}


S = TypeVar("S", bound=WorkflowState)


@functools.cache
def merge_rules(state_type: type[BaseModel]) -> dict[str, MergeRule]:
    """Return the merge rule declared for every field of a State model."""
    rules: dict[str, MergeRule] = {}
    for name, info in state_type.model_fields.items():
        rule = next((m for m in info.metadata if isinstance(m, MergeRule)), REPLACE)
        rules[name] = rule
    return rules


@functools.cache
def _field_adapter(state_type: type[BaseModel], name: str) -> TypeAdapter:
    return TypeAdapter(state_type.model_fields[name].annotation)


def validate_partial(state_type: type[BaseModel], partial: Any) -> dict[str, Any]:
    """
    Coerce a stage's partial update against the State's field types.

    Values for known fields are validated (dicts become nested models, and
    so on). Unknown keys are passed through untouched so merge_state() can
    report them.

    Raises:
        TypeError: the partial is not a mapping
        pydantic.ValidationError: a value does not fit its field
    """
    if partial is None:
        return {}
    if not isinstance(partial, Mapping):
        raise TypeError(f"expected a mapping of state fields, got {type(partial).__name__}")

    fields = state_type.model_fields
    coerced: dict[str, Any] = {}
    for key, value in partial.items():
        if key in fields:
            coerced[key] = _field_adapter(state_type, key).validate_python(value)
        else:
            coerced[key] = value
    return coerced


def merge_state(current: S, partial: Mapping[str, Any] | None) -> S:
    """
    Fold a partial update into the current State.

    Pure and total: never raises and never mutates ``current``. Keys that
    name no field, keys naming Input fields, and values that do not fit
    their field type are skipped with a warning.
    """
    if not partial:
        return current
    if not isinstance(partial, Mapping):
        logger.warning(f"Ignoring non-mapping update of type {type(partial).__name__}")
        return current

    rules = merge_rules(type(current))
    updates: dict[str, Any] = {}
    for key, value in partial.items():
        rule = rules.get(key)
        if rule is None:
            logger.warning(f"Ignoring update to unknown state field '{key}'")
            continue
        if isinstance(rule, Input):
            logger.warning(f"Ignoring update to input field '{key}'")
            continue
        try:
            value = _field_adapter(type(current), key).validate_python(value)
        except ValidationError as e:
            logger.warning(
                f"Ignoring invalid update to state field '{key}': {e.error_count()} error(s)"
            )
            continue
        updates[key] = rule.apply(getattr(current, key), value)

    if not updates:
        return current
    return current.model_copy(update=updates)


def snapshot(state: S) -> S:
    """A private deep copy handed to a stage so it cannot alias run State."""
    return state.model_copy(deep=True)
