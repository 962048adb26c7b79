"""
Stage Protocol - the unit of work in a graph.

A stage takes a State snapshot and returns a partial update: a mapping of
only the fields it wants to change. Stages signal failure by raising.
They may be coroutine functions or plain functions, and must tolerate
running more than once per run (revision loops re-enter them).
"""

import inspect
from collections.abc import Awaitable, Callable, Iterator, Mapping
from types import MappingProxyType
from typing import Any

PartialState = Mapping[str, Any]
Stage = Callable[[Any], Awaitable[PartialState | None] | PartialState | None]
Router = Callable[[Any], str]


class StageRegistry:
    """
    Named stage functions, kept in registration order.

    Duplicate registrations are remembered rather than rejected so the
    builder can report them together with every other problem at compile
    time.
    """

    def __init__(self) -> None:
        self._stages: dict[str, Stage] = {}
        self.duplicates: list[str] = []

    def register(self, name: str, fn: Stage) -> None:
        if not callable(fn):
            raise TypeError(f"Stage '{name}' must be callable, got {type(fn).__name__}")
        if name in self._stages:
            self.duplicates.append(name)
            return
        self._stages[name] = fn

    def get(self, name: str) -> Stage | None:
        return self._stages.get(name)

    def names(self) -> list[str]:
        return list(self._stages)

    def freeze(self) -> Mapping[str, Stage]:
        """Read-only view used by the compiled graph."""
        return MappingProxyType(dict(self._stages))

    def __contains__(self, name: object) -> bool:
        return name in self._stages

    def __iter__(self) -> Iterator[str]:
        return iter(self._stages)

    def __len__(self) -> int:
        return len(self._stages)


async def call_stage(fn: Stage, state: Any) -> Any:
    """Invoke a stage, awaiting the result when it is awaitable."""
    result = fn(state)
    if inspect.isawaitable(result):
        result = await result
    return result
