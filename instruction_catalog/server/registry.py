"""
Explicit method name -> handler registry.

`build_registry(context)` populates one of these at startup; the server only
dispatches through the instance it was given.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable

Handler = Callable[[dict[str, Any]], Any]


@dataclass(frozen=True)
class ToolSpec:
    """Name, description and JSON schema advertised through tools/list."""

    name: str
    description: str
    input_schema: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    mutation: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema}


class HandlerRegistry:
    def __init__(self) -> None:
        self._entries: dict[str, tuple[ToolSpec, Handler]] = {}

    def register(self, spec: ToolSpec, handler: Handler) -> None:
        if spec.name in self._entries:
            raise ValueError(f"handler already registered: {spec.name}")
        self._entries[spec.name] = (spec, handler)

    def has(self, name: str) -> bool:
        return name in self._entries

    def get(self, name: str) -> Handler | None:
        entry = self._entries.get(name)
        return entry[1] if entry else None

    def spec(self, name: str) -> ToolSpec | None:
        entry = self._entries.get(name)
        return entry[0] if entry else None

    def names(self) -> list[str]:
        return sorted(self._entries)

    def tool_defs(self) -> list[dict[str, Any]]:
        return [self._entries[name][0].to_dict() for name in self.names()]

    async def invoke(self, name: str, params: dict[str, Any]) -> Any:
        """Run a handler; coroutine handlers are awaited. Raises KeyError for unknown names."""
        if name not in self._entries:
            raise KeyError(name)
        result = self._entries[name][1](params)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __len__(self) -> int:
        return len(self._entries)
