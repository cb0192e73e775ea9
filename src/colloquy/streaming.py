"""Tool-call reassembly for streamed responses.

Providers stream a tool call as a series of fragments sharing an
``index``. The id and function name usually arrive once, in the first
fragment; the JSON arguments arrive as text pieces that only form a
valid document once concatenated. :class:`ToolCallAccumulator` merges
fragments into complete :class:`ToolCall` records.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

if TYPE_CHECKING:
    from colloquy.events import ToolCallDelta


class ToolCall(BaseModel):
    """A tool call requested by the model.

    ``arguments`` is the raw JSON text exactly as the provider sent it.
    """

    id: str = ""
    index: int = 0
    name: str = ""
    arguments: str = ""

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode ``arguments``.

        Raises:
            ValueError: If the text is not a JSON object.
        """
        if not self.arguments.strip():
            return {}
        value = json.loads(self.arguments)
        if not isinstance(value, dict):
            raise ValueError(
                f"arguments for {self.name!r} are not a JSON object"
            )
        return value

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": self.arguments,
            },
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any], index: int = 0) -> "ToolCall":
        function = data.get("function") or {}
        arguments = function.get("arguments") or ""
        if not isinstance(arguments, str):
            # Some servers send arguments already decoded.
            arguments = json.dumps(arguments)
        return cls(
            id=data.get("id") or "",
            index=data.get("index", index),
            name=function.get("name") or "",
            arguments=arguments,
        )


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments.

    Scoped to a single streaming attempt. Fragments must be merged in
    arrival order; argument text is appended, never replaced.
    """

    def __init__(self) -> None:
        self._pending: dict[int, ToolCall] = {}

    def merge(self, delta: ToolCallDelta) -> None:
        if delta.index not in self._pending:
            self._pending[delta.index] = ToolCall(index=delta.index)
        tc = self._pending[delta.index]
        if delta.id is not None:
            tc.id = delta.id
        if delta.name is not None:
            tc.name = delta.name
        if delta.arguments is not None:
            tc.arguments += delta.arguments

    def has_calls(self) -> bool:
        return bool(self._pending)

    def finalize(self) -> list[ToolCall]:
        """Return completed tool calls in index order."""
        return [self._pending[i] for i in sorted(self._pending)]
