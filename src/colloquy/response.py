"""Assembled chat-completion responses."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from colloquy.message import Message
from colloquy.streaming import ToolCall


def _tokens(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_wire(cls, data: Any) -> Usage | None:
        """Read a ``usage`` object; anything that is not one gives ``None``."""
        if not isinstance(data, dict) or not data:
            return None
        usage = cls(
            prompt_tokens=_tokens(data.get("prompt_tokens")),
            completion_tokens=_tokens(data.get("completion_tokens")),
        )
        usage.total_tokens = _tokens(data.get("total_tokens")) or (
            usage.prompt_tokens + usage.completion_tokens
        )
        return usage


class ChatResponse(BaseModel):
    """The assistant turn produced by one call.

    For streamed calls ``content`` is the concatenation of every content
    delta and ``tool_calls`` the accumulated tool calls. ``cancelled`` is
    set when the caller stopped the stream early; the other fields then
    hold what arrived before that.
    """

    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    finish_reason: str | None = None
    usage: Usage | None = None
    model: str = ""
    cancelled: bool = False

    def to_message(self) -> Message:
        return Message.assistant(
            content=self.content, tool_calls=list(self.tool_calls),
        )

    @classmethod
    def from_wire(cls, data: dict[str, Any], model: str = "") -> ChatResponse:
        """Build from a non-streaming response body.

        Raises:
            ValueError: If the body has no choices, or a field has the
                wrong type.
            AttributeError, KeyError, TypeError, IndexError: If the body
                is not shaped like a chat completion.
        """
        choices = data.get("choices") or []
        if not choices:
            raise ValueError("response contains no choices")
        choice = choices[0]
        message = choice.get("message") or {}
        tool_calls = [
            ToolCall.from_wire(tc, index=i)
            for i, tc in enumerate(message.get("tool_calls") or [])
        ]
        return cls(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            finish_reason=choice.get("finish_reason"),
            usage=Usage.from_wire(data.get("usage")),
            model=data.get("model") or model,
        )
