"""The immutable description of one chat-completion call."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from colloquy.errors import InvalidRequestError
from colloquy.message import Message, MessageRole
from colloquy.options import GenerationOptions


class RequestDescriptor(BaseModel):
    """Messages, model and options for a single dispatch.

    Frozen: the dispatcher may retry with the same descriptor and relies
    on it not changing between attempts.
    """

    model_config = ConfigDict(frozen=True)

    messages: tuple[Message, ...]
    model: str
    options: GenerationOptions = Field(default_factory=GenerationOptions)
    stream: bool = False

    def validate_for_dispatch(self) -> None:
        """Reject requests that could never succeed.

        Raises:
            InvalidRequestError: If there are no messages, no model, or a
                ``tool`` message answers a call no earlier assistant
                message made.
        """
        if not self.model:
            raise InvalidRequestError("a model is required")
        if not self.messages:
            raise InvalidRequestError("at least one message is required")
        issued: set[str] = set()
        for position, message in enumerate(self.messages):
            if message.role is MessageRole.ASSISTANT and message.tool_calls:
                issued.update(tc.id for tc in message.tool_calls)
            elif message.role is MessageRole.TOOL and message.tool_call_id not in issued:
                raise InvalidRequestError(
                    f"message {position} answers tool call "
                    f"{message.tool_call_id!r}, which no preceding "
                    f"assistant message requested"
                )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_wire() for m in self.messages],
        }
        payload.update(self.options.to_payload())
        if self.stream:
            payload["stream"] = True
        return payload
