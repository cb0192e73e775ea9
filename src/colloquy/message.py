from enum import Enum
from typing import Any

from pydantic import BaseModel, ValidationError, field_serializer, model_validator

from colloquy.errors import InvalidRequestError
from colloquy.streaming import ToolCall


class MessageRole(Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    TOOL = "tool"


class Message(BaseModel):
    """One turn of a conversation.

    ``tool`` messages must name the call they answer in
    ``tool_call_id``. Only ``assistant`` messages may carry
    ``tool_calls``, and when they do ``content`` may be empty.

    The named constructors (:meth:`user`, :meth:`tool`, ...) raise
    :class:`~colloquy.errors.InvalidRequestError` when these rules are
    broken; constructing the model directly raises pydantic's
    ``ValidationError``.
    """

    role: MessageRole
    content: str = ""
    name: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None

    @model_validator(mode="after")
    def check_role_fields(self) -> "Message":
        if self.role is MessageRole.TOOL and not self.tool_call_id:
            raise ValueError("tool messages require a tool_call_id")
        if self.tool_calls and self.role is not MessageRole.ASSISTANT:
            raise ValueError("only assistant messages can carry tool_calls")
        return self

    @field_serializer("role")
    def serialize_role(self, role: MessageRole, _info) -> str:
        return role.value

    @field_serializer("tool_calls")
    def serialize_tool_calls(self, tool_calls: list[ToolCall] | None) -> list[dict] | None:
        if tool_calls is None:
            return None
        return [t.to_wire() for t in tool_calls]

    def to_wire(self) -> dict[str, Any]:
        """Dump in the shape the chat-completions endpoint expects."""
        data = self.model_dump(exclude_none=True)
        if self.tool_calls == []:
            data.pop("tool_calls")
        return data

    @classmethod
    def _build(cls, **fields: Any) -> "Message":
        try:
            return cls(**fields)
        except ValidationError as e:
            raise InvalidRequestError(f"invalid message: {e}") from e

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls._build(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str, name: str | None = None) -> "Message":
        return cls._build(role=MessageRole.USER, content=content, name=name)

    @classmethod
    def assistant(
        cls, content: str = "", tool_calls: list[ToolCall] | None = None,
    ) -> "Message":
        return cls._build(
            role=MessageRole.ASSISTANT, content=content,
            tool_calls=tool_calls or None,
        )

    @classmethod
    def tool(
        cls, tool_call_id: str, content: str, name: str | None = None,
    ) -> "Message":
        return cls._build(
            role=MessageRole.TOOL, content=content,
            tool_call_id=tool_call_id, name=name,
        )
