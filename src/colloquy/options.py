"""Generation options sent alongside the messages.

Options are validated when constructed, so a bad value fails before any
request is built. Layers (client defaults, conversation options, per-call
options) are combined with :meth:`GenerationOptions.merge`, later layers
winning field by field.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from colloquy.errors import InvalidRequestError
from colloquy.tools import Tool


class GenerationOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    top_k: int | None = Field(default=None, ge=0)
    frequency_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    presence_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    repetition_penalty: float | None = Field(default=None, gt=0.0)
    stop: str | list[str] | None = None
    seed: int | None = None
    tools: list[Tool | dict[str, Any]] | None = None
    tool_choice: str | dict[str, Any] | None = None
    response_format: dict[str, Any] | None = None

    @classmethod
    def build(cls, options: GenerationOptions | dict[str, Any] | None) -> GenerationOptions:
        """Coerce *options* into a validated instance.

        Raises:
            InvalidRequestError: If a value is out of range or unknown.
        """
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        try:
            return cls.model_validate(options)
        except ValidationError as e:
            raise InvalidRequestError(f"invalid generation options: {e}") from e

    @classmethod
    def preset(cls, name: str) -> GenerationOptions:
        try:
            return cls.model_validate(PRESETS[name])
        except KeyError:
            raise InvalidRequestError(
                f"unknown preset {name!r}; choose from {sorted(PRESETS)}"
            ) from None

    def merge(self, *others: GenerationOptions | dict[str, Any] | None) -> GenerationOptions:
        """Overlay *others* on a copy of these options.

        Only fields explicitly set on a layer override earlier layers.
        """
        merged = {
            name: getattr(self, name) for name in self.model_fields_set
        }
        for other in others:
            layer = GenerationOptions.build(other)
            for name in layer.model_fields_set:
                merged[name] = getattr(layer, name)
        return GenerationOptions.build(merged)

    def to_payload(self) -> dict[str, Any]:
        """Set options as request-body fields."""
        payload: dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if value is None:
                continue
            if name == "tools":
                value = [
                    t.model_dump() if isinstance(t, Tool) else t
                    for t in value
                ]
            payload[name] = value
        return payload


PRESETS: dict[str, dict[str, Any]] = {
    "precise": {"temperature": 0.1, "top_p": 0.9},
    "balanced": {"temperature": 0.7, "top_p": 1.0},
    "creative": {"temperature": 1.1, "top_p": 0.95, "presence_penalty": 0.3},
}
