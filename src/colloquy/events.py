"""Events decoded from a streamed chat completion."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class StreamEvent:
    """Base for all streaming events."""


@dataclass
class ContentDelta(StreamEvent):
    """A piece of assistant text."""

    text: str = ""


@dataclass
class ToolCallDelta(StreamEvent):
    """A fragment of one tool call.

    Only ``index`` is guaranteed. ``id`` and ``name`` are ``None`` when
    the fragment did not carry them; ``arguments`` is the next piece of
    JSON argument text, if any.
    """

    index: int = 0
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass
class FinishReason(StreamEvent):
    reason: str = ""


@dataclass
class UsageReport(StreamEvent):
    """Token usage, sent by some providers in the last chunk."""

    usage: dict[str, Any] = field(default_factory=dict)
    model: str | None = None


@dataclass
class ProviderError(StreamEvent):
    """An error object sent in-band by the provider mid-stream."""

    message: str = ""
    code: str | None = None


@dataclass
class DecodeError(StreamEvent):
    """A record that could not be decoded and was skipped."""

    reason: str = ""
    record: str = ""


@dataclass
class Done(StreamEvent):
    """Terminal event; nothing follows it."""
