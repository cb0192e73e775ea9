"""Incremental decoder for server-sent-event chat completion streams.

The transport hands over raw bytes in fragments of any size: one
fragment may hold half a record, or several records, or end in the
middle of a multi-byte character. :class:`StreamDecoder` buffers bytes
and only ever decodes whole lines, so where a fragment boundary falls
never changes the events it produces.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from colloquy.errors import StreamDecodeError
from colloquy.events import (
    ContentDelta,
    DecodeError,
    Done,
    FinishReason,
    ProviderError,
    StreamEvent,
    ToolCallDelta,
    UsageReport,
)

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
DEFAULT_MAX_DECODE_ERRORS = 10

_IGNORED_FIELDS = ("event:", "id:", "retry:")


class StreamDecoder:
    """Turns byte fragments into :class:`~colloquy.events.StreamEvent` s.

    A decoder is single use: once it has produced ``Done`` every further
    fragment is ignored.

    Args:
        max_decode_errors: Number of malformed records tolerated before
            the stream is abandoned with :class:`StreamDecodeError`.
    """

    def __init__(self, max_decode_errors: int = DEFAULT_MAX_DECODE_ERRORS):
        self.max_decode_errors = max_decode_errors
        self.decode_errors = 0
        self.done = False
        self._buffer = bytearray()

    def feed(self, fragment: bytes) -> list[StreamEvent]:
        """Add a fragment and return the events of every completed line."""
        if self.done or not fragment:
            return []
        self._buffer.extend(fragment)
        events: list[StreamEvent] = []
        while not self.done:
            end = self._buffer.find(b"\n")
            if end < 0:
                break
            line = bytes(self._buffer[:end])
            del self._buffer[:end + 1]
            events.extend(self._decode_line(line))
        return events

    def finish(self) -> list[StreamEvent]:
        """Signal end of input.

        Any unterminated last line is decoded, then ``Done`` is emitted
        if the stream never sent the terminal sentinel.
        """
        if self.done:
            return []
        events: list[StreamEvent] = []
        if self._buffer:
            line = bytes(self._buffer)
            self._buffer.clear()
            events.extend(self._decode_line(line))
        if not self.done:
            self.done = True
            events.append(Done())
        return events

    async def decode(
        self, fragments: AsyncIterable[bytes],
    ) -> AsyncIterator[StreamEvent]:
        """Lazily decode an async stream of fragments.

        Stops pulling fragments as soon as ``Done`` is produced.
        """
        async for fragment in fragments:
            for event in self.feed(fragment):
                yield event
            if self.done:
                return
        for event in self.finish():
            yield event

    # ------------------------------------------------------------------
    # Record handling
    # ------------------------------------------------------------------

    def _decode_line(self, raw: bytes) -> list[StreamEvent]:
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        try:
            line = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            return [self._decode_error(f"invalid utf-8: {e}", repr(raw))]

        payload = _extract_payload(line)
        if payload is None:
            return []
        if payload == DONE_SENTINEL:
            self.done = True
            return [Done()]

        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            return [self._decode_error(f"invalid json: {e}", payload)]
        if not isinstance(data, dict):
            return [self._decode_error("record is not a JSON object", payload)]
        try:
            return _events_from_chunk(data)
        except (AttributeError, KeyError, TypeError, IndexError) as e:
            return [self._decode_error(f"unexpected record shape: {e}", payload)]

    def _decode_error(self, reason: str, record: str) -> DecodeError:
        self.decode_errors += 1
        logger.debug(f"Skipping undecodable stream record: {reason}")
        if self.decode_errors > self.max_decode_errors:
            raise StreamDecodeError(
                f"{self.decode_errors} malformed stream records; "
                f"last: {reason}"
            )
        return DecodeError(reason=reason, record=record)


def _extract_payload(line: str) -> str | None:
    """Return the payload of one record, or ``None`` if it carries none."""
    stripped = line.strip()
    if not stripped or stripped.startswith(":"):
        return None
    if line.startswith("data:"):
        payload = line[5:]
        if payload.startswith(" "):
            payload = payload[1:]
        payload = payload.strip()
        return payload or None
    if line.startswith(_IGNORED_FIELDS):
        return None
    # Bare JSON lines (NDJSON servers) are treated as data records.
    return stripped


def _text(value: Any, what: str) -> str | None:
    if value is None or isinstance(value, str):
        return value
    raise TypeError(f"{what} is {type(value).__name__}, not a string")


def _tool_call_delta(position: int, entry: dict[str, Any]) -> ToolCallDelta:
    function = entry.get("function") or {}
    index = entry.get("index")
    if index is None:
        index = position
    if not isinstance(index, int):
        raise TypeError(f"tool call index {index!r} is not an integer")
    arguments = function.get("arguments")
    if arguments is not None and not isinstance(arguments, str):
        # Some servers send arguments already decoded.
        arguments = json.dumps(arguments)
    return ToolCallDelta(
        index=index,
        id=_text(entry.get("id"), "tool call id"),
        name=_text(function.get("name"), "tool call name"),
        arguments=arguments,
    )


def _events_from_chunk(data: dict[str, Any]) -> list[StreamEvent]:
    """Events of one record, in content, tool call, finish, usage order.

    Raises:
        AttributeError, KeyError, TypeError, IndexError: If the record
            is JSON but not shaped like a chat-completion chunk.
    """
    error = data.get("error")
    if error:
        if isinstance(error, dict):
            code = error.get("code") or error.get("type")
            return [ProviderError(
                message=str(error.get("message") or error),
                code=str(code) if code is not None else None,
            )]
        return [ProviderError(message=str(error))]

    events: list[StreamEvent] = []
    choices = data.get("choices") or []
    if not isinstance(choices, list):
        raise TypeError(f"choices is {type(choices).__name__}, not a list")
    if choices:
        choice = choices[0]
        delta = choice.get("delta") or {}

        content = delta.get("content")
        if isinstance(content, str) and content:
            events.append(ContentDelta(text=content))

        for position, tc in enumerate(delta.get("tool_calls") or []):
            events.append(_tool_call_delta(position, tc))

        reason = _text(choice.get("finish_reason"), "finish_reason")
        if reason:
            events.append(FinishReason(reason=reason))

    usage = data.get("usage")
    if isinstance(usage, dict) and usage:
        model = data.get("model")
        events.append(UsageReport(
            usage=usage, model=model if isinstance(model, str) else None,
        ))
    return events
