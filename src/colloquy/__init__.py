"""colloquy: an asyncio client for OpenAI-compatible chat completions."""

from colloquy.client import ChatClient
from colloquy.config import ClientConfig, RetryPolicy
from colloquy.conversation import Conversation
from colloquy.dispatcher import CancellationToken, RequestDispatcher
from colloquy.errors import (
    ColloquyError,
    InvalidRequestError,
    StreamDecodeError,
    TransportError,
)
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
from colloquy.instrumentation import instrument, uninstrument
from colloquy.message import Message, MessageRole
from colloquy.options import PRESETS, GenerationOptions
from colloquy.request import RequestDescriptor
from colloquy.response import ChatResponse, Usage
from colloquy.result import ErrorInfo, Failure, Result, Success
from colloquy.sse import StreamDecoder
from colloquy.streaming import ToolCall, ToolCallAccumulator
from colloquy.tools import Tool, tool
from colloquy.transport import HttpxTransport, Transport

__all__ = [
    "CancellationToken",
    "ChatClient",
    "ChatResponse",
    "ClientConfig",
    "ColloquyError",
    "ContentDelta",
    "Conversation",
    "DecodeError",
    "Done",
    "ErrorInfo",
    "Failure",
    "FinishReason",
    "GenerationOptions",
    "HttpxTransport",
    "InvalidRequestError",
    "Message",
    "MessageRole",
    "PRESETS",
    "ProviderError",
    "RequestDescriptor",
    "RequestDispatcher",
    "Result",
    "RetryPolicy",
    "StreamDecodeError",
    "StreamDecoder",
    "StreamEvent",
    "Success",
    "Tool",
    "ToolCall",
    "ToolCallAccumulator",
    "ToolCallDelta",
    "Transport",
    "TransportError",
    "Usage",
    "UsageReport",
    "instrument",
    "tool",
    "uninstrument",
]
