import json
from contextlib import asynccontextmanager

import pytest

from colloquy.client import ChatClient
from colloquy.config import ClientConfig, RetryPolicy
from colloquy.dispatcher import RequestDispatcher
from colloquy.transport import (
    HttpRequest,
    StreamResponse,
    Transport,
    TransportResponse,
)


# ---------------------------------------------------------------------------
# Wire builders (mirror the OpenAI chat-completions shapes)
# ---------------------------------------------------------------------------

def completion_body(
    content: str | None = "hi",
    tool_calls: list[dict] | None = None,
    finish_reason: str = "stop",
    model: str = "test-model",
    usage: dict | None = None,
) -> bytes:
    """Non-streaming response body."""
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return json.dumps({
        "model": model,
        "choices": [{
            "index": 0, "message": message, "finish_reason": finish_reason,
        }],
        "usage": usage or {
            "prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7,
        },
    }).encode()


def error_body(message: str, code: str | None = None) -> bytes:
    return json.dumps({"error": {"message": message, "code": code}}).encode()


def content_chunk(text: str, finish_reason: str | None = None) -> dict:
    return {"choices": [{
        "index": 0, "delta": {"content": text},
        "finish_reason": finish_reason,
    }]}


def tool_chunk(
    index: int,
    call_id: str | None = None,
    name: str | None = None,
    arguments: str | None = None,
) -> dict:
    entry: dict = {"index": index}
    if call_id is not None:
        entry["id"] = call_id
        entry["type"] = "function"
    function = {}
    if name is not None:
        function["name"] = name
    if arguments is not None:
        function["arguments"] = arguments
    if function:
        entry["function"] = function
    return {"choices": [{"index": 0, "delta": {"tool_calls": [entry]}}]}


def finish_chunk(reason: str = "stop") -> dict:
    return {"choices": [{"index": 0, "delta": {}, "finish_reason": reason}]}


def sse_body(*chunks: dict | str, done: bool = True) -> bytes:
    """Encode chunks as ``data:`` records, strings passed through raw."""
    lines = []
    for chunk in chunks:
        payload = chunk if isinstance(chunk, str) else json.dumps(chunk, ensure_ascii=False)
        lines.append(f"data: {payload}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def split_every(data: bytes, size: int) -> list[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


# ---------------------------------------------------------------------------
# Scripted transport
# ---------------------------------------------------------------------------

class FakeStreamResponse(StreamResponse):
    """Streaming response replaying fixed fragments.

    If *error* is set it is raised after the fragments are exhausted,
    simulating a connection that drops mid-body.
    """

    def __init__(
        self,
        status: int = 200,
        fragments: list[bytes] | None = None,
        body: bytes = b"",
        error: Exception | None = None,
    ):
        self.status = status
        self.headers = {"content-type": "text/event-stream"}
        self.fragments = fragments or []
        self.body = body
        self.error = error
        self.fragments_read = 0

    async def aiter_bytes(self):
        for fragment in self.fragments:
            self.fragments_read += 1
            yield fragment
        if self.error is not None:
            raise self.error

    async def aread(self) -> bytes:
        return self.body


class FakeTransport(Transport):
    """Transport that returns pre-queued outcomes. No network calls.

    Each queued outcome is a ``TransportResponse`` (for ``send``), a
    ``FakeStreamResponse`` (for ``stream``) or an exception to raise.
    """

    def __init__(self):
        self.outcomes: list = []
        self.requests: list[HttpRequest] = []
        self.opened_streams = 0
        self.closed_streams = 0
        self.closed = False

    def _next(self, request: HttpRequest):
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def send(self, request: HttpRequest) -> TransportResponse:
        return self._next(request)

    @asynccontextmanager
    async def stream(self, request: HttpRequest):
        outcome = self._next(request)
        self.opened_streams += 1
        try:
            yield outcome
        finally:
            self.closed_streams += 1

    async def aclose(self) -> None:
        self.closed = True


def ok(body: bytes | None = None) -> TransportResponse:
    return TransportResponse(status=200, body=body or completion_body())


def status(code: int, body: bytes = b"") -> TransportResponse:
    return TransportResponse(status=code, body=body)


def streamed(*chunks, fragments: list[bytes] | None = None, **kwargs) -> FakeStreamResponse:
    if fragments is None:
        fragments = [sse_body(*chunks)]
    return FakeStreamResponse(status=200, fragments=fragments, **kwargs)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def config():
    return ClientConfig(
        api_key="sk-test",
        base_url="https://llm.example.com/v1/",
        default_model="test-model",
        retry=RetryPolicy(max_attempts=3, delay=0),
        timeout=5.0,
    )


@pytest.fixture
def sleeps():
    """Records every backoff wait instead of sleeping."""
    return []


@pytest.fixture
def dispatcher(config, fake_transport, sleeps):
    async def _sleep(seconds):
        sleeps.append(seconds)

    return RequestDispatcher(config, transport=fake_transport, sleep=_sleep)


@pytest.fixture
def client(config, fake_transport, dispatcher):
    client = ChatClient(config, transport=fake_transport)
    client.dispatcher = dispatcher
    return client
