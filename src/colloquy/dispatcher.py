"""Request dispatch: auth, timeouts and retries for every call type.

:class:`RequestDispatcher` turns a :class:`RequestDescriptor` into an
HTTP request, runs it through a :class:`Transport` and classifies what
comes back:

- transport failures (refused, reset, timed out) and HTTP 5xx are
  retried, up to ``RetryPolicy.max_attempts`` attempts in total;
- any other non-success status (400, 401, 402, 429, ...) is returned
  after one attempt;
- nothing ordinary is raised: every outcome is a
  :class:`~colloquy.result.Success` or :class:`~colloquy.result.Failure`.

Streaming calls use the same policy, but only until the first event has
been handed to the caller. After that the call is committed: a failure
ends it with the partial response attached instead of starting over,
which would repeat output the caller has already seen.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, aclosing
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from urllib.parse import urlparse

from colloquy.config import ClientConfig, RetryPolicy
from colloquy.errors import StreamDecodeError, TransportError
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
from colloquy.instrumentation import (
    completion_span,
    record_attempts,
    record_error,
    record_usage,
)
from colloquy.request import RequestDescriptor
from colloquy.response import ChatResponse, Usage
from colloquy.result import (
    DECODE_ERROR,
    EMPTY_RESPONSE,
    INVALID_RESPONSE,
    NETWORK_ERROR,
    TIMEOUT,
    ErrorInfo,
    Failure,
    Result,
    Success,
)
from colloquy.sse import StreamDecoder
from colloquy.streaming import ToolCallAccumulator
from colloquy.transport import HttpRequest, HttpxTransport, StreamResponse, Transport

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[StreamEvent], "bool | None | Awaitable[bool | None]"]


class _StreamCancelled(Exception):
    """Raised inside a stream read when the caller's token fires."""


class CancellationToken:
    """Stops a running stream from outside the callback.

    Cancelling wakes a read that is waiting for data, closes the
    connection and makes :meth:`RequestDispatcher.stream` return what
    was collected so far.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class RetryState:
    """Attempt bookkeeping for one dispatcher call."""

    policy: RetryPolicy
    attempt: int = 0

    @property
    def max_attempts(self) -> int:
        return self.policy.max_attempts

    @property
    def base_delay(self) -> float:
        return self.policy.delay

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.policy.max_attempts

    def next_delay(self) -> float:
        return self.policy.delay_after(self.attempt)


@dataclass
class _StreamState:
    """Everything one streaming attempt has collected."""

    model: str
    content: list[str] = field(default_factory=list)
    tool_calls: ToolCallAccumulator = field(default_factory=ToolCallAccumulator)
    finish_reason: str | None = None
    usage: Usage | None = None
    delivered: bool = False
    saw_done: bool = False
    cancelled: bool = False

    def apply(self, event: StreamEvent) -> None:
        if isinstance(event, ContentDelta):
            self.content.append(event.text)
        elif isinstance(event, ToolCallDelta):
            self.tool_calls.merge(event)
        elif isinstance(event, FinishReason):
            self.finish_reason = event.reason
        elif isinstance(event, UsageReport):
            self.usage = Usage.from_wire(event.usage)
            if event.model:
                self.model = event.model
        elif isinstance(event, Done):
            self.saw_done = True

    @property
    def empty(self) -> bool:
        return not (self.content or self.tool_calls.has_calls() or self.finish_reason)

    def response(self) -> ChatResponse:
        return ChatResponse(
            content="".join(self.content),
            tool_calls=self.tool_calls.finalize(),
            finish_reason=self.finish_reason,
            usage=self.usage,
            model=self.model,
            cancelled=self.cancelled,
        )


class RequestDispatcher:
    """Sends requests with the retry, timeout and auth policy of *config*.

    Args:
        config: Client configuration (credentials, endpoint, policies).
        transport: Transport to send through; an :class:`HttpxTransport`
            built from *config* by default.
        sleep: Coroutine used to wait between attempts.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: Transport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self.transport = transport or HttpxTransport(
            timeout=config.timeout,
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
        )
        self._sleep = sleep
        self._system = urlparse(config.base_url).hostname or "unknown"

    def _http_request(self, request: RequestDescriptor) -> HttpRequest:
        payload = request.to_payload()
        logger.debug(
            f"Dispatching {len(request.messages)} message(s) to "
            f"{request.model} (stream={request.stream}, "
            f"{len(json.dumps(payload))} bytes)"
        )
        return HttpRequest(
            url=self.config.chat_url,
            headers=self.config.request_headers(stream=request.stream),
            json=payload,
        )

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def complete(self, request: RequestDescriptor) -> Result[ChatResponse]:
        """Send *request* and return the decoded response.

        ``config.timeout`` bounds the whole call, every attempt and every
        backoff wait included.

        Raises:
            InvalidRequestError: If the request fails validation; nothing
                is sent in that case.
        """
        if request.stream:
            request = request.model_copy(update={"stream": False})
        request.validate_for_dispatch()
        http_request = self._http_request(request)
        retry = RetryState(policy=self.config.retry)

        async with completion_span(self._system, request.model) as span:
            start = time.monotonic()
            try:
                result = await asyncio.wait_for(
                    self._complete_with_retry(http_request, request.model, retry),
                    timeout=self.config.timeout,
                )
            except asyncio.TimeoutError:
                result = Failure(ErrorInfo(
                    f"request did not complete within {self.config.timeout}s "
                    f"({retry.attempt} attempt(s))",
                    status=0, code=TIMEOUT,
                ))
            latency = (time.monotonic() - start) * 1000
            self._record(span, result, retry)
            if result.ok:
                logger.info(
                    f"Completion from {request.model} in {latency:.0f}ms "
                    f"after {retry.attempt} attempt(s)"
                )
            return result

    async def _complete_with_retry(
        self, http_request: HttpRequest, model: str, retry: RetryState,
    ) -> Result[ChatResponse]:
        while True:
            retry.attempt += 1
            try:
                resp = await self.transport.send(http_request)
            except TransportError as e:
                error = _transport_error(e)
            else:
                if 200 <= resp.status < 300:
                    return _parse_completion(resp.body, resp.status, model)
                error = _error_from_body(resp.status, resp.body)

            if not error.retryable:
                logger.warning(
                    f"Request failed with status {error.status} "
                    f"({error.code}): {error.message}"
                )
                return Failure(error)
            if retry.exhausted:
                logger.warning(
                    f"Giving up after {retry.attempt} attempt(s): {error.message}"
                )
                return Failure(error)
            delay = retry.next_delay()
            logger.warning(
                f"Attempt {retry.attempt}/{retry.max_attempts} failed "
                f"(status {error.status}): {error.message}; "
                f"retrying in {delay:.1f}s"
            )
            await self._sleep(delay)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(
        self,
        request: RequestDescriptor,
        on_chunk: ChunkCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> Result[ChatResponse]:
        """Stream *request*, handing each event to *on_chunk* as it arrives.

        *on_chunk* receives :class:`ContentDelta`, :class:`ToolCallDelta`,
        :class:`FinishReason`, :class:`UsageReport` and finally
        :class:`Done`. It may be a plain function or a coroutine
        function; it runs before the next fragment is read, so a slow
        callback slows the read. Returning ``False`` cancels the stream.

        If the call fails before any event was delivered, *on_chunk* is
        never called and the error is returned. If it fails after,
        *on_chunk* receives :class:`Done` and a :class:`Failure` whose
        ``partial`` is the response collected so far is returned.

        ``config.timeout`` bounds each connection attempt; once the
        response is open only ``config.read_timeout`` (if set) bounds
        the wait for the next fragment.

        Raises:
            InvalidRequestError: If the request fails validation.
        """
        if not request.stream:
            request = request.model_copy(update={"stream": True})
        request.validate_for_dispatch()
        http_request = self._http_request(request)
        retry = RetryState(policy=self.config.retry)

        async with completion_span(self._system, request.model, stream=True) as span:
            result = await self._stream_with_retry(
                http_request, request.model, retry, on_chunk, cancel,
            )
            self._record(span, result, retry)
            return result

    async def _stream_with_retry(
        self,
        http_request: HttpRequest,
        model: str,
        retry: RetryState,
        on_chunk: ChunkCallback | None,
        cancel: CancellationToken | None,
    ) -> Result[ChatResponse]:
        while True:
            retry.attempt += 1
            state = _StreamState(model=model)
            error = await self._stream_attempt(http_request, state, on_chunk, cancel)

            if error is None:
                if state.cancelled:
                    logger.info(f"Stream from {model} cancelled by caller")
                    return Success(state.response())
                if state.empty:
                    return Failure(ErrorInfo(
                        "stream ended without content, tool calls or "
                        "finish reason",
                        status=200, code=EMPTY_RESPONSE,
                    ), partial=state.response())
                return Success(state.response())

            if state.delivered:
                logger.warning(f"Stream from {model} failed mid-response: {error.message}")
                if not state.saw_done:
                    await _deliver(on_chunk, Done())
                return Failure(error, partial=state.response())
            if not error.retryable:
                logger.warning(
                    f"Stream request failed with status {error.status} "
                    f"({error.code}): {error.message}"
                )
                return Failure(error)
            if retry.exhausted:
                logger.warning(
                    f"Giving up stream after {retry.attempt} attempt(s): "
                    f"{error.message}"
                )
                return Failure(error)
            delay = retry.next_delay()
            logger.warning(
                f"Stream attempt {retry.attempt}/{retry.max_attempts} failed "
                f"(status {error.status}): {error.message}; "
                f"retrying in {delay:.1f}s"
            )
            await self._sleep(delay)

    async def _stream_attempt(
        self,
        http_request: HttpRequest,
        state: _StreamState,
        on_chunk: ChunkCallback | None,
        cancel: CancellationToken | None,
    ) -> ErrorInfo | None:
        """Run one attempt; return the error that ended it, if any."""
        async with AsyncExitStack() as stack:
            try:
                response = await asyncio.wait_for(
                    stack.enter_async_context(self.transport.stream(http_request)),
                    timeout=self.config.timeout,
                )
            except asyncio.TimeoutError:
                return ErrorInfo(
                    f"no response within {self.config.timeout}s",
                    status=0, code=TIMEOUT,
                )
            except TransportError as e:
                return _transport_error(e)

            if not 200 <= response.status < 300:
                try:
                    body = await response.aread()
                except TransportError:
                    body = b""
                return _error_from_body(response.status, body)

            decoder = StreamDecoder(max_decode_errors=self.config.max_decode_errors)
            fragments = self._fragments(response, cancel)
            try:
                async with aclosing(decoder.decode(fragments)) as events:
                    async for event in events:
                        if isinstance(event, DecodeError):
                            logger.debug(f"Ignored stream record: {event.reason}")
                            continue
                        if isinstance(event, ProviderError):
                            return ErrorInfo(
                                event.message, status=response.status,
                                code=event.code,
                            )
                        state.apply(event)
                        if isinstance(event, Done) and state.empty and not state.delivered:
                            # Nothing usable arrived: the call fails without
                            # the callback having seen anything.
                            break
                        keep_going = await _deliver(on_chunk, event)
                        state.delivered = True
                        if keep_going is False or (cancel is not None and cancel.cancelled):
                            state.cancelled = not isinstance(event, Done)
                            break
            except _StreamCancelled:
                state.cancelled = True
            except TransportError as e:
                return _transport_error(e)
            except StreamDecodeError as e:
                return ErrorInfo(str(e), status=response.status, code=DECODE_ERROR)
            finally:
                await fragments.aclose()
        return None

    async def _fragments(
        self, response: StreamResponse, cancel: CancellationToken | None,
    ) -> AsyncIterator[bytes]:
        """Yield body fragments until the body ends.

        Raises:
            TransportError: If ``config.read_timeout`` passes without
                any data arriving.
            _StreamCancelled: If *cancel* fires while waiting for data.
        """
        iterator = response.aiter_bytes().__aiter__()
        cancelled = asyncio.ensure_future(cancel.wait()) if cancel else None
        read = None
        try:
            while True:
                read = asyncio.ensure_future(iterator.__anext__())
                waiting = {read} if cancelled is None else {read, cancelled}
                done, _ = await asyncio.wait(
                    waiting,
                    timeout=self.config.read_timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if read not in done:
                    if cancelled is not None and cancelled in done:
                        raise _StreamCancelled()
                    raise TransportError(
                        f"no data received for {self.config.read_timeout}s",
                        timeout=True,
                    )
                try:
                    chunk = read.result()
                except StopAsyncIteration:
                    return
                yield chunk
        finally:
            if read is not None and not read.done():
                read.cancel()
            if cancelled is not None:
                cancelled.cancel()

    def _record(self, span, result: Result[ChatResponse], retry: RetryState) -> None:
        record_attempts(span, retry.attempt)
        if result.ok:
            record_usage(span, result.value.usage, result.value.model)
        else:
            record_error(span, result.error)


async def _deliver(on_chunk: ChunkCallback | None, event: StreamEvent) -> bool | None:
    if on_chunk is None:
        return None
    outcome = on_chunk(event)
    if inspect.isawaitable(outcome):
        outcome = await outcome
    return outcome


def _transport_error(e: TransportError) -> ErrorInfo:
    return ErrorInfo(str(e), status=0, code=TIMEOUT if e.timeout else NETWORK_ERROR)


def _error_from_body(status: int, body: bytes) -> ErrorInfo:
    """Pull ``message`` and ``code`` out of an error response body."""
    text = body.decode("utf-8", errors="replace").strip()
    message = text or f"HTTP {status}"
    code = None
    try:
        data = json.loads(text) if text else None
    except json.JSONDecodeError:
        data = None
    if isinstance(data, dict):
        error = data.get("error", data)
        if isinstance(error, dict):
            message = str(error.get("message") or message)
            raw_code = error.get("code") or error.get("type")
            code = str(raw_code) if raw_code is not None else None
        elif isinstance(error, str):
            message = error
    return ErrorInfo(message, status=status, code=code)


def _parse_completion(body: bytes, status: int, model: str) -> Result[ChatResponse]:
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        return Failure(ErrorInfo(
            f"response body is not valid JSON: {e}",
            status=status, code=INVALID_RESPONSE,
        ))
    if not isinstance(data, dict):
        return Failure(ErrorInfo(
            "response body is not a JSON object",
            status=status, code=INVALID_RESPONSE,
        ))
    if not data.get("choices"):
        return Failure(ErrorInfo(
            "response contains no choices",
            status=status, code=EMPTY_RESPONSE,
        ))
    try:
        return Success(ChatResponse.from_wire(data, model=model))
    except (AttributeError, KeyError, TypeError, IndexError, ValueError) as e:
        return Failure(ErrorInfo(
            f"unexpected response shape: {e}",
            status=status, code=INVALID_RESPONSE,
        ))
