"""The HTTP layer underneath the dispatcher.

A :class:`Transport` only moves bytes: it sends one request and reports
the status and body, or opens a streaming response and hands out raw
byte fragments as they arrive. Retrying, status classification and
decoding all happen in the dispatcher. Connection-level failures are
raised as :class:`~colloquy.errors.TransportError`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import httpx

from colloquy.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpRequest:
    url: str
    headers: dict[str, str]
    json: dict[str, Any]
    method: str = "POST"


@dataclass
class TransportResponse:
    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class StreamResponse(ABC):
    """An open streaming response."""

    status: int
    headers: dict[str, str]

    @abstractmethod
    def aiter_bytes(self) -> AsyncIterator[bytes]:
        """Raw body fragments, in arrival order, of unspecified size."""

    @abstractmethod
    async def aread(self) -> bytes:
        """Read the remaining body (used for error responses)."""


class Transport(ABC):
    @abstractmethod
    async def send(self, request: HttpRequest) -> TransportResponse:
        pass

    @abstractmethod
    def stream(self, request: HttpRequest) -> AbstractAsyncContextManager[StreamResponse]:
        """Open *request* as a stream.

        Leaving the context closes the underlying connection, whether or
        not the body was fully read.
        """

    async def aclose(self) -> None:
        pass


class _HttpxStreamResponse(StreamResponse):
    def __init__(self, response: httpx.Response):
        self._response = response
        self.status = response.status_code
        self.headers = dict(response.headers)

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.TimeoutException as e:
            raise TransportError(f"stream read timed out: {e}", timeout=True) from e
        except httpx.HTTPError as e:
            raise TransportError(f"stream interrupted: {e}") from e

    async def aread(self) -> bytes:
        try:
            return await self._response.aread()
        except httpx.HTTPError as e:
            raise TransportError(f"failed reading error body: {e}") from e


class HttpxTransport(Transport):
    """:class:`Transport` backed by ``httpx.AsyncClient``.

    Args:
        timeout: Overall per-request timeout in seconds.
        connect_timeout: Connection establishment timeout.
        read_timeout: Maximum idle time between received bytes.
        client: An existing client to use instead of creating one; it is
            not closed by :meth:`aclose`.
    """

    def __init__(
        self,
        timeout: float = 60.0,
        connect_timeout: float | None = None,
        read_timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                timeout,
                connect=connect_timeout or timeout,
                read=read_timeout,
            ),
        )

    async def send(self, request: HttpRequest) -> TransportResponse:
        try:
            resp = await self._client.request(
                request.method, request.url,
                headers=request.headers, json=request.json,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"request timed out: {e}", timeout=True) from e
        except httpx.HTTPError as e:
            raise TransportError(f"request failed: {e}") from e
        return TransportResponse(
            status=resp.status_code,
            body=resp.content,
            headers=dict(resp.headers),
        )

    @asynccontextmanager
    async def stream(self, request: HttpRequest) -> AsyncIterator[StreamResponse]:
        try:
            ctx = self._client.stream(
                request.method, request.url,
                headers=request.headers, json=request.json,
            )
            resp = await ctx.__aenter__()
        except httpx.TimeoutException as e:
            raise TransportError(f"connection timed out: {e}", timeout=True) from e
        except httpx.HTTPError as e:
            raise TransportError(f"connection failed: {e}") from e
        try:
            yield _HttpxStreamResponse(resp)
        finally:
            await ctx.__aexit__(None, None, None)
            logger.debug(f"Closed stream to {request.url}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
