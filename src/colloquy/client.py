"""High-level entry point."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from colloquy.config import ClientConfig
from colloquy.conversation import Conversation
from colloquy.dispatcher import CancellationToken, ChunkCallback, RequestDispatcher
from colloquy.errors import InvalidRequestError
from colloquy.message import Message
from colloquy.options import GenerationOptions
from colloquy.request import RequestDescriptor
from colloquy.response import ChatResponse
from colloquy.result import Result
from colloquy.transport import Transport


class ChatClient:
    """Client for an OpenAI-compatible chat-completions endpoint.

    All defaults (model, options, retry policy) live on the
    :class:`ClientConfig` this client holds; two clients never share
    settings.

    Example::

        async with ChatClient(ClientConfig.from_env()) as client:
            result = await client.chat([Message.user("Hi")], model="gpt-4o-mini")
            if result.ok:
                print(result.value.content)
            else:
                print(result.error.status, result.error.message)

    Args:
        config: Configuration; read from the environment when omitted.
        transport: Transport override, mostly for tests.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        transport: Transport | None = None,
    ):
        self.config = config or ClientConfig.from_env()
        self.dispatcher = RequestDispatcher(self.config, transport=transport)

    async def __aenter__(self) -> ChatClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.dispatcher.transport.aclose()

    def resolve_model(self, model: str | None) -> str:
        """Apply aliases and the default model.

        Raises:
            InvalidRequestError: If no model was given and there is no
                default.
        """
        name = model or self.config.default_model
        if not name:
            raise InvalidRequestError(
                "no model given and no default_model configured"
            )
        return self.config.model_aliases.get(name, name)

    def build_request(
        self,
        messages: Sequence[Message],
        model: str | None = None,
        options: GenerationOptions | dict[str, Any] | None = None,
        preset: str | None = None,
        stream: bool = False,
    ) -> RequestDescriptor:
        """Validate and merge everything a call needs.

        Options are layered: client defaults, then *preset*, then
        *options*.
        """
        layers: list[GenerationOptions | dict[str, Any] | None] = []
        if preset is not None:
            layers.append(GenerationOptions.preset(preset))
        layers.append(options)
        return RequestDescriptor(
            messages=tuple(messages),
            model=self.resolve_model(model),
            options=self.config.default_options.merge(*layers),
            stream=stream,
        )

    async def chat(
        self,
        messages: Sequence[Message],
        model: str | None = None,
        options: GenerationOptions | dict[str, Any] | None = None,
        preset: str | None = None,
    ) -> Result[ChatResponse]:
        request = self.build_request(messages, model, options, preset)
        return await self.dispatcher.complete(request)

    async def chat_stream(
        self,
        messages: Sequence[Message],
        on_chunk: ChunkCallback | None = None,
        model: str | None = None,
        options: GenerationOptions | dict[str, Any] | None = None,
        preset: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> Result[ChatResponse]:
        request = self.build_request(messages, model, options, preset, stream=True)
        return await self.dispatcher.stream(request, on_chunk=on_chunk, cancel=cancel)

    def conversation(
        self,
        system_prompt: str | None = None,
        model: str | None = None,
        options: GenerationOptions | dict[str, Any] | None = None,
    ) -> Conversation:
        return Conversation.create(
            self, model=model, system_prompt=system_prompt, options=options,
        )
