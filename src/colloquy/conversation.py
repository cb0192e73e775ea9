from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from colloquy.dispatcher import CancellationToken, ChunkCallback
from colloquy.errors import InvalidRequestError
from colloquy.message import Message, MessageRole
from colloquy.options import GenerationOptions
from colloquy.response import ChatResponse
from colloquy.result import Result

if TYPE_CHECKING:
    from colloquy.client import ChatClient

logger = logging.getLogger(__name__)


class Conversation:
    """An append-only message history bound to a model and options.

    Messages are only ever appended. :meth:`send_message` appends the
    user turn before dispatching and the assistant turn only if the call
    succeeds, so after a failure the history holds exactly the messages
    that were sent and the same call can be retried without duplicating
    the user turn.

    A Conversation performs no locking. Concurrent :meth:`send_message`
    calls on the same instance interleave their appends and must be
    serialised by the caller.

    Args:
        client: Client used to dispatch requests.
        model: Model for every turn; the client's default when omitted.
        options: Options applied to every turn, on top of the client
            defaults.
    """

    def __init__(
        self,
        client: ChatClient,
        model: str | None = None,
        options: GenerationOptions | dict[str, Any] | None = None,
    ):
        self.client = client
        self.model = client.resolve_model(model)
        self.options = client.config.default_options.merge(options)
        self._messages: list[Message] = []

    @classmethod
    def create(
        cls,
        client: ChatClient,
        model: str | None = None,
        system_prompt: str | None = None,
        options: GenerationOptions | dict[str, Any] | None = None,
    ) -> Conversation:
        conversation = cls(client, model=model, options=options)
        if system_prompt:
            conversation.append(Message.system(system_prompt))
        return conversation

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def add_tool_result(
        self, tool_call_id: str, content: str, name: str | None = None,
    ) -> Message:
        """Answer a tool call made by an earlier assistant turn.

        Raises:
            InvalidRequestError: If no assistant message in this
                conversation requested *tool_call_id*.
        """
        issued = {
            tc.id
            for m in self._messages
            if m.role is MessageRole.ASSISTANT and m.tool_calls
            for tc in m.tool_calls
        }
        if tool_call_id not in issued:
            raise InvalidRequestError(
                f"no assistant message requested tool call {tool_call_id!r}"
            )
        message = Message.tool(tool_call_id, content, name=name)
        self.append(message)
        return message

    async def send_message(
        self,
        content: str | Message | None,
        options: GenerationOptions | dict[str, Any] | None = None,
        stream: bool = False,
        on_chunk: ChunkCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> Result[ChatResponse]:
        """Send a user turn and record the reply.

        Pass ``None`` as *content* to dispatch the history as it stands,
        e.g. after answering tool calls with :meth:`add_tool_result`.

        Returns:
            The call's result. On success the assistant message (with
            any tool calls) has been appended; on failure it has not.

        Raises:
            InvalidRequestError: If the options or history are invalid;
                raised before the user message is appended.
        """
        merged = self.options.merge(options)
        if content is not None:
            message = content if isinstance(content, Message) else Message.user(content)
            pending = [*self._messages, message]
        else:
            message = None
            pending = list(self._messages)
        request = self.client.build_request(pending, self.model, merged, stream=stream)
        request.validate_for_dispatch()

        if message is not None:
            self.append(message)
        if stream or on_chunk is not None:
            result = await self.client.dispatcher.stream(request, on_chunk=on_chunk, cancel=cancel)
        else:
            result = await self.client.dispatcher.complete(request)

        if result.ok:
            self.append(result.value.to_message())
        else:
            logger.warning(
                f"Turn not recorded ({result.error.code or result.error.status}): "
                f"{result.error.message}"
            )
        return result
