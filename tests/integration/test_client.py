"""ChatClient end to end over httpx.MockTransport."""

import json

import httpx
import pytest

from colloquy import (
    ChatClient,
    ClientConfig,
    ContentDelta,
    GenerationOptions,
    HttpxTransport,
    InvalidRequestError,
    Message,
    RetryPolicy,
)

from tests.conftest import completion_body, content_chunk, finish_chunk, sse_body


def _client(handler, **config) -> ChatClient:
    config.setdefault("api_key", "sk-test")
    config.setdefault("base_url", "https://llm.example.com/v1")
    config.setdefault("retry", RetryPolicy(max_attempts=2, delay=0))
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChatClient(ClientConfig(**config), transport=HttpxTransport(client=http))


class TestChat:
    @pytest.mark.asyncio
    async def test_round_trip(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=completion_body("Hello!"))

        async with _client(handler) as client:
            result = await client.chat(
                [Message.user("Hi")], model="gpt-test", options={"temperature": 0.2},
            )

        assert result.ok
        assert result.value.content == "Hello!"
        assert seen["url"] == "https://llm.example.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "gpt-test"
        assert seen["body"]["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_server_error_retried_over_http(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(502, text="bad gateway")
            return httpx.Response(200, content=completion_body("recovered"))

        async with _client(handler) as client:
            result = await client.chat([Message.user("Hi")], model="m")

        assert result.value.content == "recovered"
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_connection_failure_becomes_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            result = await client.chat([Message.user("Hi")], model="m")

        assert result.error.status == 0
        assert result.error.code == "NETWORK_ERROR"

    @pytest.mark.asyncio
    async def test_model_alias_and_default(self):
        models = []

        def handler(request):
            models.append(json.loads(request.content)["model"])
            return httpx.Response(200, content=completion_body())

        client = _client(
            handler, default_model="fast", model_aliases={"fast": "gpt-4o-mini"},
        )
        async with client:
            await client.chat([Message.user("Hi")])
            await client.chat([Message.user("Hi")], model="other")

        assert models == ["gpt-4o-mini", "other"]

    @pytest.mark.asyncio
    async def test_missing_model(self):
        async with _client(lambda r: httpx.Response(200)) as client:
            with pytest.raises(InvalidRequestError):
                await client.chat([Message.user("Hi")])

    @pytest.mark.asyncio
    async def test_preset_then_options(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, content=completion_body())

        client = _client(handler, default_options=GenerationOptions(max_tokens=64))
        async with client:
            await client.chat(
                [Message.user("Hi")], model="m", preset="creative",
                options={"temperature": 0.3},
            )

        assert bodies[0]["max_tokens"] == 64
        assert bodies[0]["temperature"] == 0.3
        assert "top_p" in bodies[0]

    @pytest.mark.asyncio
    async def test_unknown_preset(self):
        async with _client(lambda r: httpx.Response(200)) as client:
            with pytest.raises(InvalidRequestError):
                await client.chat([Message.user("Hi")], model="m", preset="wild")


class TestChatStream:
    @pytest.mark.asyncio
    async def test_streams_over_http(self):
        body = sse_body(content_chunk("Hel"), content_chunk("lo"), finish_chunk())

        async def chunks():
            for i in range(0, len(body), 5):
                yield body[i:i + 5]

        def handler(request):
            assert request.headers["accept"] == "text/event-stream"
            return httpx.Response(
                200, headers={"content-type": "text/event-stream"}, content=chunks(),
            )

        deltas = []
        async with _client(handler) as client:
            result = await client.chat_stream(
                [Message.user("Hi")],
                on_chunk=lambda e: deltas.append(e.text) if isinstance(e, ContentDelta) else None,
                model="m",
            )

        assert result.value.content == "Hello"
        assert deltas == ["Hel", "lo"]

    @pytest.mark.asyncio
    async def test_stream_error_status(self):
        def handler(request):
            return httpx.Response(
                401, json={"error": {"message": "bad key", "type": "auth_error"}},
            )

        async with _client(handler) as client:
            result = await client.chat_stream([Message.user("Hi")], model="m")

        assert result.error.status == 401
        assert result.error.message == "bad key"
        assert result.error.code == "auth_error"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_closes_transport(self, fake_transport, config):
        async with ChatClient(config, transport=fake_transport):
            pass
        assert fake_transport.closed

    def test_config_from_env(self, monkeypatch):
        monkeypatch.setenv("COLLOQUY_API_KEY", "sk-env")
        monkeypatch.setenv("COLLOQUY_MODEL", "env-model")
        client = ChatClient()
        assert client.config.api_key == "sk-env"
        assert client.resolve_model(None) == "env-model"
