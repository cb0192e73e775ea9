"""Interactive chat example: a streaming note-taking assistant.

Demonstrates:
- Configuring a ChatClient from the environment or flags
- Declaring tools with @tool and answering the model's tool calls
- Streaming replies through a Conversation
- Cancelling a reply with Ctrl-C

Usage:
    COLLOQUY_API_KEY=sk-... python examples/notes_chat_example.py --model gpt-4o-mini --trace
    python examples/notes_chat_example.py --base-url http://localhost:8000/v1 --model Qwen/Qwen3-8B
"""

import argparse
import asyncio
import json

from colloquy import (
    CancellationToken,
    ChatClient,
    ClientConfig,
    ContentDelta,
    GenerationOptions,
    tool,
)

NOTES: dict[str, str] = {}


def setup_tracing(service_name: str):
    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        SimpleSpanProcessor, ConsoleSpanExporter,
    )
    from colloquy.instrumentation import instrument

    provider = TracerProvider(
        resource=Resource({SERVICE_NAME: service_name})
    )
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    instrument()


@tool
def add_note(title: str, content: str):
    """Save a note with the given title and content."""
    NOTES[title] = content
    return f"Saved note '{title}'."


@tool
def get_note(title: str):
    """Retrieve a note by title."""
    return NOTES.get(title, f"No note found with title '{title}'.")


@tool
def list_notes():
    """List all saved note titles."""
    return ", ".join(NOTES) or "No notes yet."


TOOLS = {t.name: t for t in (add_note, get_note, list_notes)}


def print_delta(event):
    if isinstance(event, ContentDelta):
        print(event.text, end="", flush=True)


async def reply(conversation, content):
    """Send one turn, then keep answering tool calls until the model is done."""
    token = CancellationToken()
    while True:
        task = asyncio.create_task(
            conversation.send_message(content, on_chunk=print_delta, cancel=token)
        )
        try:
            result = await asyncio.shield(task)
        except asyncio.CancelledError:
            token.cancel()
            result = await task
        print()
        if not result.ok:
            print(f"[error {result.error.status}] {result.error.message}")
            return
        if result.value.cancelled or not result.value.tool_calls:
            return
        for call in result.value.tool_calls:
            output = TOOLS[call.name].func(**call.parsed_arguments())
            conversation.add_tool_result(call.id, json.dumps(output), name=call.name)
        content = None


async def main():
    parser = argparse.ArgumentParser(description="Notes chat")
    parser.add_argument("--model", default="gpt-4o-mini")
    parser.add_argument("--base-url", default=None)
    parser.add_argument("--trace", action="store_true")
    args = parser.parse_args()

    if args.trace:
        setup_tracing("notes-chat")

    overrides = {"default_model": args.model}
    if args.base_url:
        overrides["base_url"] = args.base_url

    async with ChatClient(ClientConfig.from_env(**overrides)) as client:
        conversation = client.conversation(
            system_prompt=(
                "You are a helpful note-taking assistant. "
                "Use the provided tools to manage the user's notes."
            ),
            options=GenerationOptions(tools=list(TOOLS.values())),
        )
        print("Notes chat\n")
        while True:
            try:
                user_input = input("You: ")
            except (KeyboardInterrupt, EOFError):
                print("\nGoodbye!")
                break
            print("Assistant: ", end="", flush=True)
            await reply(conversation, user_input)


if __name__ == "__main__":
    asyncio.run(main())
