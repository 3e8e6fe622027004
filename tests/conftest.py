import json

import pytest

from parley.agent import Agent
from parley.context import Context
from parley.history import ConversationHistory
from parley.message import Message, MessageRole
from parley.provider import ModelProvider
from parley.tools import tool


# ---------------------------------------------------------------------------
# Chunk payload builders (mirror the OpenAI streaming shape)
# ---------------------------------------------------------------------------

def chunk(delta: dict, completion_id: str = "chatcmpl-1", finish_reason: str | None = None) -> str:
    """One ``data:`` payload carrying *delta* as ``choices[0].delta``."""
    return json.dumps({
        "id": completion_id,
        "object": "chat.completion.chunk",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    })


def text_chunks(*parts: str, completion_id: str = "chatcmpl-1") -> list[str]:
    """Payloads streaming *parts* as assistant content, then a stop."""
    payloads = [chunk({"role": "assistant", "content": ""}, completion_id)]
    payloads += [chunk({"content": p}, completion_id) for p in parts]
    payloads.append(chunk({}, completion_id, finish_reason="stop"))
    return payloads


def tool_call_chunks(
    name: str,
    argument_parts: list[str],
    call_id: str = "call_1",
    index: int = 0,
    completion_id: str = "chatcmpl-1",
) -> list[str]:
    """Payloads streaming one tool call with its arguments split into parts.

    Only the first fragment carries the id and name, as upstreams do.
    """
    first = {"index": index, "id": call_id, "type": "function",
             "function": {"name": name, "arguments": ""}}
    payloads = [chunk({"role": "assistant", "tool_calls": [first]}, completion_id)]
    payloads += [
        chunk({"tool_calls": [{"index": index, "function": {"arguments": part}}]}, completion_id)
        for part in argument_parts
    ]
    return payloads


def tool_call_round(name: str, args: dict, call_id: str = "call_1",
                    completion_id: str = "chatcmpl-1") -> list[str]:
    """A full round requesting a single tool call."""
    return [
        *tool_call_chunks(name, [json.dumps(args)], call_id=call_id, completion_id=completion_id),
        chunk({}, completion_id, finish_reason="tool_calls"),
    ]


def sse_body(payloads: list[str], done: bool = True) -> bytes:
    """Frame payloads the way an upstream completion endpoint does."""
    body = "".join(f"data: {p}\n\n" for p in payloads)
    if done:
        body += "data: [DONE]\n\n"
    return body.encode("utf-8")


# ---------------------------------------------------------------------------
# Mock provider
# ---------------------------------------------------------------------------

class MockProvider(ModelProvider):
    """Provider that replays pre-queued rounds. No network calls.

    Each queued round is a list of payload strings, or an exception which is
    raised when the round is requested.
    """

    system = "mock"

    def __init__(self):
        self.rounds: list[list[str] | BaseException] = []
        self.call_log: list[dict] = []

    async def stream_complete(self, model, messages, tools=None, tool_choice=None):
        self.call_log.append({
            "model": model,
            "messages": messages,
            "tools": tools,
            "tool_choice": tool_choice,
        })
        round_ = self.rounds.pop(0)
        if isinstance(round_, BaseException):
            raise round_
        for payload in round_:
            yield payload


@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def sample_tool():
    @tool
    def greet(name: str):
        """Say hello."""
        return f"Hello {name}"
    return greet


@pytest.fixture
def sample_async_tool():
    @tool
    async def async_greet(name: str):
        """Async greeting."""
        return f"Hello async {name}"
    return async_greet


@pytest.fixture
def sample_context_tool():
    @tool
    def set_title(context: Context, title: str):
        """Set the proposal title."""
        context.patch("/title", title)
        return {"title": title}
    return set_title


@pytest.fixture
def make_agent(mock_provider):
    """Factory fixture to build agents with the mock provider."""

    def _make(tools=None, system_prompt="You are helpful.", **kwargs):
        return Agent(
            model="test-model",
            provider=mock_provider,
            system_prompt=system_prompt,
            tools=tools or [],
            **kwargs,
        )
    return _make


@pytest.fixture
def make_history():
    def _make(*user_turns: str, thread_id: str = "thread_1"):
        return ConversationHistory(
            thread_id=thread_id,
            transcript=[Message(role=MessageRole.USER, content=t) for t in user_turns],
        )
    return _make
