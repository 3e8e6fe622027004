"""Client-side fold of the protocol event stream into renderable state.

:func:`reduce` is pure: it never mutates the state it is given, so the same
ordered event log always folds to the same result.  Events must be applied
in exactly the order they were emitted.

Example::

    state = ConversationState()
    async for event in parse_stream(response.aiter_bytes()):
        state = reduce(state, event)
        render(state)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from typing import Any, Literal, assert_never

from pydantic import BaseModel, Field, ValidationError

from parley.demux import iter_payloads
from parley.events import (
    BaseEvent,
    MessagesSnapshot,
    ProtocolEvent,
    RunError,
    RunFinished,
    RunStarted,
    StateDelta,
    StateSnapshot,
    StepFinished,
    StepStarted,
    TextMessageContent,
    TextMessageEnd,
    TextMessageStart,
    ToolCallArgs,
    ToolCallEnd,
    ToolCallResult,
    ToolCallStart,
    parse_event,
)
from parley.state import apply_operations

logger = logging.getLogger(__name__)


class ChatMessage(BaseModel):
    id: str
    role: str
    content: str = ""


class ToolCallState(BaseModel):
    id: str
    name: str
    args: str = ""
    status: Literal["pending", "executing", "completed"] = "pending"
    result: str | None = None


class ConversationState(BaseModel):
    """Everything a chat view needs to render one conversation."""

    messages: list[ChatMessage] = Field(default_factory=list)
    current_message: ChatMessage | None = None
    tool_calls: dict[str, ToolCallState] = Field(default_factory=dict)
    shared: dict[str, Any] = Field(default_factory=dict)
    current_step: str | None = None
    status: Literal["idle", "running", "finished", "error"] = "idle"
    error: RunError | None = None
    thread_id: str | None = None
    run_id: str | None = None

    model_config = {"frozen": True}


def reduce(state: ConversationState, event: BaseEvent) -> ConversationState:
    """Return the state after applying one event."""
    match event:
        case RunStarted():
            return state.model_copy(update={
                "status": "running",
                "error": None,
                "thread_id": event.thread_id,
                "run_id": event.run_id,
            })
        case RunFinished():
            return state.model_copy(update={"status": "finished", "current_step": None})
        case RunError():
            # Keep the transcript; drop only what was still streaming.
            return state.model_copy(update={
                "status": "error",
                "error": event,
                "current_message": None,
                "current_step": None,
            })
        case StepStarted():
            return state.model_copy(update={"current_step": event.step_name})
        case StepFinished():
            return state.model_copy(update={"current_step": None})
        case TextMessageStart():
            return state.model_copy(update={
                "current_message": ChatMessage(id=event.message_id, role=event.role),
            })
        case TextMessageContent():
            current = state.current_message
            if current is None or current.id != event.message_id:
                current = ChatMessage(id=event.message_id, role="assistant")
            return state.model_copy(update={
                "current_message": current.model_copy(
                    update={"content": current.content + event.delta}
                ),
            })
        case TextMessageEnd():
            current = state.current_message
            if current is None or current.id != event.message_id:
                return state
            return state.model_copy(update={
                "messages": [*state.messages, current],
                "current_message": None,
            })
        case ToolCallStart():
            return _with_tool_call(state, ToolCallState(
                id=event.tool_call_id, name=event.tool_call_name,
            ))
        case ToolCallArgs():
            call = state.tool_calls.get(event.tool_call_id)
            if call is None:
                return state
            return _with_tool_call(state, call.model_copy(
                update={"args": call.args + event.delta}
            ))
        case ToolCallEnd():
            call = state.tool_calls.get(event.tool_call_id)
            if call is None:
                return state
            return _with_tool_call(state, call.model_copy(update={"status": "executing"}))
        case ToolCallResult():
            call = state.tool_calls.get(event.tool_call_id)
            if call is None:
                call = ToolCallState(id=event.tool_call_id, name="")
            return _with_tool_call(state, call.model_copy(
                update={"status": "completed", "result": event.content}
            ))
        case StateSnapshot():
            return state.model_copy(update={"shared": dict(event.snapshot)})
        case StateDelta():
            try:
                shared = apply_operations(state.shared, event.delta)
            except ValueError as e:
                logger.warning(f"Skipping STATE_DELTA that does not apply: {e}")
                return state
            return state.model_copy(update={"shared": shared})
        case MessagesSnapshot():
            return state.model_copy(update={
                "messages": [
                    ChatMessage(
                        id=str(m.get("id", "")),
                        role=str(m.get("role", "assistant")),
                        content=m.get("content") or "",
                    )
                    for m in event.messages
                ],
            })
        case _:
            assert_never(event)


def _with_tool_call(state: ConversationState, call: ToolCallState) -> ConversationState:
    return state.model_copy(update={"tool_calls": {**state.tool_calls, call.id: call}})


def fold(
    events: Iterable[BaseEvent], initial: ConversationState | None = None,
) -> ConversationState:
    """Left-fold an ordered event log."""
    state = initial if initial is not None else ConversationState()
    for event in events:
        state = reduce(state, event)
    return state


async def parse_stream(byte_stream: AsyncIterable[bytes]) -> AsyncIterator[ProtocolEvent]:
    """Decode an SSE response body into protocol events.

    Frames that do not hold a known event are skipped.
    """
    async for payload in iter_payloads(byte_stream):
        try:
            yield parse_event(payload)
        except ValidationError as e:
            logger.debug(f"Skipping unknown event frame: {e}")
