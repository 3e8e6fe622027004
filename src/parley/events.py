"""Protocol events streamed to the client during a run.

Every event kind is its own frozen model tagged by ``type``;
:data:`ProtocolEvent` is the discriminated union of all of them.  Field
names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_serializer
from pydantic.alias_generators import to_camel

from parley.state import StateOperation


class EventType(str, Enum):
    RUN_STARTED = "RUN_STARTED"
    RUN_FINISHED = "RUN_FINISHED"
    RUN_ERROR = "RUN_ERROR"
    STEP_STARTED = "STEP_STARTED"
    STEP_FINISHED = "STEP_FINISHED"
    TEXT_MESSAGE_START = "TEXT_MESSAGE_START"
    TEXT_MESSAGE_CONTENT = "TEXT_MESSAGE_CONTENT"
    TEXT_MESSAGE_END = "TEXT_MESSAGE_END"
    TOOL_CALL_START = "TOOL_CALL_START"
    TOOL_CALL_ARGS = "TOOL_CALL_ARGS"
    TOOL_CALL_END = "TOOL_CALL_END"
    TOOL_CALL_RESULT = "TOOL_CALL_RESULT"
    STATE_SNAPSHOT = "STATE_SNAPSHOT"
    STATE_DELTA = "STATE_DELTA"
    MESSAGES_SNAPSHOT = "MESSAGES_SNAPSHOT"


def now_ms() -> int:
    return int(time.time() * 1000)


class BaseEvent(BaseModel):
    """Fields shared by every event."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    timestamp: int = Field(default_factory=now_ms)

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-ready camelCase form sent to clients."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class RunStarted(BaseEvent):
    type: Literal["RUN_STARTED"] = "RUN_STARTED"
    thread_id: str
    run_id: str


class RunFinished(BaseEvent):
    type: Literal["RUN_FINISHED"] = "RUN_FINISHED"
    thread_id: str
    run_id: str
    result: Any = None


class RunError(BaseEvent):
    type: Literal["RUN_ERROR"] = "RUN_ERROR"
    message: str
    code: str | None = None


class StepStarted(BaseEvent):
    type: Literal["STEP_STARTED"] = "STEP_STARTED"
    step_name: str


class StepFinished(BaseEvent):
    type: Literal["STEP_FINISHED"] = "STEP_FINISHED"
    step_name: str


# ---------------------------------------------------------------------------
# Text messages
# ---------------------------------------------------------------------------

class TextMessageStart(BaseEvent):
    type: Literal["TEXT_MESSAGE_START"] = "TEXT_MESSAGE_START"
    message_id: str
    role: Literal["assistant"] = "assistant"


class TextMessageContent(BaseEvent):
    type: Literal["TEXT_MESSAGE_CONTENT"] = "TEXT_MESSAGE_CONTENT"
    message_id: str
    delta: str


class TextMessageEnd(BaseEvent):
    type: Literal["TEXT_MESSAGE_END"] = "TEXT_MESSAGE_END"
    message_id: str


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------

class ToolCallStart(BaseEvent):
    type: Literal["TOOL_CALL_START"] = "TOOL_CALL_START"
    tool_call_id: str
    tool_call_name: str
    parent_message_id: str | None = None


class ToolCallArgs(BaseEvent):
    type: Literal["TOOL_CALL_ARGS"] = "TOOL_CALL_ARGS"
    tool_call_id: str
    delta: str


class ToolCallEnd(BaseEvent):
    type: Literal["TOOL_CALL_END"] = "TOOL_CALL_END"
    tool_call_id: str


class ToolCallResult(BaseEvent):
    type: Literal["TOOL_CALL_RESULT"] = "TOOL_CALL_RESULT"
    message_id: str
    tool_call_id: str
    content: str
    role: Literal["tool"] = "tool"


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------

class StateSnapshot(BaseEvent):
    type: Literal["STATE_SNAPSHOT"] = "STATE_SNAPSHOT"
    snapshot: dict[str, Any] = Field(default_factory=dict)


class StateDelta(BaseEvent):
    type: Literal["STATE_DELTA"] = "STATE_DELTA"
    delta: list[StateOperation]

    @field_serializer("delta")
    def serialize_delta(self, delta: list[StateOperation]) -> list[dict[str, Any]]:
        # "value": null must survive exclude_none
        return [op.model_dump(mode="json") for op in delta]


class MessagesSnapshot(BaseEvent):
    type: Literal["MESSAGES_SNAPSHOT"] = "MESSAGES_SNAPSHOT"
    messages: list[dict[str, Any]]


ProtocolEvent = Annotated[
    Union[
        RunStarted,
        RunFinished,
        RunError,
        StepStarted,
        StepFinished,
        TextMessageStart,
        TextMessageContent,
        TextMessageEnd,
        ToolCallStart,
        ToolCallArgs,
        ToolCallEnd,
        ToolCallResult,
        StateSnapshot,
        StateDelta,
        MessagesSnapshot,
    ],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter[ProtocolEvent] = TypeAdapter(ProtocolEvent)


def parse_event(data: str | bytes | dict[str, Any]) -> ProtocolEvent:
    """Decode one wire event (JSON text or an already-parsed object)."""
    if isinstance(data, dict):
        return _event_adapter.validate_python(data)
    return _event_adapter.validate_json(data)
