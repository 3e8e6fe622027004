"""Streaming primitives for completion responses.

Each ``data:`` payload of an upstream stream is normalised into a
:class:`StreamChunk`.  The :class:`ToolCallAccumulator` reassembles tool
calls whose arguments arrive in fragments across multiple chunks, and the
:class:`DeltaAccumulator` turns a whole round of payloads into protocol
events while keeping the state the dispatch loop needs afterwards.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from openai.types.chat.chat_completion_chunk import ChoiceDelta
from pydantic import ValidationError

from parley.context import new_id
from parley.events import (
    BaseEvent,
    TextMessageContent,
    TextMessageEnd,
    TextMessageStart,
    ToolCallArgs,
    ToolCallEnd,
    ToolCallStart,
)

logger = logging.getLogger(__name__)


@dataclass
class ToolCallFragment:
    """A fragment of a tool call from a streaming chunk."""

    index: int
    call_id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None


@dataclass
class StreamChunk:
    """Normalised streaming chunk."""

    message_id: str | None = None
    content_delta: str | None = None
    tool_call_fragments: list[ToolCallFragment] | None = None
    finish_reason: str | None = None


@dataclass
class ToolCall:
    """A tool call being assembled, then resolved for the transcript."""

    id: str = ""
    name: str = ""
    arguments: str = ""
    status: str = "pending"


def parse_chunk(payload: str) -> StreamChunk | None:
    """Parse one ``data:`` payload, or return ``None`` if it is unusable.

    Payloads that are not JSON objects, carry no ``choices`` (usage-only
    chunks) or whose delta fails validation are skipped.
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.debug(f"Skipping malformed payload ({e}): {payload[:80]!r}")
        return None
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None

    choice = choices[0]
    # Some upstreams ignore ``stream`` and send a whole ``message`` at once.
    raw_delta = choice.get("delta") or choice.get("message") or {}
    if not isinstance(raw_delta, dict):
        return None
    raw_delta = dict(raw_delta)
    if isinstance(raw_delta.get("tool_calls"), list):
        raw_delta["tool_calls"] = [
            {"index": position, **tc} if isinstance(tc, dict) and "index" not in tc else tc
            for position, tc in enumerate(raw_delta["tool_calls"])
        ]
    try:
        delta = ChoiceDelta.model_validate(raw_delta)
    except ValidationError as e:
        logger.debug(f"Skipping payload with invalid delta: {e}")
        return None

    fragments = [
        ToolCallFragment(
            index=tc.index,
            call_id=tc.id,
            name=tc.function.name if tc.function else None,
            arguments_delta=tc.function.arguments if tc.function else None,
        )
        for tc in delta.tool_calls or []
    ]
    message_id = data.get("id")
    return StreamChunk(
        message_id=message_id if isinstance(message_id, str) and message_id else None,
        content_delta=delta.content,
        tool_call_fragments=fragments or None,
        finish_reason=choice.get("finish_reason"),
    )


class ToolCallAccumulator:
    """Assembles complete tool calls from streaming fragments.

    Fragments are correlated through an ``index -> call id`` map.  The first
    fragment for an index opens a call; a fragment carrying a different id
    for a known index opens a new one.
    """

    def __init__(self) -> None:
        self._index_to_id: dict[int, str] = {}
        self._calls: dict[str, ToolCall] = {}

    def feed(self, fragment: ToolCallFragment) -> tuple[ToolCall, bool]:
        """Merge *fragment*; return its call and whether it was just opened."""
        call_id = self._index_to_id.get(fragment.index)
        opened = False
        if call_id is None or (fragment.call_id and fragment.call_id != call_id):
            call_id = fragment.call_id or new_id("call")
            self._index_to_id[fragment.index] = call_id
            self._calls[call_id] = ToolCall(id=call_id)
            opened = True
        tc = self._calls[call_id]
        if fragment.name and not tc.name:
            tc.name = fragment.name
        if fragment.arguments_delta:
            tc.arguments += fragment.arguments_delta
        return tc, opened

    def pending(self) -> list[ToolCall]:
        return [tc for tc in self._calls.values() if tc.status == "pending"]

    def finalize(self) -> list[ToolCall]:
        """Mark every call complete and return them in the order opened."""
        for tc in self._calls.values():
            tc.status = "complete"
        self._index_to_id.clear()
        return list(self._calls.values())


@dataclass
class RoundResult:
    """Everything one completion round produced."""

    message_id: str
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None
    saw_message: bool = False


class DeltaAccumulator:
    """Folds one round of payloads into protocol events.

    ``feed`` returns the events a payload produces; ``finish`` closes the
    open text message and every open tool call.  ``TOOL_CALL_START`` is held
    back until the call's name is known, and argument fragments received in
    the meantime are replayed right after it.
    """

    def __init__(self) -> None:
        self.tool_calls = ToolCallAccumulator()
        self.message_id: str | None = None
        self.finish_reason: str | None = None
        self.saw_message = False
        self._open_message: str | None = None
        self._content: list[str] = []
        self._started: set[str] = set()
        self._held_args: dict[str, list[str]] = {}
        self._calls: list[ToolCall] = []

    def feed(self, payload: str) -> list[BaseEvent]:
        chunk = parse_chunk(payload)
        if chunk is None:
            return []
        self.saw_message = True
        if chunk.finish_reason:
            self.finish_reason = chunk.finish_reason

        events: list[BaseEvent] = []
        if chunk.message_id and chunk.message_id != self.message_id:
            if self._open_message is not None:
                events.append(TextMessageEnd(message_id=self._open_message))
                self._open_message = None
            self.message_id = chunk.message_id
        if self.message_id is None:
            self.message_id = new_id("msg")

        if chunk.content_delta:
            if self._open_message is None:
                self._open_message = self.message_id
                events.append(TextMessageStart(message_id=self.message_id))
            self._content.append(chunk.content_delta)
            events.append(TextMessageContent(
                message_id=self.message_id, delta=chunk.content_delta,
            ))

        for fragment in chunk.tool_call_fragments or []:
            tc, _ = self.tool_calls.feed(fragment)
            if tc.id in self._started:
                if fragment.arguments_delta:
                    events.append(ToolCallArgs(
                        tool_call_id=tc.id, delta=fragment.arguments_delta,
                    ))
                continue
            if fragment.arguments_delta:
                self._held_args.setdefault(tc.id, []).append(fragment.arguments_delta)
            if tc.name:
                events.extend(self._start(tc))
        return events

    def _start(self, tc: ToolCall) -> list[BaseEvent]:
        self._started.add(tc.id)
        events: list[BaseEvent] = [ToolCallStart(
            tool_call_id=tc.id,
            tool_call_name=tc.name,
            parent_message_id=self.message_id,
        )]
        for delta in self._held_args.pop(tc.id, []):
            events.append(ToolCallArgs(tool_call_id=tc.id, delta=delta))
        return events

    def finish(self) -> list[BaseEvent]:
        """Close everything still open at the end of the round."""
        events: list[BaseEvent] = []
        if self._open_message is not None:
            events.append(TextMessageEnd(message_id=self._open_message))
            self._open_message = None
        for tc in self.tool_calls.pending():
            if tc.id not in self._started:
                logger.warning(f"Tool call {tc.id} ended without a name")
                events.extend(self._start(tc))
            events.append(ToolCallEnd(tool_call_id=tc.id))
        self._calls = self.tool_calls.finalize()
        return events

    def result(self) -> RoundResult:
        return RoundResult(
            message_id=self.message_id or new_id("msg"),
            content="".join(self._content),
            tool_calls=list(self._calls),
            finish_reason=self.finish_reason,
            saw_message=self.saw_message,
        )
