"""Server-Sent Events adapter for protocol events."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator

from parley.events import BaseEvent


def encode_event(event: BaseEvent) -> str:
    """Frame one event as a single ``data:`` record."""
    data = json.dumps(event.to_wire(), ensure_ascii=False, separators=(",", ":"))
    return f"data: {data}\n\n"


async def sse_generator(
    event_stream: AsyncIterator[BaseEvent],
) -> AsyncIterator[bytes]:
    """Convert a protocol event iterator into SSE frames, one per event."""
    async for event in event_stream:
        yield encode_event(event).encode("utf-8")
