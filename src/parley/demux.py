"""Server-Sent Events demultiplexing for raw response bodies.

:class:`SSEDemuxer` turns arbitrary byte chunks into ``data:`` payload
strings.  Bytes are decoded incrementally so a multi-byte character split
across two reads is held back until it is complete, and a line split across
two reads is held back until its newline arrives.
"""

from __future__ import annotations

import codecs
import logging
from collections.abc import AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class SSEDemuxer:
    """Incremental splitter for ``data: <payload>`` lines.

    Lines without the ``data:`` prefix (comments, ``event:`` fields, blank
    separators, garbage) are dropped.  The ``[DONE]`` payload marks the end
    of the stream: it sets :attr:`done` and everything after it is ignored.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.done = False

    def feed(self, data: bytes) -> list[str]:
        """Consume one chunk of bytes and return the complete payloads in it."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(data)
        *lines, self._buffer = self._buffer.split("\n")
        return self._extract(lines)

    def close(self) -> list[str]:
        """Flush pending bytes and any unterminated final line."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        return self._extract([tail])

    def _extract(self, lines: list[str]) -> list[str]:
        payloads = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                if line:
                    logger.debug(f"Dropping non-data line: {line[:80]!r}")
                continue
            payload = line[len(DATA_PREFIX):]
            if payload.startswith(" "):
                payload = payload[1:]
            if payload == DONE_SENTINEL:
                self.done = True
                break
            payloads.append(payload)
        return payloads


async def iter_payloads(
    byte_stream: AsyncIterable[bytes],
) -> AsyncIterator[str]:
    """Yield ``data:`` payloads from an async byte stream.

    Stops at the ``[DONE]`` sentinel.  Transport errors raised by
    *byte_stream* propagate to the caller unchanged.
    """
    demuxer = SSEDemuxer()
    async for chunk in byte_stream:
        for payload in demuxer.feed(chunk):
            yield payload
        if demuxer.done:
            return
    for payload in demuxer.close():
        yield payload
    if not demuxer.done:
        logger.warning("Stream closed without a [DONE] sentinel")
