"""
Incremental SSE frame decoding.

Transport chunks do not line up with frames: a chunk may hold several
frames, end in the middle of one, or even split a multi-byte character.
``FrameBuffer`` keeps whatever trailing partial line it has seen and only
parses complete ``data:`` lines.
"""

import codecs
import logging

from pydantic import ValidationError

from querypilot.models.events import AgentStreamEvent, parse_event

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class FrameBuffer:
    """
    Accumulates chunks and yields complete events.

    Usage:
        buffer = FrameBuffer()
        async for chunk in response.aiter_bytes():
            for event in buffer.feed(chunk):
                reducer.apply(event)
        for event in buffer.close():
            reducer.apply(event)
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._pending = ""
        self.done = False
        self.skipped_frames = 0

    def feed(self, chunk: bytes | str) -> list[AgentStreamEvent]:
        """Add a chunk and return the events completed by it."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._pending += chunk

        lines = self._pending.split("\n")
        self._pending = lines.pop()
        return self._parse_lines(lines)

    def close(self) -> list[AgentStreamEvent]:
        """Flush the buffer at end of stream, parsing a final unterminated line."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return self._parse_lines([tail]) if tail.strip() else []

    def _parse_lines(self, lines: list[str]) -> list[AgentStreamEvent]:
        events: list[AgentStreamEvent] = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue
            payload = line[len(DATA_PREFIX) :].strip()
            if not payload:
                continue
            if payload == DONE_SENTINEL:
                self.done = True
                continue
            try:
                events.append(parse_event(payload))
            except ValidationError as e:
                self.skipped_frames += 1
                logger.debug(f"Skipping malformed frame: {payload[:100]}", extra={"error": str(e)})
        return events
