"""
Server-Sent Events framing for agent runs.

Every event is written as one ``data: <json>\\n\\n`` frame, and the stream
ends with a ``data: [DONE]\\n\\n`` sentinel after the ``complete`` event.
Clients must buffer by newline; a transport chunk can end mid-frame.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator

from fastapi import Request
from fastapi.responses import StreamingResponse

from querypilot.models.events import AgentStreamEvent

logger = logging.getLogger(__name__)

FRAME_PREFIX = "data: "
FRAME_DELIMITER = "\n\n"
DONE_SENTINEL = "[DONE]"
DONE_FRAME = f"{FRAME_PREFIX}{DONE_SENTINEL}{FRAME_DELIMITER}"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_event(event: AgentStreamEvent) -> str:
    """Encode one event as a single SSE frame."""
    payload = json.dumps(event.to_wire(), separators=(",", ":"), default=str)
    return f"{FRAME_PREFIX}{payload}{FRAME_DELIMITER}"


async def encode_stream(
    events: AsyncIterator[AgentStreamEvent],
    cancel_event: asyncio.Event,
    request: Request | None = None,
) -> AsyncIterator[str]:
    """
    Frame an event stream, stopping as soon as the client goes away.

    The cancellation event is shared with the agent run: it is set when the
    client disconnects or the response is torn down early, and once it is
    set no further frames are written.
    """
    finished = False
    try:
        async for event in events:
            if request is not None and await request.is_disconnected():
                logger.info("Client disconnected; cancelling agent run")
                cancel_event.set()
            if cancel_event.is_set():
                break
            yield encode_event(event)
        else:
            finished = True
            yield DONE_FRAME
    finally:
        if not finished:
            cancel_event.set()
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()


def event_stream_response(
    events: AsyncIterator[AgentStreamEvent],
    cancel_event: asyncio.Event,
    request: Request | None = None,
) -> StreamingResponse:
    """Wrap an agent run in a ``text/event-stream`` response."""
    return StreamingResponse(
        encode_stream(events, cancel_event, request),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
