"""
Unit Tests for SSE framing

Tests frame encoding and the cancellation contract of encode_stream.
"""

import asyncio
import json

import pytest

from querypilot.api.sse import DONE_FRAME, encode_event, encode_stream
from querypilot.models.events import StepEvent, TextEvent


class DisconnectedRequest:
    async def is_disconnected(self) -> bool:
        return True


async def _events(*events, closed: list | None = None):
    try:
        for event in events:
            yield event
    finally:
        if closed is not None:
            closed.append(True)


def test_encode_event_is_one_frame():
    frame = encode_event(StepEvent(step=1, max_steps=25))

    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    assert frame.count("\n") == 2
    assert json.loads(frame[len("data: "):]) == {"type": "step", "step": 1, "maxSteps": 25}


def test_newlines_in_text_stay_escaped():
    frame = encode_event(TextEvent(delta="line one\n\nline two"))

    assert frame.count("\n") == 2
    assert json.loads(frame[len("data: "):])["delta"] == "line one\n\nline two"


@pytest.mark.asyncio
async def test_full_stream_ends_with_done():
    cancel_event = asyncio.Event()

    frames = [
        frame
        async for frame in encode_stream(
            _events(StepEvent(step=1, max_steps=2), TextEvent(delta="hi")), cancel_event
        )
    ]

    assert len(frames) == 3
    assert frames[-1] == DONE_FRAME == "data: [DONE]\n\n"
    assert not cancel_event.is_set()


@pytest.mark.asyncio
async def test_early_close_cancels_the_run():
    cancel_event = asyncio.Event()
    closed: list = []
    stream = encode_stream(
        _events(StepEvent(step=1, max_steps=2), TextEvent(delta="hi"), closed=closed),
        cancel_event,
    )

    first = await stream.__anext__()
    await stream.aclose()

    assert first.startswith('data: {"type":"step"')
    assert cancel_event.is_set()
    assert closed == [True]


@pytest.mark.asyncio
async def test_disconnect_stops_frames():
    cancel_event = asyncio.Event()

    frames = [
        frame
        async for frame in encode_stream(
            _events(StepEvent(step=1, max_steps=2)), cancel_event, DisconnectedRequest()
        )
    ]

    assert frames == []
    assert cancel_event.is_set()
