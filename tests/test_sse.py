from __future__ import annotations

import json

import pytest

from research_agent.models.research import Source, Stage, StageStatus
from research_agent.services import streaming
from research_agent.services.sse import DONE, sse_messages


class RecordingStream:
    """Async iterator over fixed events that remembers how far it was read."""

    def __init__(self, events, error: Exception | None = None):
        self.events = list(events)
        self.error = error
        self.consumed = 0
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.consumed < len(self.events):
            self.consumed += 1
            return self.events[self.consumed - 1]
        if self.error is not None:
            raise self.error
        raise StopAsyncIteration

    async def aclose(self):
        self.closed = True


async def _drain(stream) -> list[str]:
    return [message["data"] async for message in sse_messages(stream)]


@pytest.mark.asyncio
async def test_stops_after_terminal_event_and_appends_done():
    source = Source(id="1", url="https://a.example")
    stream = RecordingStream(
        [
            streaming.stage_change(Stage.PLANNING, StageStatus.ACTIVE),
            streaming.source(source),
            streaming.result("# Report", [source]),
            streaming.status("never sent", Stage.WRITING),
        ]
    )

    messages = await _drain(stream)

    assert [json.loads(m)["type"] for m in messages[:-1]] == ["stage_change", "source", "result"]
    assert messages[-1] == DONE
    assert stream.consumed == 3
    assert stream.closed


@pytest.mark.asyncio
async def test_synthesizes_error_when_stream_ends_without_terminal_event():
    messages = await _drain(RecordingStream([streaming.status("working", Stage.PLANNING)]))

    assert json.loads(messages[-2]) == {
        "type": "error",
        "data": {"message": "Research pipeline ended without a result"},
    }
    assert messages[-1] == DONE


@pytest.mark.asyncio
async def test_source_failure_becomes_single_error_event():
    stream = RecordingStream(
        [streaming.status("working", Stage.PLANNING)], error=RuntimeError("kaboom")
    )

    messages = await _drain(stream)

    assert len(messages) == 3
    assert json.loads(messages[1])["type"] == "error"
    assert "kaboom" not in messages[1]
    assert messages[2] == DONE


@pytest.mark.asyncio
async def test_error_event_is_terminal():
    messages = await _drain(RecordingStream([streaming.error("bad plan", Stage.PLANNING)]))

    assert json.loads(messages[0]) == {
        "type": "error",
        "data": {"message": "bad plan", "stage": "planning"},
    }
    assert messages[1:] == [DONE]
