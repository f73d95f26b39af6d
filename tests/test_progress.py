from __future__ import annotations

import asyncio

import pytest

from research_agent.errors import InvalidStageTransition
from research_agent.models.events import EventType
from research_agent.models.research import ResearchSession, SessionStatus, Source, Stage
from research_agent.services.event_channel import EventChannel
from research_agent.services.progress import ProgressTracker


def _tracker() -> ProgressTracker:
    return ProgressTracker(ResearchSession.start("solid state batteries"), EventChannel())


def test_fail_emits_stage_change_then_error():
    tracker = _tracker()
    tracker.start(Stage.PLANNING, "Analyzing research topic")
    tracker.fail(Stage.PLANNING, "boom")

    events = tracker.channel.drain_nowait()
    assert [e.type for e in events] == [
        EventType.STAGE_CHANGE,
        EventType.STAGE_CHANGE,
        EventType.ERROR,
    ]
    assert events[1].data == {"stage": "planning", "status": "error", "message": "boom"}
    assert events[2].data == {"message": "boom", "stage": "planning"}
    assert tracker.session.status == SessionStatus.ERROR


def test_invalid_transition_emits_nothing():
    tracker = _tracker()
    with pytest.raises(InvalidStageTransition):
        tracker.start(Stage.WRITING)
    assert tracker.channel.drain_nowait() == []


def test_status_defaults_to_current_stage():
    tracker = _tracker()
    tracker.start(Stage.PLANNING)
    tracker.complete(Stage.PLANNING)
    tracker.status("still planning?")

    events = tracker.channel.drain_nowait()
    assert events[-1].data == {"message": "still planning?", "stage": "planning"}


def test_status_before_any_stage_has_no_stage():
    tracker = _tracker()
    tracker.status("Creating sandbox environment...")

    events = tracker.channel.drain_nowait()
    assert events[0].data == {"message": "Creating sandbox environment..."}
    assert tracker.session.current_stage is None


def test_source_is_emitted_once_per_url():
    tracker = _tracker()
    assert tracker.source(Source(id="1", url="https://a.example"))
    assert not tracker.source(Source(id="2", url="https://a.example"))

    events = tracker.channel.drain_nowait()
    assert len(events) == 1
    assert events[0].data["source"]["url"] == "https://a.example"


def test_finish_emits_completed_marker_then_result():
    tracker = _tracker()
    for stage in (Stage.PLANNING, Stage.SEARCHING, Stage.WRITING):
        tracker.start(stage)
        tracker.complete(stage)
    tracker.source(Source(id="1", title="A", url="https://a.example"))
    tracker.channel.drain_nowait()

    tracker.finish("# Report")

    marker, result = tracker.channel.drain_nowait()
    assert marker.data == {"stage": "completed", "status": "completed", "message": "Research complete"}
    assert result.type == EventType.RESULT
    assert result.data["report"] == "# Report"
    assert result.data["sources"] == [{"id": "1", "title": "A", "url": "https://a.example"}]
    assert tracker.session.status == SessionStatus.COMPLETED


@pytest.mark.asyncio
async def test_event_channel_yields_in_order_until_closed():
    channel = EventChannel()
    tracker = ProgressTracker(ResearchSession.start("topic"), channel)

    async def produce():
        tracker.status("one", Stage.PLANNING)
        await asyncio.sleep(0)
        tracker.status("two", Stage.PLANNING)
        channel.close()

    task = asyncio.create_task(produce())
    received = [event.data["message"] async for event in channel]
    await task

    assert received == ["one", "two"]
    assert channel.closed
    with pytest.raises(RuntimeError):
        tracker.status("late", Stage.PLANNING)
