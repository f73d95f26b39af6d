from __future__ import annotations

from typing import Any

from research_agent.models.events import EventType, PipelineEvent
from research_agent.models.research import Source, Stage, StageStatus


def stage_change(stage: Stage, status: StageStatus, message: str | None = None) -> PipelineEvent:
    data: dict[str, Any] = {"stage": stage.value, "status": status.value}
    if message:
        data["message"] = message
    return PipelineEvent(type=EventType.STAGE_CHANGE, data=data)


def status(message: str, stage: Stage | None = None) -> PipelineEvent:
    data: dict[str, Any] = {"message": message}
    if stage is not None:
        data["stage"] = stage.value
    return PipelineEvent(type=EventType.STATUS, data=data)


def source(item: Source) -> PipelineEvent:
    return PipelineEvent(type=EventType.SOURCE, data={"source": item.to_payload()})


def result(report: str, sources: list[Source]) -> PipelineEvent:
    return PipelineEvent(
        type=EventType.RESULT,
        data={"report": report, "sources": [s.to_payload() for s in sources]},
    )


def error(message: str, stage: Stage | None = None) -> PipelineEvent:
    data: dict[str, Any] = {"message": message}
    if stage is not None:
        data["stage"] = stage.value
    return PipelineEvent(type=EventType.ERROR, data=data)
