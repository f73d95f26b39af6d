from __future__ import annotations

from research_agent.models.research import (
    ResearchSession,
    Source,
    Stage,
    StageStatus,
)
from research_agent.services import logger as log_service
from research_agent.services import streaming
from research_agent.services.event_channel import EventChannel


class ProgressTracker:
    """Applies stage transitions to the session and emits the matching events.

    Every event of a run goes through here, so the session state and the
    event stream cannot disagree. Transition errors raise before anything
    is emitted.
    """

    def __init__(self, session: ResearchSession, channel: EventChannel):
        self.session = session
        self.channel = channel

    def start(self, stage: Stage, message: str | None = None) -> None:
        self.session.start_stage(stage, message)
        log_service.log_research_step(self.session.id, stage.value, "active")
        self.channel.emit(streaming.stage_change(stage, StageStatus.ACTIVE, message))

    def complete(self, stage: Stage, message: str | None = None) -> None:
        self.session.complete_stage(stage, message)
        log_service.log_research_step(
            self.session.id, stage.value, "completed", {"message": message}
        )
        self.channel.emit(streaming.stage_change(stage, StageStatus.COMPLETED, message))

    def fail(self, stage: Stage, message: str) -> None:
        """Mark the stage and the session as failed: stage_change(error) then error."""
        self.session.fail_stage(stage, message)
        log_service.log_research_step(
            self.session.id, stage.value, "error", {"message": message}
        )
        self.channel.emit(streaming.stage_change(stage, StageStatus.ERROR, message))
        self.channel.emit(streaming.error(message, stage))

    def error(self, message: str, stage: Stage | None = None) -> None:
        """Session-level failure that is not tied to an active stage."""
        self.session.fail(message)
        self.channel.emit(streaming.error(message, stage))

    def status(self, message: str, stage: Stage | None = None) -> None:
        self.channel.emit(streaming.status(message, stage or self.session.current_stage))

    def source(self, item: Source) -> bool:
        """Record a source; emits a `source` event only for a new URL."""
        if not self.session.add_source(item):
            return False
        self.channel.emit(streaming.source(item))
        return True

    def finish(self, report: str) -> None:
        """Close a successful run: the `completed` marker, then the result."""
        self.session.complete(report)
        log_service.log_research_step(
            self.session.id,
            Stage.COMPLETED.value,
            "completed",
            {"sources": len(self.session.sources), "report_chars": len(report)},
        )
        self.channel.emit(
            streaming.stage_change(Stage.COMPLETED, StageStatus.COMPLETED, "Research complete")
        )
        self.channel.emit(streaming.result(report, self.session.sources))
