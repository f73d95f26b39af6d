from __future__ import annotations

from contextlib import aclosing
from typing import Any, Mapping

from pydantic import ValidationError

from research_agent.agents.orchestrator import StageBackend
from research_agent.config import Settings
from research_agent.models.events import EventType, PipelineEvent
from research_agent.models.research import (
    PIPELINE_STAGES,
    SessionStatus,
    Source,
    Stage,
    StageStatus,
)
from research_agent.sandbox.protocol import (
    PROTOCOL_PIPELINE,
    AgentTranscriptTranslator,
    RemoteMessage,
)
from research_agent.sandbox.runner import SandboxRunner
from research_agent.services import logger as log_service
from research_agent.services.progress import ProgressTracker


class RemoteBackend(StageBackend):
    """Runs the stages inside a sandbox and replays its progress locally.

    Remote events are applied through the local tracker, so the client sees
    the same event contract as a local run. The remote side's own
    `completed` marker and `result` are absorbed; the orchestrator emits
    those once the report is returned.
    """

    name = "remote"

    def __init__(
        self,
        runner: SandboxRunner,
        credentials: Mapping[str, str],
        *,
        snippet_chars: int = 200,
    ):
        self.runner = runner
        self.credentials = dict(credentials)
        self.snippet_chars = snippet_chars

    @classmethod
    def from_settings(cls, settings: Settings) -> "RemoteBackend":
        credentials = {
            "ANTHROPIC_API_KEY": settings.anthropic_api_key,
            "ANTHROPIC_MODEL": settings.anthropic_model,
            "EXA_API_KEY": settings.exa_api_key,
        }
        return cls(
            SandboxRunner.from_settings(settings),
            credentials,
            snippet_chars=settings.snippet_chars,
        )

    async def execute(self, topic: str, tracker: ProgressTracker) -> str | None:
        session = tracker.session
        translator = AgentTranscriptTranslator(self.snippet_chars)
        report: str | None = None

        async with aclosing(self.runner.run(topic, self.credentials)) as messages:
            async for message in messages:
                if message.type == "status":
                    tracker.status(str(message.data))
                elif message.type == "error":
                    self._fail(tracker, str(message.data))
                elif message.type == "result":
                    for event in self._events(message, translator):
                        report = self._apply(tracker, event) or report
                        if session.status != SessionStatus.RUNNING:
                            break
                else:
                    log_service.logger.debug(f"sandbox {message.type}: {message.data}")

                if session.status != SessionStatus.RUNNING:
                    return None
                if report is not None:
                    break

        report = report or translator.report
        if report is None:
            return None
        self._close_open_stages(tracker)
        return report

    def _events(
        self, message: RemoteMessage, translator: AgentTranscriptTranslator
    ) -> list[PipelineEvent]:
        if message.protocol != PROTOCOL_PIPELINE:
            return translator.translate(message.data)
        try:
            return [PipelineEvent.from_dict(message.data)]
        except ValueError as e:
            log_service.log_event(
                event_type="remote_event_invalid",
                message="Skipping malformed remote event",
                error=str(e),
            )
            return []

    def _apply(self, tracker: ProgressTracker, event: PipelineEvent) -> str | None:
        """Apply one remote event; returns the report for a `result` event."""
        data = event.data
        if event.type == EventType.RESULT:
            self._merge_sources(tracker, data.get("sources"))
            report = data.get("report")
            return report if isinstance(report, str) and report.strip() else None

        if event.type == EventType.ERROR:
            self._fail(tracker, str(data.get("message") or "Remote research failed"), _stage(data))
        elif event.type == EventType.STATUS:
            if data.get("message"):
                tracker.status(str(data["message"]), _stage(data))
        elif event.type == EventType.SOURCE:
            self._source(tracker, data.get("source"))
        elif event.type == EventType.STAGE_CHANGE:
            self._stage_change(tracker, data)
        return None

    def _stage_change(self, tracker: ProgressTracker, data: dict[str, Any]) -> None:
        stage = _stage(data)
        if stage is None or stage == Stage.COMPLETED:
            return
        try:
            status = StageStatus(data.get("status"))
        except ValueError:
            return
        message = data.get("message")
        current = tracker.session.stages[stage].status

        if status == StageStatus.ACTIVE:
            if current == StageStatus.PENDING:
                self._advance_to(tracker, stage)
                tracker.start(stage, message)
        elif status == StageStatus.COMPLETED:
            if current == StageStatus.PENDING:
                self._advance_to(tracker, stage)
                tracker.start(stage)
                current = StageStatus.ACTIVE
            if current == StageStatus.ACTIVE:
                tracker.complete(stage, message)
        elif status == StageStatus.ERROR:
            if current in (StageStatus.PENDING, StageStatus.ACTIVE):
                tracker.fail(stage, message or f"{stage.value} failed")

    def _advance_to(self, tracker: ProgressTracker, stage: Stage) -> None:
        """Close every stage before `stage`; the agent runtime may skip markers."""
        _complete_stages(tracker, PIPELINE_STAGES[: PIPELINE_STAGES.index(stage)])

    def _close_open_stages(self, tracker: ProgressTracker) -> None:
        _complete_stages(tracker, PIPELINE_STAGES)

    def _source(self, tracker: ProgressTracker, payload: Any) -> None:
        if not isinstance(payload, dict):
            return
        try:
            item = Source.model_validate(payload)
        except ValidationError:
            return
        if not tracker.source(item) and item.snippet:
            tracker.session.enrich_source(item.url, snippet=item.snippet)

    def _merge_sources(self, tracker: ProgressTracker, payload: Any) -> None:
        """Copy metadata fetched remotely onto sources this session already has.

        Snippets are attached in place on the remote side without an event,
        so the final result is the only place they show up.
        """
        if not isinstance(payload, list):
            return
        for raw in payload:
            if not isinstance(raw, dict):
                continue
            try:
                item = Source.model_validate(raw)
            except ValidationError:
                continue
            tracker.session.enrich_source(
                item.url,
                snippet=item.snippet,
                published_date=item.published_date,
                author=item.author,
            )

    def _fail(self, tracker: ProgressTracker, message: str, stage: Stage | None = None) -> None:
        active = tracker.session.active_stage
        if active is not None:
            tracker.fail(active, message)
        else:
            tracker.error(message, stage)


def _stage(data: dict[str, Any]) -> Stage | None:
    try:
        return Stage(data.get("stage"))
    except ValueError:
        return None


def _complete_stages(tracker: ProgressTracker, stages: tuple[Stage, ...]) -> None:
    for stage in stages:
        status = tracker.session.stages[stage].status
        if status == StageStatus.PENDING:
            tracker.start(stage)
            status = StageStatus.ACTIVE
        if status == StageStatus.ACTIVE:
            tracker.complete(stage)
