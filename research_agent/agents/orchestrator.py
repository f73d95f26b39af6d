from __future__ import annotations

import asyncio
import time
from datetime import date
from typing import AsyncGenerator

from research_agent.agents.planner import PlannerStage
from research_agent.agents.searcher import SearcherStage
from research_agent.agents.writer import WriterStage
from research_agent.config import Settings
from research_agent.llm_client import LLMClient
from research_agent.models.events import PipelineEvent
from research_agent.models.research import ResearchSession, SessionStatus
from research_agent.services import logger as log_service
from research_agent.services.event_channel import EventChannel
from research_agent.services.progress import ProgressTracker
from research_agent.tools.exa_search import ExaSearchClient


class StageBackend:
    """Strategy that drives the three stages for one session.

    `execute` reports progress through the tracker and returns the report,
    or None when a stage failed (the failure is already reported).
    """

    name: str = "base"

    async def execute(self, topic: str, tracker: ProgressTracker) -> str | None:
        raise NotImplementedError


class LocalBackend(StageBackend):
    """Runs planner -> searcher -> writer in this process."""

    name = "local"

    def __init__(
        self,
        planner: PlannerStage,
        searcher: SearcherStage,
        writer: WriterStage,
        *,
        today: date | None = None,
    ):
        self.planner = planner
        self.searcher = searcher
        self.writer = writer
        self.today = today

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        llm: LLMClient | None = None,
        search_client: ExaSearchClient | None = None,
    ) -> "LocalBackend":
        llm = llm or LLMClient.from_settings(settings)
        search_client = search_client or ExaSearchClient.from_settings(settings)
        return cls(
            PlannerStage(llm, max_tokens=settings.planner_max_tokens),
            SearcherStage(
                search_client,
                results_per_query=settings.search_results_per_query,
                fetch_limit=settings.content_fetch_limit,
                max_characters=settings.content_max_characters,
                snippet_chars=settings.snippet_chars,
            ),
            WriterStage(llm, max_tokens=settings.writer_max_tokens),
        )

    async def execute(self, topic: str, tracker: ProgressTracker) -> str | None:
        plan = await self.planner.run(tracker, topic, self.today)
        if plan is None:
            return None

        findings = await self.searcher.run(tracker, topic, plan)
        if findings is None:
            return None

        return await self.writer.run(tracker, topic, findings)


class ResearchPipeline:
    """Runs one research session and streams its events.

    Flow:
      1. Planner builds a search plan from the topic
      2. Searcher runs the plan, collecting deduplicated sources and text
      3. Writer turns sources + text into a markdown report
      4. `completed` marker and `result` event

    The backend decides where the stages execute; the event contract is the
    same for both.
    """

    def __init__(self, backend: StageBackend):
        self.backend = backend
        self.session: ResearchSession | None = None

    async def run(self, topic: str) -> AsyncGenerator[PipelineEvent, None]:
        session = ResearchSession.start(topic)
        self.session = session
        channel = EventChannel()
        tracker = ProgressTracker(session, channel)
        t0 = time.monotonic()

        log_service.log_event(
            event_type="research_started",
            message="Research started",
            session_id=session.id,
            backend=self.backend.name,
            topic=session.topic[:100],
        )

        task = asyncio.create_task(
            self._execute(tracker), name=f"research-{session.id}"
        )
        try:
            async for event in channel:
                yield event
            # surfaces unexpected faults to the stream handler
            await task
        except (asyncio.CancelledError, GeneratorExit):
            # consumer stopped early; a finished session keeps its status
            if session.status == SessionStatus.RUNNING:
                session.cancel()
                log_service.log_event(
                    event_type="research_cancelled",
                    message="Research cancelled by client",
                    session_id=session.id,
                )
            raise
        finally:
            if not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            log_service.log_event(
                event_type="research_finished",
                message="Research finished",
                session_id=session.id,
                status=session.status.value,
                sources=len(session.sources),
                runtime_ms=int((time.monotonic() - t0) * 1000),
            )

    async def _execute(self, tracker: ProgressTracker) -> None:
        session = tracker.session
        try:
            report = await self.backend.execute(session.topic, tracker)
            if session.status == SessionStatus.RUNNING:
                if report is not None:
                    tracker.finish(report)
                else:
                    tracker.error("Research pipeline ended without a report")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            session.fail(str(e) or e.__class__.__name__)
            log_service.log_event(
                event_type="research_failed",
                message="Unexpected error in research pipeline",
                error=f"{e.__class__.__name__}: {e}",
                session_id=session.id,
            )
            raise
        finally:
            tracker.channel.close()
