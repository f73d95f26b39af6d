from __future__ import annotations

from research_agent.agents.base import BaseStage
from research_agent.errors import StageError
from research_agent.llm_client import LLMClient
from research_agent.models.research import SearchFindings, Source, Stage
from research_agent.services.progress import ProgressTracker
from research_agent.services.prompt_store import render_prompt

CONTENT_DELIMITER = "\n\n---\n\n"


def numbered_sources(sources: list[Source]) -> str:
    """`[N] title - url` lines, 1-based, in the order the report cites them."""
    return "\n".join(f"[{i}] {s.title} - {s.url}" for i, s in enumerate(sources, 1))


class WriterStage(BaseStage[str]):
    """Sources + fetched text -> markdown report."""

    stage = Stage.WRITING
    start_message = "Synthesizing research findings"
    failure_message = "Report writing failed"

    def __init__(self, llm: LLMClient, *, max_tokens: int = 8192):
        self.llm = llm
        self.max_tokens = max_tokens

    async def _run(
        self,
        tracker: ProgressTracker,
        topic: str,
        findings: SearchFindings,
    ) -> str:
        tracker.status("Generating comprehensive report...", self.stage)
        report = await self.llm.complete(
            render_prompt("writer.system_prompt"),
            render_prompt(
                "writer.user_prompt",
                topic=topic,
                sources_list=numbered_sources(findings.sources) or "(no sources found)",
                sources_context=CONTENT_DELIMITER.join(findings.contents)
                or "(no source content available)",
            ),
            caller="report_writer",
            max_tokens=self.max_tokens,
        )
        report = report.strip()
        if not report:
            raise StageError(self.stage.value, "Report writer returned an empty report")

        tracker.status("Report generation complete", self.stage)
        tracker.complete(self.stage, "Report ready")
        return report
