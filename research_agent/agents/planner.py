from __future__ import annotations

import json
from datetime import date

from pydantic import ValidationError

from research_agent.agents.base import BaseStage
from research_agent.errors import PlanParseError
from research_agent.llm_client import LLMClient
from research_agent.models.research import SearchPlan, Stage
from research_agent.services.progress import ProgressTracker
from research_agent.services.prompt_store import render_prompt


def extract_json_object(text: str) -> str | None:
    """Return the first top-level balanced `{...}` region of `text`.

    Braces inside JSON string literals are ignored. Returns None when no
    object opens, or when the first one never closes.
    """
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def parse_search_plan(text: str) -> SearchPlan:
    """Parse planner output into a SearchPlan or raise PlanParseError."""
    region = extract_json_object(text)
    if region is None:
        raise PlanParseError("Could not parse search plan from response")
    try:
        payload = json.loads(region)
    except json.JSONDecodeError as e:
        raise PlanParseError(f"Search plan is not valid JSON: {e.msg}") from e
    if not isinstance(payload, dict):
        raise PlanParseError("Search plan must be a JSON object")
    try:
        return SearchPlan.model_validate(payload)
    except ValidationError as e:
        details = "; ".join(err["msg"] for err in e.errors())
        raise PlanParseError(f"Invalid search plan: {details}") from e


class PlannerStage(BaseStage[SearchPlan]):
    """topic -> SearchPlan via the planning persona."""

    stage = Stage.PLANNING
    start_message = "Analyzing research topic"
    failure_message = "Planning failed"

    def __init__(self, llm: LLMClient, *, max_tokens: int = 2048):
        self.llm = llm
        self.max_tokens = max_tokens

    async def _run(
        self,
        tracker: ProgressTracker,
        topic: str,
        today: date | None = None,
    ) -> SearchPlan:
        topic = topic.strip()
        if not topic:
            raise ValueError("Research topic must not be empty")
        today = today or date.today()

        tracker.status("Creating search strategy...", self.stage)
        text = await self.llm.complete(
            render_prompt("planner.system_prompt"),
            render_prompt(
                "planner.user_prompt",
                topic=topic,
                current_date=today.isoformat(),
            ),
            caller="planner",
            max_tokens=self.max_tokens,
        )
        plan = parse_search_plan(text)

        count = len(plan.queries)
        tracker.status(f"Generated {count} search queries", self.stage)
        tracker.complete(self.stage, f"Search strategy ready with {count} queries")
        return plan
