from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from research_agent.agents.orchestrator import ResearchPipeline
from research_agent.api.deps import get_pipeline_factory, get_settings
from research_agent.config import Settings
from research_agent.services import logger as log_service
from research_agent.services.sse import sse_messages

router = APIRouter(prefix="/api/research", tags=["research"])

MIN_TOPIC_CHARS = 3
INVALID_TOPIC = f"Please provide a valid research topic (at least {MIN_TOPIC_CHARS} characters)"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("")
async def research(
    request: Request,
    settings: Settings = Depends(get_settings),
    pipeline_factory: Callable[[], ResearchPipeline] = Depends(get_pipeline_factory),
):
    """Run a research session and stream its progress as server-sent events."""
    try:
        body = await request.json()
    except ValueError:
        return _error(400, "Request body must be valid JSON")

    topic = body.get("topic") if isinstance(body, dict) else None
    if not isinstance(topic, str) or len(topic.strip()) < MIN_TOPIC_CHARS:
        return _error(400, INVALID_TOPIC)

    missing = settings.missing_credentials()
    if missing:
        log_service.log_event(
            event_type="config_error",
            message="Research request rejected: missing credentials",
            error=", ".join(missing),
        )
        return _error(500, f"{missing[0]} is not configured")

    pipeline = pipeline_factory()
    return EventSourceResponse(
        sse_messages(pipeline.run(topic.strip())),
        sep="\n",
        headers={"Cache-Control": "no-cache"},
    )
