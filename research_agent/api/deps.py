from __future__ import annotations

from typing import Callable

from research_agent.agents.orchestrator import ResearchPipeline
from research_agent.config import Settings, settings
from research_agent.services.execution_mode import build_pipeline


def get_settings() -> Settings:
    return settings


def get_pipeline_factory() -> Callable[[], ResearchPipeline]:
    """One fresh pipeline per request, wired for the current execution mode."""
    return lambda: build_pipeline(settings)
