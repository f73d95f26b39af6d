"""Choose where the research pipeline runs.

Vercel functions cannot spawn the subprocesses the agent runtime needs, so
when we are deployed there (and sandbox credentials exist) the pipeline is
delegated to a Vercel Sandbox. Everywhere else it runs in-process.
"""
from __future__ import annotations

import os
from enum import Enum
from typing import Mapping

from research_agent.agents.orchestrator import LocalBackend, ResearchPipeline
from research_agent.config import Settings


class ExecutionMode(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


def is_constrained_host(environ: Mapping[str, str]) -> bool:
    return bool(environ.get("VERCEL") or environ.get("VERCEL_ENV"))


def is_sandbox_configured(
    environ: Mapping[str, str], settings: Settings | None = None
) -> bool:
    """Sandbox credentials from the process environment or from settings (`.env`)."""
    if settings is not None and settings.vercel_token and settings.vercel_project_id:
        return True
    return bool(environ.get("VERCEL_TOKEN") and environ.get("VERCEL_PROJECT_ID"))


def decide(
    environ: Mapping[str, str] | None = None,
    settings: Settings | None = None,
) -> ExecutionMode:
    environ = os.environ if environ is None else environ
    if is_constrained_host(environ) and is_sandbox_configured(environ, settings):
        return ExecutionMode.REMOTE
    return ExecutionMode.LOCAL


def build_pipeline(
    settings: Settings,
    environ: Mapping[str, str] | None = None,
) -> ResearchPipeline:
    """Wire a pipeline with the backend for the current execution mode."""
    environ = os.environ if environ is None else environ
    if decide(environ, settings) is ExecutionMode.REMOTE:
        from research_agent.sandbox.backend import RemoteBackend

        return ResearchPipeline(RemoteBackend.from_settings(settings))
    return ResearchPipeline(LocalBackend.from_settings(settings))
