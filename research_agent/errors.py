"""Exception hierarchy for the research pipeline."""
from __future__ import annotations


class ResearchError(Exception):
    """Base error for research pipeline failures."""


class StageError(ResearchError):
    """A pipeline stage could not produce its output."""

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage
        self.message = message


class PlanParseError(StageError):
    """The planner response did not contain a usable search plan."""

    def __init__(self, message: str):
        super().__init__("planning", message)


class InvalidStageTransition(ResearchError):
    """A stage status change would break the pipeline ordering rules."""


class SandboxError(ResearchError):
    """The remote sandbox could not be provisioned or driven."""
