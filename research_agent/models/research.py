from __future__ import annotations

import time
import uuid
from datetime import date
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from research_agent.errors import InvalidStageTransition


def _now_ms() -> int:
    return int(time.time() * 1000)


class Stage(str, Enum):
    PLANNING = "planning"
    SEARCHING = "searching"
    WRITING = "writing"
    COMPLETED = "completed"


PIPELINE_STAGES: tuple[Stage, ...] = (Stage.PLANNING, Stage.SEARCHING, Stage.WRITING)


class StageStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    ERROR = "error"


class SessionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Source(_CamelModel):
    """A discovered web document. URLs are unique within a session."""
    id: str
    title: str = "Untitled"
    url: str
    published_date: Optional[str] = None
    author: Optional[str] = None
    snippet: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class DateRange(_CamelModel):
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start_date > self.end_date:
            raise ValueError("dateRange.startDate must not be after dateRange.endDate")
        return self


SearchType = Literal["neural", "keyword"]


class SearchPlan(_CamelModel):
    """Structured output of the planning stage."""
    queries: list[str]
    search_types: list[SearchType] = Field(default_factory=list)
    is_time_sensitive: bool = False
    date_range: Optional[DateRange] = None
    rationale: str = ""

    @field_validator("queries")
    @classmethod
    def _clean_queries(cls, value: list[str]) -> list[str]:
        cleaned = [" ".join(q.split()) for q in value]
        if not cleaned:
            raise ValueError("search plan must contain at least one query")
        if any(not q for q in cleaned):
            raise ValueError("search plan queries must not be blank")
        return cleaned

    @field_validator("search_types", mode="before")
    @classmethod
    def _normalize_types(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [v.strip().lower() if isinstance(v, str) else v for v in value]
        return value

    @field_validator("rationale", mode="before")
    @classmethod
    def _none_rationale(cls, value: Any) -> Any:
        return "" if value is None else value

    @model_validator(mode="after")
    def _check_alignment(self) -> "SearchPlan":
        if not self.search_types:
            self.search_types = ["neural"] * len(self.queries)
        elif len(self.search_types) != len(self.queries):
            raise ValueError(
                f"searchTypes has {len(self.search_types)} entries for {len(self.queries)} queries"
            )
        if self.is_time_sensitive and self.date_range is None:
            raise ValueError("time-sensitive search plan requires a dateRange")
        return self


class StageProgress(BaseModel):
    stage: Stage
    status: StageStatus = StageStatus.PENDING
    started_at: Optional[int] = None
    completed_at: Optional[int] = None
    message: Optional[str] = None


def _initial_stages() -> dict[Stage, StageProgress]:
    return {stage: StageProgress(stage=stage) for stage in PIPELINE_STAGES}


class ResearchSession(BaseModel):
    """State of one research request. Owned by a single pipeline run."""
    topic: str
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    status: SessionStatus = SessionStatus.IDLE
    stages: dict[Stage, StageProgress] = Field(default_factory=_initial_stages)
    sources: list[Source] = Field(default_factory=list)
    report: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[int] = None
    completed_at: Optional[int] = None

    @field_validator("topic")
    @classmethod
    def _require_topic(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("topic must not be empty")
        return value

    @classmethod
    def start(cls, topic: str) -> "ResearchSession":
        session = cls(topic=topic)
        session.status = SessionStatus.RUNNING
        session.started_at = _now_ms()
        return session

    @property
    def active_stage(self) -> Optional[Stage]:
        for stage, progress in self.stages.items():
            if progress.status == StageStatus.ACTIVE:
                return stage
        return None

    @property
    def current_stage(self) -> Optional[Stage]:
        """The active stage, else the last stage that left `pending`.

        None until the first stage starts.
        """
        active = self.active_stage
        if active is not None:
            return active
        current = None
        for stage, progress in self.stages.items():
            if progress.status != StageStatus.PENDING:
                current = stage
        return current

    # --- stage transitions ---

    def start_stage(self, stage: Stage, message: Optional[str] = None) -> None:
        if self.status != SessionStatus.RUNNING:
            raise InvalidStageTransition(
                f"cannot start {stage.value}: session is {self.status.value}"
            )
        progress = self._progress(stage)
        if progress.status != StageStatus.PENDING:
            raise InvalidStageTransition(
                f"cannot start {stage.value}: stage is {progress.status.value}"
            )
        active = self.active_stage
        if active is not None:
            raise InvalidStageTransition(
                f"cannot start {stage.value} while {active.value} is active"
            )
        for earlier in PIPELINE_STAGES[: PIPELINE_STAGES.index(stage)]:
            if self.stages[earlier].status != StageStatus.COMPLETED:
                raise InvalidStageTransition(
                    f"cannot start {stage.value} before {earlier.value} completed"
                )
        progress.status = StageStatus.ACTIVE
        progress.started_at = _now_ms()
        progress.message = message

    def complete_stage(self, stage: Stage, message: Optional[str] = None) -> None:
        progress = self._progress(stage)
        if progress.status != StageStatus.ACTIVE:
            raise InvalidStageTransition(
                f"cannot complete {stage.value}: stage is {progress.status.value}"
            )
        progress.status = StageStatus.COMPLETED
        progress.completed_at = _now_ms()
        progress.message = message

    def fail_stage(self, stage: Stage, message: str) -> None:
        progress = self._progress(stage)
        if progress.status not in (StageStatus.ACTIVE, StageStatus.PENDING):
            raise InvalidStageTransition(
                f"cannot fail {stage.value}: stage is {progress.status.value}"
            )
        progress.status = StageStatus.ERROR
        progress.completed_at = _now_ms()
        progress.message = message
        self.fail(message)

    def complete(self, report: str) -> None:
        unfinished = [
            stage.value
            for stage in PIPELINE_STAGES
            if self.stages[stage].status != StageStatus.COMPLETED
        ]
        if unfinished:
            raise InvalidStageTransition(
                f"cannot complete session with unfinished stages: {', '.join(unfinished)}"
            )
        self.status = SessionStatus.COMPLETED
        self.report = report
        self.completed_at = _now_ms()

    def fail(self, message: str) -> None:
        if self.error is None:
            self.error = message
        self.status = SessionStatus.ERROR
        self.completed_at = self.completed_at or _now_ms()

    def cancel(self) -> None:
        for progress in self.stages.values():
            if progress.status == StageStatus.ACTIVE:
                progress.status = StageStatus.PENDING
                progress.started_at = None
        if self.status == SessionStatus.RUNNING:
            self.status = SessionStatus.IDLE

    # --- sources ---

    def has_source(self, url: str) -> bool:
        return any(s.url == url for s in self.sources)

    def add_source(self, source: Source) -> bool:
        """Append a source unless its URL is already recorded."""
        if not source.url or self.has_source(source.url):
            return False
        self.sources.append(source)
        return True

    def enrich_source(self, url: str, **fields: Any) -> Optional[Source]:
        """Update metadata of an existing source in place."""
        for source in self.sources:
            if source.url == url:
                for name, value in fields.items():
                    if value is not None:
                        setattr(source, name, value)
                return source
        return None

    def _progress(self, stage: Stage) -> StageProgress:
        if stage not in self.stages:
            raise InvalidStageTransition(f"{stage.value} is not a pipeline stage")
        return self.stages[stage]


class SearchFindings(BaseModel):
    """Hand-off from the searcher to the writer."""
    sources: list[Source] = Field(default_factory=list)
    contents: list[str] = Field(default_factory=list)
