from __future__ import annotations

from typing import Any, Generic, TypeVar

from research_agent.errors import StageError
from research_agent.models.research import Stage
from research_agent.services import logger as log_service
from research_agent.services.progress import ProgressTracker

T = TypeVar("T")


class BaseStage(Generic[T]):
    """Lifecycle wrapper shared by the pipeline stages.

    Subclasses set `stage`, `start_message` and implement `_run`. `run`
    marks the stage active, and turns any failure inside `_run` into
    `stage_change(<stage>, error)` plus an `error` event, returning None.
    Cancellation is not caught.
    """

    stage: Stage
    start_message: str = ""
    failure_message: str = "Stage failed"

    async def run(self, tracker: ProgressTracker, *args: Any, **kwargs: Any) -> T | None:
        tracker.start(self.stage, self.start_message or None)
        try:
            return await self._run(tracker, *args, **kwargs)
        except StageError as e:
            message = e.message
        except Exception as e:
            message = str(e) or self.failure_message
            log_service.log_event(
                event_type="stage_failed",
                message=f"{self.stage.value} stage raised",
                error=f"{e.__class__.__name__}: {e}",
                session_id=tracker.session.id,
            )
        tracker.fail(self.stage, message)
        return None

    async def _run(self, tracker: ProgressTracker, *args: Any, **kwargs: Any) -> T:
        raise NotImplementedError
