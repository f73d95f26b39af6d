"""Server-sent event encoding for pipeline events."""
from __future__ import annotations

import asyncio
from typing import AsyncGenerator, AsyncIterable

from research_agent.models.events import PipelineEvent
from research_agent.services import logger as log_service
from research_agent.services import streaming

DONE = "[DONE]"


async def sse_messages(
    events: AsyncIterable[PipelineEvent],
) -> AsyncGenerator[dict[str, str], None]:
    """Adapt a pipeline event stream to sse-starlette messages.

    Always ends with exactly one terminal event (`result` or `error`)
    followed by the `[DONE]` sentinel. Unexpected failures of the source
    become a final `error` event. Cancellation propagates without emitting
    anything else.
    """
    terminal_sent = False
    try:
        async for event in events:
            yield {"data": event.to_json()}
            if event.is_terminal:
                terminal_sent = True
                break
    except asyncio.CancelledError:
        raise
    except Exception as e:
        log_service.log_event(
            event_type="stream_error",
            message="Unhandled error in research stream",
            error=f"{e.__class__.__name__}: {e}",
        )
        yield {"data": streaming.error("Research stream failed unexpectedly.").to_json()}
        terminal_sent = True
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()

    if not terminal_sent:
        yield {"data": streaming.error("Research pipeline ended without a result").to_json()}
    yield {"data": DONE}
