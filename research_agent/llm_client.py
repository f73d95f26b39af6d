"""Anthropic client factory and the text-completion capability used by the stages."""
from __future__ import annotations

import time
from typing import Any

from research_agent.config import Settings
from research_agent.services import logger as log_service


def get_client(settings: Settings):
    """Build an AsyncAnthropic client from settings."""
    import anthropic

    return anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)


class LLMClient:
    """Run a prompt under a system persona and return the response text.

    The Anthropic client is injected so tests can pass a fake with a
    `messages.create` coroutine.
    """

    def __init__(self, client: Any, model: str):
        self.client = client
        self.model = model

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMClient":
        return cls(get_client(settings), settings.anthropic_model)

    async def complete(
        self,
        system: str,
        prompt: str,
        *,
        caller: str,
        max_tokens: int = 4096,
    ) -> str:
        t0 = time.monotonic()
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as e:
            log_service.log_llm_call(
                model=self.model,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                status="error",
                error=str(e),
            )
            raise
        elapsed_ms = int((time.monotonic() - t0) * 1000)

        usage = getattr(response, "usage", None)
        log_service.log_llm_call(
            model=self.model,
            caller=caller,
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
            duration_ms=elapsed_ms,
        )

        text_blocks = [
            b.text for b in response.content if getattr(b, "type", None) == "text"
        ]
        return "\n".join(text_blocks)
