from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from research_agent.llm_client import LLMClient


def _client(create: AsyncMock) -> SimpleNamespace:
    return SimpleNamespace(messages=SimpleNamespace(create=create))


@pytest.mark.asyncio
async def test_complete_joins_text_blocks_and_logs_usage():
    create = AsyncMock(
        return_value=SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="# Title"),
                SimpleNamespace(type="tool_use", name="ignored"),
                SimpleNamespace(type="text", text="Body"),
            ],
            usage=SimpleNamespace(input_tokens=12, output_tokens=34),
        )
    )
    llm = LLMClient(_client(create), "claude-haiku-4-5-20251001")

    with patch("research_agent.llm_client.log_service.log_llm_call") as log_call:
        text = await llm.complete("persona", "prompt", caller="planner", max_tokens=256)

    assert text == "# Title\nBody"
    create.assert_awaited_once_with(
        model="claude-haiku-4-5-20251001",
        max_tokens=256,
        system="persona",
        messages=[{"role": "user", "content": "prompt"}],
    )
    kwargs = log_call.call_args.kwargs
    assert kwargs["caller"] == "planner"
    assert (kwargs["input_tokens"], kwargs["output_tokens"]) == (12, 34)


@pytest.mark.asyncio
async def test_complete_logs_and_reraises_provider_errors():
    llm = LLMClient(_client(AsyncMock(side_effect=RuntimeError("overloaded"))), "model")

    with patch("research_agent.llm_client.log_service.log_llm_call") as log_call:
        with pytest.raises(RuntimeError, match="overloaded"):
            await llm.complete("persona", "prompt", caller="report_writer")

    assert log_call.call_args.kwargs["status"] == "error"
    assert log_call.call_args.kwargs["error"] == "overloaded"
