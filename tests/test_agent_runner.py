from __future__ import annotations

import json

from claude_agent_sdk import (
    AssistantMessage,
    ResultMessage,
    TextBlock,
    ToolResultBlock,
    UserMessage,
)

from research_agent.config import Settings
from research_agent.models.events import EventType
from research_agent.sandbox.programs.agent_runner import build_options, serialize
from research_agent.sandbox.protocol import AgentTranscriptTranslator


def test_serialized_messages_feed_the_transcript_translator():
    translator = AgentTranscriptTranslator()
    documents = {"documents": [{"title": "A", "url": "https://a.example", "text": "body"}]}
    messages = [
        AssistantMessage(content=[TextBlock(text="STAGE: web-search - Gathering sources")], model="claude"),
        UserMessage(
            content=[ToolResultBlock(tool_use_id="t1", content=[{"type": "text", "text": json.dumps(documents)}])]
        ),
        ResultMessage(
            subtype="success",
            duration_ms=10,
            duration_api_ms=8,
            is_error=False,
            num_turns=3,
            session_id="s1",
            result="# Report\n\nBody",
        ),
    ]

    events = []
    for message in messages:
        # the wire format is JSON lines
        events.extend(translator.translate(json.loads(json.dumps(serialize(message), default=str))))

    assert [e.type for e in events] == [EventType.STAGE_CHANGE, EventType.SOURCE]
    assert events[1].data["source"]["url"] == "https://a.example"
    assert translator.report == "# Report\n\nBody"


def test_options_wire_subagents_and_exa_tools():
    options = build_options(Settings(_env_file=None), server={"type": "sdk", "name": "exa-research"})

    assert set(options.agents) == {"planner-agent", "web-search-agent", "report-writer-agent"}
    assert options.agents["web-search-agent"].tools == [
        "mcp__exa-research__search",
        "mcp__exa-research__get_contents",
        "mcp__exa-research__find_similar",
    ]
    assert "Task" in options.allowed_tools
    assert "STAGE:" in options.system_prompt
