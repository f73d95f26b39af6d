"""Sandbox entry point: run the research as a multi-agent session.

An orchestrator agent delegates to planner, web-search and report-writer
sub-agents; the web-search agent reaches Exa through in-process tools.
Every agent-runtime message is printed as `__RESEARCH_MSG__<json>`, then
`__RESEARCH_DONE__` or `__RESEARCH_ERROR__<message>`.
"""
from __future__ import annotations

import asyncio
import dataclasses
import json
import os
import sys
from datetime import datetime, timezone
from typing import Any

from claude_agent_sdk import (
    AgentDefinition,
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKClient,
    ResultMessage,
    SystemMessage,
    UserMessage,
    create_sdk_mcp_server,
    tool,
)

from research_agent.config import Settings
from research_agent.sandbox.protocol import AGENT_DONE, AGENT_ERROR, AGENT_PREFIX
from research_agent.services.prompt_store import render_prompt
from research_agent.tools.exa_search import ExaSearchClient

TOOL_SERVER = "exa-research"
BLOCK_TYPES = {
    "TextBlock": "text",
    "ThinkingBlock": "thinking",
    "ToolUseBlock": "tool_use",
    "ToolResultBlock": "tool_result",
}

SEARCH_SCHEMA = {
    "type": "object",
    "properties": {
        "query": {"type": "string"},
        "type": {"type": "string", "enum": ["neural", "keyword"]},
        "num_results": {"type": "integer"},
        "start_published_date": {"type": "string", "description": "YYYY-MM-DD"},
        "end_published_date": {"type": "string", "description": "YYYY-MM-DD"},
    },
    "required": ["query"],
}
CONTENTS_SCHEMA = {
    "type": "object",
    "properties": {"urls": {"type": "array", "items": {"type": "string"}}},
    "required": ["urls"],
}
SIMILAR_SCHEMA = {
    "type": "object",
    "properties": {"url": {"type": "string"}, "num_results": {"type": "integer"}},
    "required": ["url"],
}


def _text_result(payload: dict[str, Any]) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": json.dumps(payload)}]}


def _hits_payload(outcome) -> dict[str, Any]:
    if not outcome.ok:
        return {"error": outcome.error}
    return {
        "results": [
            {
                "title": hit.title,
                "url": hit.url,
                "published_date": hit.published_date,
                "author": hit.author,
                "text": hit.text,
            }
            for hit in outcome.results
        ]
    }


def build_tool_server(exa: ExaSearchClient, settings: Settings):
    @tool("search", "Search the web with Exa. Supports neural or keyword search and a published date range.", SEARCH_SCHEMA)
    async def search(args: dict[str, Any]) -> dict[str, Any]:
        outcome = await exa.search(
            args["query"],
            search_type=args.get("type") or "neural",
            num_results=int(args.get("num_results") or settings.search_results_per_query),
            start_published_date=args.get("start_published_date"),
            end_published_date=args.get("end_published_date"),
        )
        return _text_result(_hits_payload(outcome))

    @tool("get_contents", "Fetch the full text of web pages by URL.", CONTENTS_SCHEMA)
    async def get_contents(args: dict[str, Any]) -> dict[str, Any]:
        urls = list(args.get("urls") or [])[: settings.content_fetch_limit]
        outcome = await exa.fetch_contents(urls, max_characters=settings.content_max_characters)
        if not outcome.ok:
            return _text_result({"error": outcome.error})
        return _text_result(
            {
                "documents": [
                    {
                        "title": doc.title,
                        "url": doc.url,
                        "published_date": doc.published_date,
                        "author": doc.author,
                        "text": doc.text,
                    }
                    for doc in outcome.documents
                ]
            }
        )

    @tool("find_similar", "Find pages similar to a URL.", SIMILAR_SCHEMA)
    async def find_similar(args: dict[str, Any]) -> dict[str, Any]:
        outcome = await exa.find_similar(
            args["url"],
            num_results=int(args.get("num_results") or settings.search_results_per_query),
        )
        return _text_result(_hits_payload(outcome))

    return create_sdk_mcp_server(
        name=TOOL_SERVER,
        version="1.0.0",
        tools=[search, get_contents, find_similar],
    )


def build_options(settings: Settings, server) -> ClaudeAgentOptions:
    exa_tools = [f"mcp__{TOOL_SERVER}__{name}" for name in ("search", "get_contents", "find_similar")]
    return ClaudeAgentOptions(
        system_prompt=render_prompt("agent.orchestrator_prompt"),
        model=settings.anthropic_model,
        mcp_servers={TOOL_SERVER: server},
        allowed_tools=["Task", *exa_tools],
        disallowed_tools=["Bash", "Write", "Edit", "WebSearch", "WebFetch"],
        permission_mode="bypassPermissions",
        agents={
            "planner-agent": AgentDefinition(
                description="Creates search queries with date ranges for a research topic.",
                prompt=render_prompt("agent.planner_prompt"),
                tools=[],
                model="inherit",
            ),
            "web-search-agent": AgentDefinition(
                description="Executes a search plan with Exa and gathers source content.",
                prompt=render_prompt("agent.web_search_prompt"),
                tools=exa_tools,
                model="inherit",
            ),
            "report-writer-agent": AgentDefinition(
                description="Writes the final research report from gathered sources.",
                prompt=render_prompt("writer.system_prompt"),
                tools=[],
                model="inherit",
            ),
        },
    )


def _block(block: Any) -> dict[str, Any]:
    payload = dataclasses.asdict(block) if dataclasses.is_dataclass(block) else {"value": str(block)}
    payload["type"] = BLOCK_TYPES.get(type(block).__name__, type(block).__name__)
    return payload


def serialize(message: Any) -> dict[str, Any]:
    if isinstance(message, AssistantMessage):
        return {
            "type": "assistant",
            "parent_tool_use_id": message.parent_tool_use_id,
            "message": {"content": [_block(b) for b in message.content]},
        }
    if isinstance(message, UserMessage):
        content = message.content
        if not isinstance(content, str):
            content = [_block(b) for b in content]
        return {
            "type": "user",
            "parent_tool_use_id": message.parent_tool_use_id,
            "message": {"content": content},
        }
    if isinstance(message, ResultMessage):
        return {
            "type": "result",
            "subtype": message.subtype,
            "is_error": message.is_error,
            "num_turns": message.num_turns,
            "total_cost_usd": message.total_cost_usd,
            "result": message.result,
        }
    if isinstance(message, SystemMessage):
        return {"type": "system", "subtype": message.subtype}
    return {"type": type(message).__name__}


async def main() -> int:
    topic = os.environ.get("RESEARCH_TOPIC", "").strip()
    if not topic:
        print(f"{AGENT_ERROR}RESEARCH_TOPIC is not set", flush=True)
        return 2

    settings = Settings()
    server = build_tool_server(ExaSearchClient.from_settings(settings), settings)
    prompt = render_prompt(
        "agent.research_prompt",
        topic=topic,
        current_datetime=datetime.now(timezone.utc).isoformat(),
    )
    try:
        async with ClaudeSDKClient(options=build_options(settings, server)) as client:
            await client.query(prompt)
            async for message in client.receive_response():
                print(f"{AGENT_PREFIX}{json.dumps(serialize(message), default=str)}", flush=True)
    except Exception as e:
        print(f"{AGENT_ERROR}{e.__class__.__name__}: {e}", flush=True)
        return 1

    print(AGENT_DONE, flush=True)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
