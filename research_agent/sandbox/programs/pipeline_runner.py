"""Sandbox entry point: run the local pipeline and print its events.

Started as `python -m research_agent.sandbox.programs.pipeline_runner` with
RESEARCH_TOPIC, ANTHROPIC_API_KEY and EXA_API_KEY in the environment. Each
event is printed on its own stdout line as `__MSG__<json>`.
"""
from __future__ import annotations

import asyncio
import os
import sys

from research_agent.agents.orchestrator import LocalBackend, ResearchPipeline
from research_agent.config import Settings
from research_agent.sandbox.protocol import PIPELINE_PREFIX


async def main() -> int:
    topic = os.environ.get("RESEARCH_TOPIC", "").strip()
    if not topic:
        print("RESEARCH_TOPIC is not set", file=sys.stderr)
        return 2

    pipeline = ResearchPipeline(LocalBackend.from_settings(Settings()))
    async for event in pipeline.run(topic):
        print(f"{PIPELINE_PREFIX}{event.to_json()}", flush=True)
    # stage failures were already reported as events
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
