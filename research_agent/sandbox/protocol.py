"""Line protocol spoken by programs running inside the sandbox.

Two programs can run remotely:

* the pipeline program prints every pipeline event as
  `__MSG__{"type": ..., "data": ...}`;
* the agent program prints raw agent-runtime messages as
  `__RESEARCH_MSG__{...}`, then `__RESEARCH_DONE__` or
  `__RESEARCH_ERROR__<message>`.

Anything else on stdout is passed through as plain output. Agent
transcripts carry no typed stage events, so `AgentTranscriptTranslator`
recovers them from the text. That scraping stays in this module.
"""
from __future__ import annotations

import json
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from research_agent.models.events import PipelineEvent
from research_agent.models.research import Source, Stage, StageStatus
from research_agent.services import streaming

PIPELINE_PREFIX = "__MSG__"
AGENT_PREFIX = "__RESEARCH_MSG__"
AGENT_DONE = "__RESEARCH_DONE__"
AGENT_ERROR = "__RESEARCH_ERROR__"

PROTOCOL_PIPELINE = "pipeline"
PROTOCOL_AGENT = "agent"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RemoteMessage:
    type: str  # status | stdout | stderr | result | error
    data: Any
    protocol: Optional[str] = None
    timestamp: int = field(default_factory=_now_ms)


def status_message(text: str) -> RemoteMessage:
    return RemoteMessage(type="status", data=text)


def error_message(text: str) -> RemoteMessage:
    return RemoteMessage(type="error", data=text)


def _parse_envelope(line: str, prefix: str, protocol: str) -> RemoteMessage:
    raw = line[len(prefix):]
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return RemoteMessage(type="stdout", data=line)
    if not isinstance(payload, dict):
        return RemoteMessage(type="stdout", data=line)
    return RemoteMessage(type="result", data=payload, protocol=protocol)


def parse_line(line: str) -> RemoteMessage | None:
    """Translate one stdout line into a typed message (None for blank lines)."""
    line = line.rstrip("\r\n")
    if line.startswith(AGENT_DONE):
        return status_message("Research complete")
    if line.startswith(AGENT_ERROR):
        return error_message(line[len(AGENT_ERROR):].strip() or "Research program failed")
    if line.startswith(AGENT_PREFIX):
        return _parse_envelope(line, AGENT_PREFIX, PROTOCOL_AGENT)
    if line.startswith(PIPELINE_PREFIX):
        return _parse_envelope(line, PIPELINE_PREFIX, PROTOCOL_PIPELINE)
    if line.strip():
        return RemoteMessage(type="stdout", data=line)
    return None


# --- agent transcript translation ---

AGENT_STAGE_NAMES = {
    "planner": Stage.PLANNING,
    "planner-agent": Stage.PLANNING,
    "web-search": Stage.SEARCHING,
    "web-search-agent": Stage.SEARCHING,
    "report-writer": Stage.WRITING,
    "report-writer-agent": Stage.WRITING,
}

STAGE_MARKER_RE = re.compile(
    r"STAGE:\s*\[?\s*(planner(?:-agent)?|web-search(?:-agent)?|report-writer(?:-agent)?)\s*\]?"
    r"(?:\s*-\s*([^\n]*))?",
    re.IGNORECASE,
)
HEADING_RE = re.compile(r"^#\s+\S.*$", re.MULTILINE)
FENCED_JSON_RE = re.compile(r"```json\s*([\s\S]*?)\s*```")
STAGE_LINE_RE = re.compile(r"^STAGE:[^\n]*\n*", re.IGNORECASE)
COMMENTARY_RE = re.compile(r"^(Perfect!|I have|Here's a|Here is|The report|Pipeline)", re.IGNORECASE)
REPORT_SECTION_MARKERS = ("## Executive Summary", "## Key Findings", "## Introduction")
PLACEHOLDER_VALUES = {"", "unknown", "untitled", "no content", "no content available"}
MIN_REPORT_CHARS = 500


def _clean(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return None if value.lower() in PLACEHOLDER_VALUES else value


def _content_blocks(message: dict[str, Any]) -> list[dict[str, Any]]:
    inner = message.get("message")
    content = inner.get("content") if isinstance(inner, dict) else message.get("content")
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    if isinstance(content, list):
        return [b for b in content if isinstance(b, dict)]
    return []


def _block_texts(content: Any) -> list[str]:
    if isinstance(content, str):
        return [content]
    texts: list[str] = []
    if isinstance(content, list):
        for item in content:
            if isinstance(item, str):
                texts.append(item)
            elif isinstance(item, dict) and isinstance(item.get("text"), str):
                texts.append(item["text"])
    return texts


def _parse_tool_json(text: str) -> Any:
    match = FENCED_JSON_RE.search(text)
    candidate = (match.group(1) if match else text).strip()
    if not candidate.startswith(("{", "[")):
        return None
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        return None


class AgentTranscriptTranslator:
    """Turns agent-runtime messages into pipeline events.

    Produces `stage_change(active)` events for `STAGE:` announcements and
    `source` events for search/contents tool results. Report text is
    accumulated and exposed through `report`.
    """

    def __init__(self, snippet_chars: int = 200):
        self.snippet_chars = snippet_chars
        self.current_stage: Optional[Stage] = None
        self.final_result: Optional[str] = None
        self._report_candidates: list[str] = []

    def translate(self, message: dict[str, Any]) -> list[PipelineEvent]:
        kind = message.get("type")
        if kind == "assistant":
            return self._assistant(message)
        if kind == "user":
            return self._tool_results(message)
        if kind == "result":
            return self._result(message)
        return []

    @property
    def report(self) -> Optional[str]:
        if self.final_result:
            heading = HEADING_RE.search(self.final_result)
            if heading:
                return self.final_result[heading.start():].strip()
        if self._report_candidates:
            best = max(self._report_candidates, key=len)
            if len(best) >= MIN_REPORT_CHARS or not self.final_result:
                return best
        if self.final_result and self.final_result.strip():
            return self.final_result.strip()
        return None

    def _assistant(self, message: dict[str, Any]) -> list[PipelineEvent]:
        events: list[PipelineEvent] = []
        for block in _content_blocks(message):
            if block.get("type") != "text" or not isinstance(block.get("text"), str):
                continue
            text = block["text"]
            for match in STAGE_MARKER_RE.finditer(text):
                stage = AGENT_STAGE_NAMES[match.group(1).lower()]
                if stage == self.current_stage:
                    continue
                self.current_stage = stage
                description = (match.group(2) or "").strip() or None
                events.append(streaming.stage_change(stage, StageStatus.ACTIVE, description))
            self._capture_report(text)
        return events

    def _capture_report(self, text: str) -> None:
        looks_like_report = (
            self.current_stage == Stage.WRITING
            or HEADING_RE.search(text) is not None
            or any(marker in text for marker in REPORT_SECTION_MARKERS)
        )
        if not looks_like_report:
            return
        heading = HEADING_RE.search(text)
        if heading and heading.start() > 0:
            text = text[heading.start():]
        text = STAGE_LINE_RE.sub("", text).strip()
        if text and not COMMENTARY_RE.match(text):
            self._report_candidates.append(text)

    def _tool_results(self, message: dict[str, Any]) -> list[PipelineEvent]:
        texts: list[str] = []
        for block in _content_blocks(message):
            if block.get("type") == "tool_result":
                texts.extend(_block_texts(block.get("content")))
        tool_use_result = message.get("tool_use_result")
        if isinstance(tool_use_result, dict):
            texts.extend(_block_texts(tool_use_result.get("content")))

        events: list[PipelineEvent] = []
        for text in texts:
            payload = _parse_tool_json(text)
            if not isinstance(payload, dict) or payload.get("error"):
                continue
            for key in ("results", "documents"):
                items = payload.get(key)
                if isinstance(items, list):
                    events.extend(self._source_events(items))
        return events

    def _source_events(self, items: list[Any]) -> list[PipelineEvent]:
        events: list[PipelineEvent] = []
        for item in items:
            if not isinstance(item, dict) or not _clean(item.get("url")):
                continue
            url = item["url"].strip()
            text = _clean(item.get("text"))
            source = Source(
                id=uuid.uuid5(uuid.NAMESPACE_URL, url).hex,
                title=_clean(item.get("title")) or "Untitled",
                url=url,
                author=_clean(item.get("author")),
                published_date=_clean(item.get("published_date") or item.get("publishedDate")),
                snippet=text[: self.snippet_chars] if text else None,
            )
            events.append(streaming.source(source))
        return events

    def _result(self, message: dict[str, Any]) -> list[PipelineEvent]:
        text = message.get("result")
        if message.get("is_error"):
            detail = text if isinstance(text, str) and text.strip() else message.get("subtype")
            return [streaming.error(f"Agent run failed: {detail or 'unknown error'}", self.current_stage)]
        if isinstance(text, str):
            self.final_result = text
        return []
