"""Prompt catalog for the research stages and the sandbox agents.

Prompts live in prompts/prompts.json under dotted keys such as
`planner.system_prompt` or `agent.web_search_prompt`. Long prompts are
stored as a list of lines. Placeholders use `string.Template` syntax
(`$topic`), so the JSON examples inside prompts need no escaping.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


class PromptCatalog:
    """Reads a prompt file and reloads it when its mtime changes."""

    def __init__(self, path: Path = PROMPTS_PATH):
        self.path = Path(path)
        self._entries: dict[str, Any] | None = None
        self._mtime_ns: int | None = None

    def entries(self) -> dict[str, Any]:
        mtime_ns = self.path.stat().st_mtime_ns
        if self._entries is None or self._mtime_ns != mtime_ns:
            entries = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(entries, dict):
                raise ValueError(f"{self.path.name} must contain a JSON object")
            self._entries, self._mtime_ns = entries, mtime_ns
        return self._entries

    def template(self, key: str) -> Template:
        node: Any = self.entries()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                raise KeyError(f"Prompt key not found: {key}")
            node = node[part]
        if isinstance(node, list) and all(isinstance(line, str) for line in node):
            node = "\n".join(node)
        if not isinstance(node, str):
            raise TypeError(f"Prompt {key} must be a string or a list of lines")
        template = Template(node)
        if not template.is_valid():
            raise ValueError(f"Prompt {key} has a malformed placeholder")
        return template

    def render(self, key: str, **values: Any) -> str:
        template = self.template(key)
        missing = sorted(set(template.get_identifiers()) - values.keys())
        if missing:
            names = ", ".join(f"'{name}'" for name in missing)
            raise KeyError(f"Missing template value {names} for prompt '{key}'")
        return template.substitute(values)

    def clear(self) -> None:
        self._entries = None
        self._mtime_ns = None


catalog = PromptCatalog()


def render_prompt(key: str, **values: Any) -> str:
    return catalog.render(key, **values)


def clear_prompt_cache() -> None:
    catalog.clear()
