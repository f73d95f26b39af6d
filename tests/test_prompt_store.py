from __future__ import annotations

import json
import os

import pytest

from research_agent.services.prompt_store import PromptCatalog, clear_prompt_cache, render_prompt


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt(
        "planner.user_prompt",
        topic="quantum error correction",
        current_date="2026-02-21",
    )
    assert '"quantum error correction"' in prompt
    assert "Current date: 2026-02-21" in prompt


def test_render_prompt_joins_line_lists():
    prompt = render_prompt("writer.system_prompt")
    assert "\n## Executive Summary\n" in prompt
    assert "[Source N]" in prompt


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_render_prompt_raises_for_missing_value():
    clear_prompt_cache()
    with pytest.raises(KeyError, match="topic"):
        render_prompt("planner.user_prompt", current_date="2026-02-21")


def test_missing_values_are_reported_together():
    with pytest.raises(KeyError, match="'current_date', 'topic'"):
        render_prompt("planner.user_prompt")


def test_catalog_reloads_when_file_changes(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text(json.dumps({"writer": {"system_prompt": ["Write about", "$topic"]}}))
    catalog = PromptCatalog(path)
    assert catalog.render("writer.system_prompt", topic="lidar") == "Write about\nlidar"

    path.write_text(json.dumps({"writer": {"system_prompt": "Summarize $topic"}}))
    os.utime(path, ns=(path.stat().st_atime_ns, path.stat().st_mtime_ns + 1_000_000))

    assert catalog.render("writer.system_prompt", topic="lidar") == "Summarize lidar"


@pytest.mark.parametrize(
    "entry, error",
    [
        ({"section": ["a line", 1]}, TypeError),
        ({"section": {"prompt": 3}}, TypeError),
        ({"section": {"prompt": "costs $5"}}, ValueError),
    ],
)
def test_catalog_rejects_bad_entries(tmp_path, entry, error):
    path = tmp_path / "prompts.json"
    path.write_text(json.dumps(entry))
    key = "section.prompt" if isinstance(entry["section"], dict) else "section"

    with pytest.raises(error):
        PromptCatalog(path).render(key)
