"""Tests for API routes."""
from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from research_agent.agents.orchestrator import ResearchPipeline, StageBackend
from research_agent.api.deps import get_pipeline_factory, get_settings
from research_agent.config import Settings
from research_agent.main import app
from research_agent.models.research import PIPELINE_STAGES, Source


class ScriptedBackend(StageBackend):
    async def execute(self, topic, tracker):
        for stage in PIPELINE_STAGES:
            tracker.start(stage)
            if stage.value == "searching":
                tracker.source(Source(id="1", title="A", url="https://a.example"))
            tracker.complete(stage)
        return f"# {topic}"


def _settings(**overrides) -> Settings:
    values = {"anthropic_api_key": "sk-test", "exa_api_key": "exa-test"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def client():
    app.dependency_overrides[get_settings] = lambda: _settings()
    app.dependency_overrides[get_pipeline_factory] = lambda: (lambda: ResearchPipeline(ScriptedBackend()))
    yield TestClient(app)
    app.dependency_overrides.clear()


def _data_frames(body: str) -> list[str]:
    return [line[len("data: "):] for line in body.splitlines() if line.startswith("data: ")]


def test_health(client, monkeypatch):
    for name in ("VERCEL", "VERCEL_ENV"):
        monkeypatch.delenv(name, raising=False)

    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "research-agent", "execution_mode": "local"}


@pytest.mark.parametrize(
    "body",
    [
        {"topic": "ab"},
        {"topic": "   ab   "},
        {"topic": 42},
        {},
        ["topic"],
    ],
)
def test_research_rejects_invalid_topic(client, body):
    response = client.post("/api/research", json=body)

    assert response.status_code == 400
    assert response.json() == {"error": "Please provide a valid research topic (at least 3 characters)"}


def test_research_rejects_malformed_json(client):
    response = client.post(
        "/api/research", content=b"{not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400
    assert "error" in response.json()


@pytest.mark.parametrize(
    "overrides, missing",
    [
        ({"anthropic_api_key": ""}, "ANTHROPIC_API_KEY"),
        ({"exa_api_key": "  "}, "EXA_API_KEY"),
    ],
)
def test_research_requires_credentials(client, overrides, missing):
    app.dependency_overrides[get_settings] = lambda: _settings(**overrides)

    response = client.post("/api/research", json={"topic": "quantum error correction"})

    assert response.status_code == 500
    assert response.json() == {"error": f"{missing} is not configured"}


def test_research_streams_events_then_done(client):
    response = client.post("/api/research", json={"topic": "  quantum error correction  "})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"

    frames = _data_frames(response.text)
    assert frames[-1] == "[DONE]"
    events = [json.loads(frame) for frame in frames[:-1]]
    assert events[0] == {"type": "stage_change", "data": {"stage": "planning", "status": "active"}}
    assert events[-1]["type"] == "result"
    assert events[-1]["data"]["report"] == "# quantum error correction"
    assert events[-1]["data"]["sources"] == [{"id": "1", "title": "A", "url": "https://a.example"}]
    assert [e["type"] for e in events].count("source") == 1
    assert "\r\n" not in response.text
    assert response.text.endswith("data: [DONE]\n\n")
