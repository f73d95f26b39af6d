from __future__ import annotations

import pytest

from research_agent.sandbox.program import build_program

WORKDIR = "/vercel/sandbox"


def test_pipeline_bundle_ships_package_without_http_layer():
    bundle = build_program("pipeline", WORKDIR + "/")

    paths = set(bundle.files)
    assert f"{WORKDIR}/research_agent/__init__.py" in paths
    assert f"{WORKDIR}/research_agent/agents/orchestrator.py" in paths
    assert f"{WORKDIR}/research_agent/prompts/prompts.json" in paths
    assert f"{WORKDIR}/research_agent/sandbox/programs/pipeline_runner.py" in paths
    assert not any("/api/" in path for path in paths)
    assert f"{WORKDIR}/research_agent/main.py" not in paths
    assert not any("__pycache__" in path for path in paths)

    requirements = bundle.files[f"{WORKDIR}/requirements.txt"].decode()
    assert "anthropic" in requirements
    assert "claude-agent-sdk" not in requirements
    assert "fastapi" not in requirements

    assert bundle.run_args == ["-m", "research_agent.sandbox.programs.pipeline_runner"]
    assert bundle.install_args[-2:] == ["-r", "requirements.txt"]
    assert bundle.env["PYTHONPATH"] == f"{WORKDIR}:{WORKDIR}/.deps"
    assert bundle.env["APP_LOG_LEVEL"] == "WARNING"


def test_agent_bundle_adds_agent_runtime():
    bundle = build_program("agent", WORKDIR)

    assert "claude-agent-sdk" in bundle.files[f"{WORKDIR}/requirements.txt"].decode()
    assert bundle.run_args == ["-m", "research_agent.sandbox.programs.agent_runner"]


def test_unknown_program_is_rejected():
    with pytest.raises(ValueError, match="unknown sandbox program"):
        build_program("node", WORKDIR)
