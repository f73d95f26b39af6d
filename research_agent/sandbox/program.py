"""Bundle the research program that runs inside the sandbox.

The sandbox gets this package's own source (minus the HTTP layer), a
requirements file and the command lines to install and start it. Inputs
reach the program through environment variables only.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import research_agent

PACKAGE_DIR = Path(research_agent.__file__).resolve().parent
EXCLUDED_PARTS = {"api", "__pycache__"}
EXCLUDED_FILES = {"main.py"}

PIPELINE_REQUIREMENTS = [
    "anthropic>=0.40",
    "httpx>=0.27",
    "loguru>=0.7",
    "pydantic>=2.6",
    "pydantic-settings>=2.2",
]
AGENT_REQUIREMENTS = PIPELINE_REQUIREMENTS + ["claude-agent-sdk>=0.1"]

PROGRAM_MODULES = {
    "pipeline": "research_agent.sandbox.programs.pipeline_runner",
    "agent": "research_agent.sandbox.programs.agent_runner",
}


@dataclass
class ProgramBundle:
    files: dict[str, bytes]
    install_cmd: str
    install_args: list[str]
    run_cmd: str
    run_args: list[str]
    env: dict[str, str] = field(default_factory=dict)


def package_files(root: Path = PACKAGE_DIR) -> dict[str, bytes]:
    """Source files of the package keyed by path relative to its parent."""
    files: dict[str, bytes] = {}
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        relative = path.relative_to(root)
        if EXCLUDED_PARTS.intersection(relative.parts) or relative.as_posix() in EXCLUDED_FILES:
            continue
        if path.suffix not in (".py", ".json"):
            continue
        files[f"{root.name}/{relative.as_posix()}"] = path.read_bytes()
    return files


def build_program(mode: str, workdir: str) -> ProgramBundle:
    if mode not in PROGRAM_MODULES:
        raise ValueError(f"unknown sandbox program {mode!r}; expected one of {sorted(PROGRAM_MODULES)}")
    workdir = workdir.rstrip("/")
    requirements = AGENT_REQUIREMENTS if mode == "agent" else PIPELINE_REQUIREMENTS

    files = {f"{workdir}/{name}": content for name, content in package_files().items()}
    files[f"{workdir}/requirements.txt"] = ("\n".join(requirements) + "\n").encode()

    deps_dir = f"{workdir}/.deps"
    return ProgramBundle(
        files=files,
        install_cmd="python3",
        install_args=[
            "-m", "pip", "install", "--quiet", "--disable-pip-version-check",
            "--target", deps_dir, "-r", "requirements.txt",
        ],
        run_cmd="python3",
        run_args=["-m", PROGRAM_MODULES[mode]],
        env={
            "PYTHONPATH": f"{workdir}:{deps_dir}",
            "PYTHONUNBUFFERED": "1",
            "LOG_DIR": f"{workdir}/logs",
            # stderr is streamed back and quoted in failure messages
            "APP_LOG_LEVEL": "WARNING",
        },
    )
