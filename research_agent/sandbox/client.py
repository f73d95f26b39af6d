"""Remote execution capability: an isolated sandbox that runs a program.

`SandboxProvider` is the interface the runner depends on;
`VercelSandboxClient` implements it over the Vercel Sandbox REST API.
"""
from __future__ import annotations

import gzip
import io
import json
import tarfile
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Mapping

import httpx

from research_agent.errors import SandboxError


@dataclass
class SandboxHandle:
    id: str
    runtime: str
    created_at: float = field(default_factory=time.time)


@dataclass
class CommandResult:
    exit_code: int
    stdout: str = ""
    stderr: str = ""


class RunningCommand:
    """A detached command: stream its output, then wait for the exit code."""

    def lines(self) -> AsyncIterator[tuple[str, str]]:
        """Yield `(stream, line)` pairs, stream being `stdout` or `stderr`."""
        raise NotImplementedError

    async def wait(self) -> int:
        raise NotImplementedError


class SandboxProvider:
    async def create(self, *, runtime: str, timeout_ms: int) -> SandboxHandle:
        raise NotImplementedError

    async def write_files(self, handle: SandboxHandle, files: Mapping[str, bytes]) -> None:
        raise NotImplementedError

    async def run_command(
        self,
        handle: SandboxHandle,
        cmd: str,
        args: list[str],
        *,
        cwd: str,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run to completion and return buffered output."""
        command = await self.start_command(handle, cmd, args, cwd=cwd, env=env)
        stdout: list[str] = []
        stderr: list[str] = []
        async for stream, line in command.lines():
            (stderr if stream == "stderr" else stdout).append(line)
        exit_code = await command.wait()
        return CommandResult(
            exit_code=exit_code,
            stdout="\n".join(stdout),
            stderr="\n".join(stderr),
        )

    async def start_command(
        self,
        handle: SandboxHandle,
        cmd: str,
        args: list[str],
        *,
        cwd: str,
        env: Mapping[str, str] | None = None,
    ) -> RunningCommand:
        raise NotImplementedError

    async def stop(self, handle: SandboxHandle) -> None:
        raise NotImplementedError


def build_tarball(files: Mapping[str, bytes]) -> bytes:
    """Gzipped tar of `files` (absolute paths are stored relative to /)."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for path, content in files.items():
            info = tarfile.TarInfo(name=path.lstrip("/"))
            info.size = len(content)
            info.mtime = int(time.time())
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(content))
    return gzip.compress(buffer.getvalue())


class _VercelCommand(RunningCommand):
    def __init__(self, client: "VercelSandboxClient", sandbox_id: str, command_id: str):
        self._client = client
        self._sandbox_id = sandbox_id
        self._command_id = command_id

    async def lines(self) -> AsyncIterator[tuple[str, str]]:
        # log chunks are not line aligned; buffer per stream
        pending = {"stdout": "", "stderr": ""}
        path = f"/v1/sandboxes/{self._sandbox_id}/cmd/{self._command_id}/logs"
        async with httpx.AsyncClient(timeout=httpx.Timeout(30.0, read=None)) as client:
            async with client.stream(
                "GET",
                self._client.url(path),
                params=self._client.params(),
                headers=self._client.headers(),
            ) as response:
                response.raise_for_status()
                async for raw in response.aiter_lines():
                    if not raw.strip():
                        continue
                    try:
                        chunk = json.loads(raw)
                    except json.JSONDecodeError:
                        continue
                    stream = chunk.get("stream", "stdout")
                    if stream not in pending:
                        continue
                    pending[stream] += chunk.get("data", "")
                    *complete, pending[stream] = pending[stream].split("\n")
                    for line in complete:
                        yield stream, line.rstrip("\r")
        for stream, rest in pending.items():
            if rest:
                yield stream, rest

    async def wait(self) -> int:
        payload = await self._client.request(
            "GET",
            f"/v1/sandboxes/{self._sandbox_id}/cmd/{self._command_id}",
            params={"wait": "true"},
            timeout=httpx.Timeout(30.0, read=None),
        )
        exit_code = (payload.get("command") or {}).get("exitCode")
        if exit_code is None:
            raise SandboxError(f"command {self._command_id} finished without an exit code")
        return int(exit_code)


class VercelSandboxClient(SandboxProvider):
    """Vercel Sandbox REST client (bearer token scoped to a project)."""

    def __init__(
        self,
        token: str,
        project_id: str,
        *,
        team_id: str = "",
        base_url: str = "https://api.vercel.com",
        timeout: float = 60.0,
    ):
        if not token:
            raise SandboxError("VERCEL_TOKEN is required for sandbox execution")
        if not project_id:
            raise SandboxError("VERCEL_PROJECT_ID is required for sandbox execution")
        self.token = token
        self.project_id = project_id
        self.team_id = team_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def params(self) -> dict[str, str]:
        return {"teamId": self.team_id} if self.team_id else {}

    def headers(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.token}"}
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        content: bytes | None = None,
        params: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: httpx.Timeout | float | None = None,
    ) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=timeout or self.timeout) as client:
            response = await client.request(
                method,
                self.url(path),
                json=json_body,
                content=content,
                params={**self.params(), **(params or {})},
                headers=self.headers(headers),
            )
            response.raise_for_status()
            if not response.content:
                return {}
            return response.json()

    async def create(self, *, runtime: str, timeout_ms: int) -> SandboxHandle:
        payload = await self.request(
            "POST",
            "/v1/sandboxes",
            json_body={
                "projectId": self.project_id,
                "runtime": runtime,
                "timeout": timeout_ms,
                "resources": {"vcpus": 2},
                "ports": [],
            },
        )
        sandbox_id = (payload.get("sandbox") or {}).get("id")
        if not sandbox_id:
            raise SandboxError("Sandbox API response did not include a sandbox id")
        return SandboxHandle(id=sandbox_id, runtime=runtime)

    async def write_files(self, handle: SandboxHandle, files: Mapping[str, bytes]) -> None:
        await self.request(
            "POST",
            f"/v1/sandboxes/{handle.id}/fs/write",
            content=build_tarball(files),
            headers={"Content-Type": "application/gzip", "x-cwd": "/"},
        )

    async def start_command(
        self,
        handle: SandboxHandle,
        cmd: str,
        args: list[str],
        *,
        cwd: str,
        env: Mapping[str, str] | None = None,
    ) -> RunningCommand:
        payload = await self.request(
            "POST",
            f"/v1/sandboxes/{handle.id}/cmd",
            json_body={
                "command": cmd,
                "args": args,
                "cwd": cwd,
                "env": dict(env or {}),
                "sudo": False,
            },
        )
        command_id = (payload.get("command") or {}).get("id")
        if not command_id:
            raise SandboxError(f"Sandbox API did not return a command id for {cmd}")
        return _VercelCommand(self, handle.id, command_id)

    async def stop(self, handle: SandboxHandle) -> None:
        await self.request("POST", f"/v1/sandboxes/{handle.id}/stop")
