from __future__ import annotations

import asyncio
from collections import deque
from contextlib import aclosing
from typing import AsyncGenerator, Mapping

from research_agent.config import Settings
from research_agent.sandbox.client import SandboxHandle, SandboxProvider, VercelSandboxClient
from research_agent.sandbox.program import ProgramBundle, build_program
from research_agent.sandbox.protocol import (
    RemoteMessage,
    error_message,
    parse_line,
    status_message,
)
from research_agent.services import logger as log_service

# lines of program output kept for the failure message
OUTPUT_TAIL_LINES = 50
MAX_DETAIL_CHARS = 4000


class SandboxRunner:
    """Runs the research program in a fresh sandbox and streams its output.

    Steps: create the sandbox, write the program files, install
    dependencies (bounded), run the program (bounded) while parsing its
    stdout line by line. Every failure becomes a final `error` message.
    The sandbox is stopped on every exit path, including cancellation.
    """

    def __init__(
        self,
        provider: SandboxProvider,
        *,
        runtime: str = "python3.13",
        workdir: str = "/vercel/sandbox",
        program: str = "pipeline",
        timeout_seconds: float = 300,
        install_timeout_seconds: float = 120,
    ):
        self.provider = provider
        self.runtime = runtime
        self.workdir = workdir
        self.program = program
        self.timeout_seconds = timeout_seconds
        self.install_timeout_seconds = install_timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "SandboxRunner":
        provider = VercelSandboxClient(
            settings.vercel_token,
            settings.vercel_project_id,
            team_id=settings.vercel_team_id,
            base_url=settings.vercel_api_base_url,
        )
        return cls(
            provider,
            runtime=settings.sandbox_runtime,
            workdir=settings.sandbox_workdir,
            program=settings.sandbox_program,
            timeout_seconds=settings.sandbox_timeout_seconds,
            install_timeout_seconds=settings.sandbox_install_timeout_seconds,
        )

    async def run(
        self, topic: str, credentials: Mapping[str, str]
    ) -> AsyncGenerator[RemoteMessage, None]:
        handle: SandboxHandle | None = None
        try:
            yield status_message("Creating sandbox environment...")
            handle = await self.provider.create(
                runtime=self.runtime,
                # the platform limit covers install + run
                timeout_ms=int((self.timeout_seconds + self.install_timeout_seconds) * 1000),
            )
            log_service.log_event(
                event_type="sandbox_created",
                message="Sandbox created",
                sandbox_id=handle.id,
                runtime=handle.runtime,
            )
            yield status_message("Sandbox created, setting up project...")

            bundle = build_program(self.program, self.workdir)
            yield status_message("Writing project files...")
            try:
                await self.provider.write_files(handle, bundle.files)
            except Exception as e:
                yield error_message(f"Failed to write files: {e}")
                return

            yield status_message("Installing dependencies...")
            install_error = await self._install(handle, bundle)
            if install_error:
                yield error_message(install_error)
                return

            yield status_message("Dependencies installed, starting research...")
            env = {**bundle.env, **credentials, "RESEARCH_TOPIC": topic}
            async with aclosing(self._execute(handle, bundle, env)) as messages:
                async for message in messages:
                    yield message
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log_service.log_event(
                event_type="sandbox_failed",
                message="Sandbox run failed",
                error=f"{e.__class__.__name__}: {e}",
                sandbox_id=handle.id if handle else None,
            )
            yield error_message(str(e) or e.__class__.__name__)
        finally:
            if handle is not None:
                await self._stop(handle)

    async def _install(self, handle: SandboxHandle, bundle: ProgramBundle) -> str | None:
        try:
            result = await asyncio.wait_for(
                self.provider.run_command(
                    handle, bundle.install_cmd, bundle.install_args, cwd=self.workdir
                ),
                timeout=self.install_timeout_seconds,
            )
        except asyncio.TimeoutError:
            return f"Dependency install timed out after {self.install_timeout_seconds:g}s"
        if result.exit_code != 0:
            details = _clip((result.stderr or result.stdout).strip())
            return f"Dependency install failed (exit {result.exit_code}): {details}"
        return None

    async def _execute(
        self, handle: SandboxHandle, bundle: ProgramBundle, env: Mapping[str, str]
    ) -> AsyncGenerator[RemoteMessage, None]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        command = await self.provider.start_command(
            handle, bundle.run_cmd, bundle.run_args, cwd=self.workdir, env=env
        )

        stderr_tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)
        stdout_tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)
        lines = command.lines()
        try:
            while True:
                try:
                    stream, line = await asyncio.wait_for(
                        lines.__anext__(), timeout=max(deadline - loop.time(), 0)
                    )
                except StopAsyncIteration:
                    break
                if stream == "stderr":
                    stderr_tail.append(line)
                    yield RemoteMessage(type="stderr", data=line)
                    continue
                stdout_tail.append(line)
                message = parse_line(line)
                if message is not None:
                    yield message
            exit_code = await asyncio.wait_for(
                command.wait(), timeout=max(deadline - loop.time(), 0)
            )
        except asyncio.TimeoutError:
            yield error_message(f"Research program timed out after {self.timeout_seconds:g}s")
            return
        finally:
            aclose = getattr(lines, "aclose", None)
            if aclose is not None:
                await aclose()

        if exit_code != 0:
            details = _clip("\n".join(stderr_tail).strip() or "\n".join(stdout_tail).strip())
            yield error_message(
                f"Research program failed (exit {exit_code}): {details or 'no output'}"
            )

    async def _stop(self, handle: SandboxHandle) -> None:
        try:
            await self.provider.stop(handle)
        except Exception as e:
            log_service.log_event(
                event_type="sandbox_stop_failed",
                message="Failed to stop sandbox",
                error=f"{e.__class__.__name__}: {e}",
                sandbox_id=handle.id,
            )
        else:
            log_service.log_event(
                event_type="sandbox_stopped",
                message="Sandbox stopped",
                sandbox_id=handle.id,
            )


def _clip(details: str) -> str:
    """Keep the end of long command output."""
    if len(details) <= MAX_DETAIL_CHARS:
        return details
    return "..." + details[-MAX_DETAIL_CHARS:]
