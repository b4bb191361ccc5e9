"""Execution handle backed by asyncio subprocesses.

Each trigger invocation gets its own executor bound to the invocation's
cancellation token. Raising the token kills every process the executor is
still waiting on.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import time
from typing import TYPE_CHECKING

from turbowatch.logging import get_logger
from turbowatch.terminal.result import CANCELLED, ERROR, OK, TIMEOUT, ShellResult

if TYPE_CHECKING:
    from turbowatch.cancellation import CancellationToken

log = get_logger("terminal")

# Spawn failures reported with the exit codes a POSIX shell would use
_SPAWN_ERRORS: tuple[tuple[type[OSError], int, str], ...] = (
    (FileNotFoundError, 127, "Command not found: {command}"),
    (PermissionError, 126, "Permission denied: {command}"),
    (OSError, 1, "OS error: {error}"),
)


class SubprocessTerminalExecutor:
    """Run commands for a handler; ``event.spawn`` is one of these.

    Example:
        async def build(event):
            result = await event.spawn("make", "-j4")
            if result.cancelled:
                return
    """

    def __init__(self, signal: CancellationToken, default_cwd: str = ".") -> None:
        self.signal = signal
        self._default_cwd = default_cwd

    async def __call__(self, command: str, *args: str, **kwargs: object) -> ShellResult:
        return await self.execute(command, list(args), **kwargs)  # type: ignore[arg-type]

    async def execute(
        self,
        command: str,
        args: list[str] | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = 30.0,
        output_limit: int = 50000,
    ) -> ShellResult:
        """Run ``command`` and wait for it, the timeout, or cancellation.

        Args:
            command: Executable to run.
            args: Arguments passed to it.
            cwd: Working directory, defaults to the trigger's.
            env: Variables added to the inherited environment.
            timeout: Seconds before the process is killed. None waits forever.
            output_limit: Characters of output kept.
        """
        argv = [command, *(args or [])]
        command_line = " ".join(argv)

        if self.signal.cancelled:
            return ShellResult.not_started(command_line, self.signal.reason)

        started = time.perf_counter()
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=cwd or self._default_cwd,
                env={**os.environ, **env} if env else None,
            )
        except OSError as e:
            for error_type, exit_code, message in _SPAWN_ERRORS:
                if isinstance(e, error_type):
                    return ShellResult.spawn_failed(
                        command_line,
                        exit_code,
                        message.format(command=command, error=e),
                        _elapsed_ms(started),
                    )
            raise

        log.debug("Started %s (pid %s)", command_line, process.pid)
        communicate = asyncio.ensure_future(process.communicate())
        cancelled = asyncio.ensure_future(self.signal.wait())
        try:
            await asyncio.wait(
                {communicate, cancelled}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            await _kill(process)
            communicate.cancel()
            raise
        finally:
            cancelled.cancel()

        if communicate.done():
            stdout, _ = communicate.result()
            output = stdout.decode("utf-8", errors="replace")
            truncated = len(output) > output_limit
            if truncated:
                output = output[:output_limit] + "\n... (output truncated)"
            return ShellResult(
                command=command_line,
                exit_code=process.returncode,
                output=output,
                truncated=truncated,
                status=OK if process.returncode == 0 else ERROR,
                signal=None,
                duration_ms=_elapsed_ms(started),
            )

        await _kill(process)
        with contextlib.suppress(Exception):
            await communicate

        if self.signal.cancelled:
            log.debug("Killed %s: %s", command_line, self.signal.reason)
            return ShellResult.killed(
                command_line,
                CANCELLED,
                f"Command cancelled: {self.signal.reason or CANCELLED}",
                _elapsed_ms(started),
            )
        return ShellResult.killed(
            command_line, TIMEOUT, f"Command timed out after {timeout}s", _elapsed_ms(started)
        )


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


async def _kill(process: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        process.kill()
    await process.wait()
