"""Outcome of a command started through an execution handle."""

from __future__ import annotations

from dataclasses import dataclass

OK = "ok"
ERROR = "error"
TIMEOUT = "timeout"
CANCELLED = "cancelled"


@dataclass(frozen=True)
class ShellResult:
    """What happened to one command.

    Attributes:
        command: Command line as started (command plus args).
        exit_code: Exit code, or None if the process was killed or never ran.
        output: stdout and stderr interleaved, cut at the output limit.
        truncated: The output limit was hit.
        status: One of "ok", "error", "timeout", "cancelled".
        signal: "SIGKILL" when turbowatch killed the process.
        duration_ms: Wall time from spawn request to result.
    """

    command: str
    exit_code: int | None
    output: str
    truncated: bool
    status: str
    signal: str | None
    duration_ms: float

    @classmethod
    def not_started(cls, command: str, reason: str | None) -> ShellResult:
        """The invocation was cancelled before the process was spawned."""
        return cls(command, None, f"Command not started: {reason or CANCELLED}", False, CANCELLED, None, 0.0)

    @classmethod
    def spawn_failed(cls, command: str, exit_code: int, message: str, duration_ms: float) -> ShellResult:
        return cls(command, exit_code, message, False, ERROR, None, duration_ms)

    @classmethod
    def killed(cls, command: str, status: str, message: str, duration_ms: float) -> ShellResult:
        return cls(command, None, message, False, status, "SIGKILL", duration_ms)

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def cancelled(self) -> bool:
        return self.status == CANCELLED

    def __repr__(self) -> str:
        if self.success:
            lines = self.output.count("\n") + 1 if self.output else 0
            return f"<ShellResult ok, {lines} lines>"
        return f"<ShellResult {self.status}, exit={self.exit_code}>"
