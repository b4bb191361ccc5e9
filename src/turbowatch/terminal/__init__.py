"""Execution handles for trigger handlers.

Each trigger invocation receives a fresh executor bound to that
invocation's cancellation token (``ChangeEvent.spawn``).
"""

from turbowatch.terminal.protocol import TerminalExecutor
from turbowatch.terminal.result import ShellResult
from turbowatch.terminal.subprocess_executor import SubprocessTerminalExecutor

__all__ = [
    "ShellResult",
    "TerminalExecutor",
    "SubprocessTerminalExecutor",
]
