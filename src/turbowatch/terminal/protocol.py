"""Interface of the execution handle passed to handlers as ``event.spawn``."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from turbowatch.terminal.result import ShellResult

if TYPE_CHECKING:
    from turbowatch.cancellation import CancellationToken


@runtime_checkable
class TerminalExecutor(Protocol):
    """Starts processes on behalf of one invocation.

    ``signal`` is the invocation's token. Processes still running when it
    is cancelled are killed and report status "cancelled"; once it is
    cancelled nothing new is started.
    """

    signal: CancellationToken

    async def execute(
        self,
        command: str,
        args: list[str] | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = 30.0,
        output_limit: int = 50000,
    ) -> ShellResult: ...
