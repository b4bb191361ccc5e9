"""Core data model: triggers, files, and change events."""

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, Union

if TYPE_CHECKING:
    from turbowatch.cancellation import CancellationToken
    from turbowatch.terminal.protocol import TerminalExecutor

# Watchman-style expression, e.g. ["allof", ["match", "*.py", "basename"], ["exists"]].
# Only the change feed interprets it.
Expression = list[Any]

# One raw entry of a change batch: a path, or a mapping with "name"/"filename"
# and optional "exists", "mtime", "size".
RawChange = Union[str, "File", dict[str, Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """Number of additional attempts after an initial handler failure."""

    retries: int = 3

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ValueError(f"retries must be >= 0, got {self.retries}")


@dataclass(frozen=True)
class ThrottlePolicy:
    """Coalescing window for raw batches, in milliseconds."""

    delay: float = 1000

    def __post_init__(self) -> None:
        if self.delay < 0:
            raise ValueError(f"delay must be >= 0, got {self.delay}")


@dataclass(frozen=True)
class File:
    """A changed file.

    Attributes:
        name: Path of the file as reported by the feed.
        exists: False if the change was a deletion.
        mtime: Last modification time (seconds since the epoch).
        size: Size in bytes.
    """

    name: str
    exists: bool = True
    mtime: float = 0.0
    size: int = 0


@dataclass(frozen=True)
class ChangeEvent:
    """Payload delivered to a handler for one invocation attempt.

    Attributes:
        files: Changed files, deduplicated by name in first-seen order.
        first: True only for the first invocation of the trigger.
        signal: Cancellation token of this invocation. Advisory.
        spawn: Execution handle bound to ``signal``.
        warning: Warning reported by the change feed, if any.
        task_id: Short id shared by an invocation and its retries.
        attempt: 1 for the initial call, 2 for the first retry, ...
    """

    files: tuple[File, ...]
    first: bool
    signal: CancellationToken | None
    spawn: TerminalExecutor
    warning: str | None
    task_id: str
    attempt: int = 1


class ChangeHandler(Protocol):
    """Anything that accepts a ChangeEvent and completes or fails."""

    def __call__(self, event: ChangeEvent) -> Awaitable[Any] | Any: ...


class TeardownHandler(Protocol):
    def __call__(self) -> Awaitable[Any] | Any: ...


@dataclass(frozen=True)
class Trigger:
    """A named binding of a watch expression to a handler and its policy.

    ``expression``, ``watch`` and ``relative_path`` are passed through to the
    change feed; the execution controller never looks at them.
    """

    id: str
    name: str
    expression: Expression
    watch: str
    on_change: ChangeHandler
    relative_path: str = ""
    interruptible: bool = True
    initial_run: bool = True
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    throttle_output: ThrottlePolicy = field(default_factory=ThrottlePolicy)
    abort_signal: CancellationToken | None = None
    on_teardown: TeardownHandler | None = None
    cwd: str | None = None
