"""Per-trigger execution controller.

A Subscription turns raw change batches into handler invocations for one
trigger. It guarantees:

- at most one pending (not yet started) run; batches that arrive while a
  run is pending are merged into it by file name
- non-interruptible triggers never start a run before the previous attempt
  chain (including retries) has settled
- interruptible triggers raise the in-flight run's cancellation token before
  the superseding run starts
- handler failures are retried up to ``retry.retries`` times and then
  logged and swallowed; they never reach the caller of ``trigger()``

State machine per trigger: Idle -> Running -> (Retrying)* -> Idle, with a
one-way ``has_run`` flag flipped on the first entry into Running.
"""

from __future__ import annotations

import asyncio
import inspect
import uuid
from collections.abc import Coroutine, Iterable
from dataclasses import dataclass, field, replace
from typing import Any

from turbowatch.cancellation import CancellationToken
from turbowatch.changes import merge_files, shape_files
from turbowatch.errors import SubscriptionClosedError
from turbowatch.logging import get_logger
from turbowatch.terminal import SubprocessTerminalExecutor
from turbowatch.types import ChangeEvent, File, RawChange, Trigger

log = get_logger("subscription")

SUPERSEDED = "superseded"
TEARDOWN = "teardown"


def generate_task_id() -> str:
    """Return an 8 character lowercase hex id."""
    return uuid.uuid4().hex[:8]


@dataclass
class _PendingRun:
    """Batches waiting for their turn, merged into one invocation."""

    files: list[File]
    warning: str | None
    settled: asyncio.Future[None]
    task: asyncio.Task[None] | None = None
    invocation: _Invocation | None = None

    def merge(self, files: Iterable[File], warning: str | None) -> None:
        self.files = merge_files(self.files, files)
        if warning is not None:
            self.warning = warning


@dataclass
class _Invocation:
    """The attempt chain currently in flight."""

    task_id: str
    token: CancellationToken
    done: asyncio.Event = field(default_factory=asyncio.Event)


class Subscription:
    """Execution controller for a single trigger.

    Example:
        subscription = subscribe(trigger)
        await subscription.trigger(["/project/src/app.py"])
        await subscription.teardown()
    """

    def __init__(self, definition: Trigger) -> None:
        self._definition = definition
        self._has_run = False
        self._closed = False
        self._active: _Invocation | None = None
        self._pending: _PendingRun | None = None
        self._last_start: float | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def definition(self) -> Trigger:
        return self._definition

    @property
    def name(self) -> str:
        return self._definition.name

    @property
    def has_run(self) -> bool:
        """True once the first invocation has started."""
        return self._has_run

    @property
    def is_running(self) -> bool:
        """True while an attempt chain is in flight."""
        return self._active is not None

    @property
    def closed(self) -> bool:
        return self._closed

    async def trigger(
        self,
        raw_changes: Iterable[RawChange],
        warning: str | None = None,
    ) -> None:
        """Schedule a handler invocation for a raw change batch.

        An empty batch requests a run without file changes (e.g. the
        initial run on startup).

        Returns once the invocation this batch ended up in has settled,
        whether the handler succeeded or exhausted its retries.

        Raises:
            MalformedChangeError: If an entry in the batch has no name.
            SubscriptionClosedError: If the subscription was torn down.
        """
        if self._closed:
            raise SubscriptionClosedError(f"subscription {self.name!r} is closed")

        files = shape_files(raw_changes)

        run = self._pending
        if run is not None:
            run.merge(files, warning)
            log.debug("[%s] merged %d file(s) into pending run", self.name, len(files))
        else:
            run = _PendingRun(
                files=files,
                warning=warning,
                settled=asyncio.get_running_loop().create_future(),
            )
            if self._definition.interruptible:
                self._supersede_active()
            if self._ready():
                self._start(run)
            else:
                self._pending = run
                run.task = self._spawn(self._schedule(run))

        await asyncio.shield(run.settled)

    async def teardown(self) -> None:
        """Stop accepting batches and release the subscription.

        Cancels the in-flight run's token, drops a pending run, waits for the
        in-flight attempt chain to settle and calls ``on_teardown``.
        Calling it more than once is a no-op.
        """
        if self._closed:
            return
        self._closed = True

        active = self._active
        if active is not None:
            active.token.cancel(TEARDOWN)

        pending, self._pending = self._pending, None
        if pending is not None:
            if pending.task is not None:
                pending.task.cancel()
            # A task cancelled before its first step never reaches its finally
            if not pending.settled.done():
                pending.settled.set_result(None)

        if active is not None:
            await active.done.wait()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        on_teardown = self._definition.on_teardown
        if on_teardown is not None:
            try:
                result = on_teardown()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception("[%s] teardown handler failed", self.name)

        self._active = None
        log.debug("[%s] torn down", self.name)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error(
                "[%s] background task failed", self.name, exc_info=task.exception()
            )

    def _supersede_active(self) -> None:
        active = self._active
        if active is not None and not active.token.cancelled:
            log.info("[%s] %s superseded by a newer change", self.name, active.task_id)
            active.token.cancel(SUPERSEDED)

    def _throttle_remaining(self) -> float:
        """Seconds until the throttle window allows another start."""
        delay = self._definition.throttle_output.delay / 1000
        if delay <= 0 or self._last_start is None:
            return 0.0
        return self._last_start + delay - asyncio.get_running_loop().time()

    def _ready(self) -> bool:
        if not self._definition.interruptible and self._active is not None:
            return False
        return self._throttle_remaining() <= 0

    async def _schedule(self, run: _PendingRun) -> None:
        """Wait for this run's turn, then start it."""
        try:
            if not self._definition.interruptible:
                while self._active is not None:
                    await self._active.done.wait()

            remaining = self._throttle_remaining()
            if remaining > 0:
                await asyncio.sleep(remaining)

            if self._definition.interruptible:
                self._supersede_active()
            if self._pending is run:
                self._pending = None
            self._start(run)
        finally:
            if self._pending is run:
                self._pending = None
            if run.invocation is None and not run.settled.done():
                run.settled.set_result(None)

    def _start(self, run: _PendingRun) -> _Invocation:
        """Enter Running: build the event and launch the attempt chain."""
        definition = self._definition
        token = CancellationToken(parent=definition.abort_signal)
        invocation = _Invocation(task_id=generate_task_id(), token=token)

        first = not self._has_run
        self._has_run = True
        self._active = invocation
        self._last_start = asyncio.get_running_loop().time()
        run.invocation = invocation

        event = ChangeEvent(
            files=tuple(run.files),
            first=first,
            signal=token,
            spawn=SubprocessTerminalExecutor(token, default_cwd=definition.cwd or definition.watch),
            warning=run.warning,
            task_id=invocation.task_id,
        )
        log.debug(
            "[%s] %s started (%d file(s), first=%s)",
            self.name,
            invocation.task_id,
            len(event.files),
            first,
        )
        self._spawn(self._execute(run, invocation, event))
        return invocation

    async def _execute(self, run: _PendingRun, invocation: _Invocation, event: ChangeEvent) -> None:
        try:
            await self._run_attempts(event)
        finally:
            invocation.token.detach()
            if self._active is invocation:
                self._active = None
            invocation.done.set()
            if not run.settled.done():
                run.settled.set_result(None)

    async def _run_attempts(self, event: ChangeEvent) -> None:
        """Call the handler, retrying failures up to the configured budget."""
        retries = self._definition.retry.retries
        while True:
            try:
                result = self._definition.on_change(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                if event.signal is not None and event.signal.cancelled:
                    log.info(
                        "[%s] %s aborted (%s) after attempt %d",
                        self.name,
                        event.task_id,
                        event.signal.reason,
                        event.attempt,
                        exc_info=True,
                    )
                    return
                if event.attempt > retries:
                    log.exception(
                        "[%s] %s failed after %d attempt(s)",
                        self.name,
                        event.task_id,
                        event.attempt,
                    )
                    return
                log.warning(
                    "[%s] %s attempt %d failed, retrying (%d/%d)",
                    self.name,
                    event.task_id,
                    event.attempt,
                    event.attempt,
                    retries,
                    exc_info=True,
                )
                event = replace(event, attempt=event.attempt + 1)
                continue

            log.debug("[%s] %s completed (attempt %d)", self.name, event.task_id, event.attempt)
            return


def subscribe(trigger: Trigger) -> Subscription:
    """Create the execution controller for a trigger."""
    return Subscription(trigger)
