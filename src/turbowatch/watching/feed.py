"""Change feed backed by watchdog.

Observer threads hand raw filesystem events to the asyncio loop. Events
settle for a short window and are then delivered as one ordered batch to
every registration whose expression matches.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from watchdog.observers.polling import PollingObserver

from turbowatch.capabilities import is_native_watcher_available
from turbowatch.logging import get_logger
from turbowatch.types import Expression
from turbowatch.watching.expressions import Candidate, Matcher, compile_expression, relative_to

log = get_logger("feed")

# Seconds to wait for a burst of events to settle
DEFAULT_SETTLE = 0.02

BatchCallback = Callable[[list[dict[str, Any]], "str | None"], Awaitable[None]]


@dataclass
class _Registration:
    root: Path
    matcher: Matcher
    callback: BatchCallback


class _EventHandler(FileSystemEventHandler):
    """Forwards watchdog events from the observer thread to the loop."""

    def __init__(self, feed: ChangeFeed, loop: asyncio.AbstractEventLoop) -> None:
        self._feed = feed
        self._loop = loop

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        paths = [os.fsdecode(event.src_path)]
        if isinstance(event, FileSystemMovedEvent):
            paths.append(os.fsdecode(event.dest_path))
        for path in paths:
            self._loop.call_soon_threadsafe(self._feed.handle_path, path)


class ChangeFeed:
    """Watches a root directory and feeds change batches to callbacks.

    Example:
        feed = ChangeFeed(Path("/project"))
        unregister = feed.register("", ["match", "*.py"], subscription.trigger)
        feed.start()
        ...
        await feed.stop()
    """

    def __init__(
        self,
        root: str | Path,
        settle: float = DEFAULT_SETTLE,
        use_native: bool | None = None,
    ) -> None:
        """Initialize the feed (not started yet).

        Args:
            root: Directory to watch recursively.
            settle: Seconds of quiet before a batch is delivered.
            use_native: Force the native or polling observer. Defaults to
                the capability check.
        """
        self._root = Path(root).resolve()
        self._settle = settle
        self._native = is_native_watcher_available() if use_native is None else use_native

        self._registrations: list[_Registration] = []
        self._buffer: dict[str, None] = {}
        self._flush_handle: asyncio.TimerHandle | None = None
        self._observer: BaseObserver | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def native(self) -> bool:
        """True if the native observer is (or will be) used."""
        return self._native

    @property
    def running(self) -> bool:
        return self._observer is not None

    def register(
        self,
        relative_path: str,
        expression: Expression,
        callback: BatchCallback,
    ) -> Callable[[], None]:
        """Deliver batches matching ``expression`` under ``relative_path``.

        Returns:
            A function that removes the registration.
        """
        registration = _Registration(
            root=(self._root / relative_path).resolve() if relative_path else self._root,
            matcher=compile_expression(expression),
            callback=callback,
        )
        self._registrations.append(registration)

        def unregister() -> None:
            if registration in self._registrations:
                self._registrations.remove(registration)

        return unregister

    def start(self) -> None:
        """Start the observer thread. Must be called from a running loop."""
        if self._observer is not None:
            return

        loop = asyncio.get_running_loop()
        observer = Observer() if self._native else PollingObserver()
        observer.schedule(_EventHandler(self, loop), str(self._root), recursive=True)
        observer.start()
        self._observer = observer
        log.info(
            "Watching %s (%s)", self._root, "native" if self._native else "polling"
        )

    async def stop(self) -> None:
        """Stop the observer and drop undelivered events.

        The observer thread is joined off the loop.
        """
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None
        self._buffer.clear()

        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            await asyncio.to_thread(observer.join, 5.0)
            log.info("Stopped watching %s", self._root)

    async def drain(self) -> None:
        """Wait for batches already handed to callbacks to settle."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def handle_path(self, path: str) -> None:
        """Record a changed path and restart the settle timer.

        Runs on the event loop thread.
        """
        self._buffer[path] = None

        if self._flush_handle is not None:
            self._flush_handle.cancel()
        self._flush_handle = asyncio.get_running_loop().call_later(self._settle, self.flush)

    def flush(self) -> None:
        """Deliver buffered paths to matching registrations now."""
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None

        paths = list(self._buffer)
        self._buffer.clear()
        if not paths:
            return

        candidates = [Candidate(Path(p), "") for p in paths]
        entries: dict[str, dict[str, Any]] = {}

        for registration in list(self._registrations):
            batch: list[dict[str, Any]] = []
            for candidate in candidates:
                relative = relative_to(candidate.path, registration.root)
                if not relative:
                    continue
                candidate.relative = relative
                if not registration.matcher(candidate):
                    continue
                name = str(candidate.path)
                if name not in entries:
                    entries[name] = _describe(candidate)
                batch.append(entries[name])

            if batch:
                log.debug("Delivering %d change(s) under %s", len(batch), registration.root)
                self._dispatch(registration.callback(batch, None))

    def _dispatch(self, awaitable: Awaitable[None]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("Error delivering change batch", exc_info=task.exception())


def _describe(candidate: Candidate) -> dict[str, Any]:
    st = candidate.stat
    if st is None:
        return {"name": str(candidate.path), "exists": False, "mtime": 0.0, "size": 0}
    return {
        "name": str(candidate.path),
        "exists": True,
        "mtime": st.st_mtime,
        "size": st.st_size,
    }
