"""Wiring triggers to change feeds.

The Watcher owns one Subscription per trigger and one ChangeFeed per watch
root. Batches flow one way: feed -> subscription -> handler.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from turbowatch.logging import get_logger
from turbowatch.subscription import Subscription, subscribe
from turbowatch.watching.feed import ChangeFeed

if TYPE_CHECKING:
    from turbowatch.cancellation import CancellationToken
    from turbowatch.config.schema import Config
    from turbowatch.types import Trigger

log = get_logger("watching")

POLLING_WARNING = "Native file watching is unavailable; falling back to polling."


class Watcher:
    """Runs a set of triggers against the filesystem.

    Example:
        async with Watcher(triggers) as watcher:
            await shutdown.wait()
    """

    def __init__(
        self,
        triggers: Iterable[Trigger],
        feed_factory: Callable[[Path], ChangeFeed] = ChangeFeed,
    ) -> None:
        """Initialize the watcher (not started yet).

        Args:
            triggers: Triggers to run.
            feed_factory: Builds the feed for a watch root.
        """
        self._subscriptions = [subscribe(trigger) for trigger in triggers]
        self._feed_factory = feed_factory
        self._feeds: dict[Path, ChangeFeed] = {}
        self._unregister: list[Callable[[], None]] = []
        self._initial_runs: set[asyncio.Task[None]] = set()
        self._running = False

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    @property
    def feeds(self) -> dict[Path, ChangeFeed]:
        return dict(self._feeds)

    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start feeds and schedule initial runs.

        Must be called from within an async context.
        """
        if self._running:
            log.warning("Watcher already running")
            return
        self._running = True

        for subscription in self._subscriptions:
            trigger = subscription.definition
            root = Path(trigger.watch).resolve()
            feed = self._feeds.get(root)
            if feed is None:
                feed = self._feeds[root] = self._feed_factory(root)

            self._unregister.append(
                feed.register(trigger.relative_path, trigger.expression, subscription.trigger)
            )
            log.info("Trigger %r subscribed (%s)", trigger.name, trigger.id)

        for feed in self._feeds.values():
            feed.start()

        for subscription in self._subscriptions:
            if subscription.definition.initial_run:
                feed = self._feeds[Path(subscription.definition.watch).resolve()]
                warning = None if feed.native else POLLING_WARNING
                task = asyncio.create_task(subscription.trigger([], warning))
                self._initial_runs.add(task)
                task.add_done_callback(self._initial_runs.discard)

    async def shutdown(self) -> None:
        """Stop the feeds and tear down every subscription."""
        if not self._running:
            return
        self._running = False

        for unregister in self._unregister:
            unregister()
        self._unregister.clear()

        await asyncio.gather(*(feed.stop() for feed in self._feeds.values()))

        await asyncio.gather(
            *(subscription.teardown() for subscription in self._subscriptions)
        )
        if self._initial_runs:
            await asyncio.gather(*self._initial_runs, return_exceptions=True)
        for feed in self._feeds.values():
            await feed.drain()
        log.info("Watcher stopped")

    async def __aenter__(self) -> Watcher:
        self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.shutdown()


async def watch(config: Config, abort_signal: CancellationToken | None = None) -> Watcher:
    """Build triggers from configuration and start watching.

    Args:
        config: Loaded configuration.
        abort_signal: Process-level shutdown token handed to every trigger.

    Returns:
        The running Watcher. Call ``shutdown()`` to stop it.
    """
    from turbowatch.config.loader import build_triggers

    watcher = Watcher(build_triggers(config, abort_signal=abort_signal))
    watcher.start()
    return watcher
