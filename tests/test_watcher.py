"""Tests for wiring triggers to change feeds."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from turbowatch.cancellation import CancellationToken
from turbowatch.config import Config, TriggerConfig
from turbowatch.watching import Watcher, watch
from turbowatch.watching.watcher import POLLING_WARNING


class FakeFeed:
    """Stands in for ChangeFeed without starting an observer thread."""

    instances: list[FakeFeed] = []

    def __init__(self, root: Path, native: bool = True) -> None:
        self.root = root
        self.native = native
        self.running = False
        self.drained = False
        self.registrations: list[tuple[str, list, object]] = []
        FakeFeed.instances.append(self)

    def register(self, relative_path, expression, callback):
        entry = (relative_path, expression, callback)
        self.registrations.append(entry)
        return lambda: self.registrations.remove(entry)

    def start(self) -> None:
        self.running = True

    async def stop(self) -> None:
        self.running = False

    async def drain(self) -> None:
        self.drained = True

    async def deliver(self, batch, warning=None) -> None:
        await asyncio.gather(*(callback(batch, warning) for _, _, callback in self.registrations))


@pytest.fixture(autouse=True)
def reset_fake_feeds():
    FakeFeed.instances.clear()
    yield
    FakeFeed.instances.clear()


class TestWatcher:
    """Tests for Watcher lifecycle."""

    @pytest.mark.asyncio
    async def test_initial_run(self, make_trigger):
        on_change = AsyncMock()
        watcher = Watcher([make_trigger(on_change=on_change)], feed_factory=FakeFeed)

        watcher.start()
        await asyncio.sleep(0.01)
        await watcher.shutdown()

        on_change.assert_awaited_once()
        event = on_change.call_args.args[0]
        assert event.first is True
        assert event.files == ()
        assert event.warning is None

    @pytest.mark.asyncio
    async def test_initial_run_warns_when_polling(self, make_trigger):
        on_change = AsyncMock()
        watcher = Watcher(
            [make_trigger(on_change=on_change)],
            feed_factory=lambda root: FakeFeed(root, native=False),
        )

        watcher.start()
        await asyncio.sleep(0.01)
        await watcher.shutdown()

        assert on_change.call_args.args[0].warning == POLLING_WARNING

    @pytest.mark.asyncio
    async def test_no_initial_run(self, make_trigger):
        on_change = AsyncMock()
        watcher = Watcher(
            [make_trigger(on_change=on_change, initial_run=False)], feed_factory=FakeFeed
        )

        watcher.start()
        await asyncio.sleep(0.01)
        await watcher.shutdown()

        on_change.assert_not_called()

    @pytest.mark.asyncio
    async def test_feed_batches_reach_handler(self, make_trigger):
        on_change = AsyncMock()
        watcher = Watcher(
            [make_trigger(on_change=on_change, initial_run=False)], feed_factory=FakeFeed
        )

        async with watcher:
            (feed,) = FakeFeed.instances
            await feed.deliver([{"name": "/a"}, {"name": "/a"}, {"name": "/b"}])

        event = on_change.call_args.args[0]
        assert [f.name for f in event.files] == ["/a", "/b"]
        assert event.first is True

    @pytest.mark.asyncio
    async def test_one_feed_per_root(self, make_trigger, tmp_path):
        other = tmp_path / "other"
        other.mkdir()
        watcher = Watcher(
            [
                make_trigger(name="a", initial_run=False),
                make_trigger(name="b", initial_run=False, relative_path="src"),
                make_trigger(name="c", initial_run=False, watch=str(other)),
            ],
            feed_factory=FakeFeed,
        )

        watcher.start()
        try:
            assert set(watcher.feeds) == {tmp_path.resolve(), other.resolve()}
            assert all(feed.running for feed in FakeFeed.instances)
            registrations = watcher.feeds[tmp_path.resolve()].registrations
            assert [r[0] for r in registrations] == ["", "src"]
        finally:
            await watcher.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown(self, make_trigger):
        on_teardown = AsyncMock()
        watcher = Watcher(
            [make_trigger(initial_run=False, on_teardown=on_teardown)], feed_factory=FakeFeed
        )

        watcher.start()
        assert watcher.is_running()
        await watcher.shutdown()

        (feed,) = FakeFeed.instances
        assert not watcher.is_running()
        assert not feed.running
        assert feed.drained
        assert feed.registrations == []
        assert all(s.closed for s in watcher.subscriptions)
        on_teardown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_in_flight_handler(self, make_trigger):
        finished: list[bool] = []

        async def on_change(event):
            await asyncio.sleep(0.05)
            finished.append(event.signal.cancelled)

        watcher = Watcher([make_trigger(on_change=on_change)], feed_factory=FakeFeed)

        watcher.start()
        await asyncio.sleep(0.01)
        await watcher.shutdown()

        assert finished == [True]

    @pytest.mark.asyncio
    async def test_start_twice(self, make_trigger):
        watcher = Watcher([make_trigger(initial_run=False)], feed_factory=FakeFeed)
        watcher.start()
        watcher.start()
        await watcher.shutdown()
        assert len(FakeFeed.instances) == 1


class TestWatch:
    """Tests for the config-driven entry point."""

    @pytest.mark.asyncio
    async def test_watch_from_config(self, tmp_path, monkeypatch):
        handlers = tmp_path / "handlers"
        handlers.mkdir()
        (handlers / "tw_sample_handlers.py").write_text(
            "events = []\n"
            "\n"
            "async def on_change(event):\n"
            "    events.append(event)\n"
        )
        monkeypatch.syspath_prepend(str(handlers))
        monkeypatch.delitem(sys.modules, "tw_sample_handlers", raising=False)

        project = tmp_path / "project"
        project.mkdir()
        config = Config(
            project=str(project),
            triggers=[
                TriggerConfig(
                    name="sample",
                    expression=["match", "*.py"],
                    handler="tw_sample_handlers:on_change",
                    throttle_delay=0,
                )
            ],
        )
        shutdown = CancellationToken()

        watcher = await watch(config, abort_signal=shutdown)
        try:
            await asyncio.sleep(0.05)
        finally:
            shutdown.cancel("test")
            await watcher.shutdown()

        events = sys.modules["tw_sample_handlers"].events
        assert len(events) == 1
        assert events[0].first is True
        assert events[0].files == ()
