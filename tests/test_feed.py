"""Tests for the watchdog-backed change feed."""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

import turbowatch.watching.feed as feed_module
from turbowatch.watching.feed import ChangeFeed


@pytest.fixture
def root(tmp_path: Path) -> Path:
    """Watch roots are resolved, so paths fed to the feed must be too."""
    return tmp_path.resolve()


def batch_names(callback: AsyncMock) -> list[list[str]]:
    return [[entry["name"] for entry in c.args[0]] for c in callback.call_args_list]


class TestBatching:
    """Tests for settling and dispatch without an observer thread."""

    @pytest.fixture
    def feed(self, root: Path) -> ChangeFeed:
        return ChangeFeed(root, settle=0.01, use_native=False)

    @pytest.mark.asyncio
    async def test_flush_delivers_matching_paths(self, feed, root):
        (root / "a.py").write_text("x")
        callback = AsyncMock()
        feed.register("", ["match", "*.py"], callback)

        feed.handle_path(str(root / "a.py"))
        feed.handle_path(str(root / "notes.txt"))
        feed.flush()
        await feed.drain()

        callback.assert_awaited_once()
        batch, warning = callback.call_args.args
        assert warning is None
        (entry,) = batch
        assert entry["name"] == str(root / "a.py")
        assert entry["exists"] is True
        assert entry["size"] == 1
        assert entry["mtime"] > 0

    @pytest.mark.asyncio
    async def test_settle_window_batches_events(self, feed, root):
        callback = AsyncMock()
        feed.register("", ["true"], callback)

        for name in ("a", "b", "a"):
            feed.handle_path(str(root / name))
        await asyncio.sleep(0.1)
        await feed.drain()

        assert batch_names(callback) == [[str(root / "a"), str(root / "b")]]

    @pytest.mark.asyncio
    async def test_deleted_file(self, feed, root):
        callback = AsyncMock()
        feed.register("", ["true"], callback)

        feed.handle_path(str(root / "gone.py"))
        feed.flush()
        await feed.drain()

        (entry,) = callback.call_args.args[0]
        assert entry["exists"] is False

    @pytest.mark.asyncio
    async def test_relative_path_scopes_registration(self, feed, root):
        (root / "src").mkdir()
        callback = AsyncMock()
        feed.register("src", ["match", "*.py", "wholename"], callback)

        feed.handle_path(str(root / "src" / "a.py"))
        feed.handle_path(str(root / "b.py"))
        feed.flush()
        await feed.drain()

        assert batch_names(callback) == [[str(root / "src" / "a.py")]]

    @pytest.mark.asyncio
    async def test_each_registration_gets_its_own_batch(self, feed, root):
        python = AsyncMock()
        docs = AsyncMock()
        feed.register("", ["suffix", "py"], python)
        feed.register("", ["suffix", "md"], docs)

        feed.handle_path(str(root / "a.py"))
        feed.handle_path(str(root / "b.md"))
        feed.flush()
        await feed.drain()

        assert batch_names(python) == [[str(root / "a.py")]]
        assert batch_names(docs) == [[str(root / "b.md")]]

    @pytest.mark.asyncio
    async def test_unregister(self, feed, root):
        callback = AsyncMock()
        unregister = feed.register("", ["true"], callback)
        unregister()

        feed.handle_path(str(root / "a.py"))
        feed.flush()
        await feed.drain()

        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_callback_errors_are_logged(self, feed, root, caplog):
        feed.register("", ["true"], AsyncMock(side_effect=RuntimeError("boom")))

        feed.handle_path(str(root / "a.py"))
        feed.flush()
        await feed.drain()
        await asyncio.sleep(0)

        assert "Error delivering change batch" in caplog.text

    @pytest.mark.asyncio
    async def test_stop_drops_buffered_events(self, feed, root):
        callback = AsyncMock()
        feed.register("", ["true"], callback)

        feed.handle_path(str(root / "a.py"))
        await feed.stop()
        await asyncio.sleep(0.05)

        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_stop_joins_observer_off_the_loop(self, root, monkeypatch):
        joined = threading.Event()

        class SlowObserver:
            def schedule(self, handler, path, recursive):
                pass

            def start(self):
                pass

            def stop(self):
                pass

            def join(self, timeout=None):
                time.sleep(0.2)
                joined.set()

        monkeypatch.setattr(feed_module, "PollingObserver", SlowObserver)
        feed = ChangeFeed(root, use_native=False)
        feed.start()

        stopping = asyncio.create_task(feed.stop())
        await asyncio.sleep(0.05)
        assert not feed.running
        assert not joined.is_set()

        await stopping
        assert joined.is_set()


class TestObserver:
    """Tests against a real observer thread."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("use_native", [True, False])
    async def test_detects_new_file(self, tmp_path, use_native):
        received = asyncio.Event()
        batches: list[list[dict]] = []

        async def on_batch(batch, warning):
            batches.append(batch)
            received.set()

        feed = ChangeFeed(tmp_path, use_native=use_native)
        feed.register("", ["match", "*.py"], on_batch)
        feed.start()
        try:
            assert feed.running
            await asyncio.sleep(0.2)
            (tmp_path / "new.py").write_text("x = 1\n")
            await asyncio.wait_for(received.wait(), timeout=10.0)
        finally:
            await feed.stop()
            await feed.drain()

        names = {entry["name"] for batch in batches for entry in batch}
        assert str(tmp_path.resolve() / "new.py") in names
        assert not feed.running
