"""Tests for cancellation tokens."""

from __future__ import annotations

import asyncio

import pytest

from turbowatch.cancellation import CancellationToken
from turbowatch.errors import OperationCancelledError


class TestCancellationToken:
    """Tests for a single token."""

    def test_initial_state(self):
        token = CancellationToken()
        assert not token.cancelled
        assert token.reason is None
        assert "active" in repr(token)

    def test_cancel(self):
        token = CancellationToken()
        token.cancel("stop")
        assert token.cancelled
        assert token.reason == "stop"
        assert "stop" in repr(token)

    def test_cancel_is_idempotent(self):
        token = CancellationToken()
        calls = []
        token.add_callback(lambda t: calls.append(t.reason))
        token.cancel("first")
        token.cancel("second")
        assert token.reason == "first"
        assert calls == ["first"]

    def test_callback_after_cancel_runs_immediately(self):
        token = CancellationToken()
        token.cancel()
        calls = []
        token.add_callback(lambda t: calls.append(t))
        assert calls == [token]

    def test_unregister_callback(self):
        token = CancellationToken()
        calls = []
        unregister = token.add_callback(lambda t: calls.append(t))
        unregister()
        token.cancel()
        assert calls == []

    def test_failing_callback_does_not_stop_others(self, caplog):
        token = CancellationToken()
        calls = []

        def bad(_token):
            raise RuntimeError("boom")

        token.add_callback(bad)
        token.add_callback(lambda t: calls.append(t))
        token.cancel()

        assert calls == [token]
        assert "Error in cancellation callback" in caplog.text

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel("shutdown")
        with pytest.raises(OperationCancelledError) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.reason == "shutdown"

    @pytest.mark.asyncio
    async def test_wait(self):
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel, "later")
        assert await asyncio.wait_for(token.wait(), timeout=1.0) == "later"

    @pytest.mark.asyncio
    async def test_wait_already_cancelled(self):
        token = CancellationToken()
        token.cancel("done")
        assert await token.wait() == "done"

    @pytest.mark.asyncio
    async def test_wait_cancelled_task_unregisters(self):
        token = CancellationToken()
        waiter = asyncio.create_task(token.wait())
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert token._callbacks == []


class TestChaining:
    """Tests for parent/child tokens."""

    def test_parent_cancels_child(self):
        parent = CancellationToken()
        child = CancellationToken(parent=parent)
        parent.cancel("SIGINT")
        assert child.cancelled
        assert child.reason == "SIGINT"

    def test_child_does_not_cancel_parent(self):
        parent = CancellationToken()
        child = CancellationToken(parent=parent)
        child.cancel()
        assert not parent.cancelled

    def test_already_cancelled_parent(self):
        parent = CancellationToken()
        parent.cancel("gone")
        child = CancellationToken(parent=parent)
        assert child.cancelled
        assert child.reason == "gone"

    def test_grandchild(self):
        root = CancellationToken()
        grandchild = CancellationToken(parent=CancellationToken(parent=root))
        root.cancel()
        assert grandchild.cancelled

    def test_detach(self):
        parent = CancellationToken()
        child = CancellationToken(parent=parent)
        child.detach()
        parent.cancel()
        assert not child.cancelled
        assert parent._callbacks == []

    def test_detach_keeps_state(self):
        parent = CancellationToken()
        child = CancellationToken(parent=parent)
        parent.cancel("x")
        child.detach()
        assert child.cancelled
        assert child.reason == "x"
