"""Cooperative cancellation tokens.

A CancellationToken is raised once with ``cancel()`` and observed through
``cancelled``, ``add_callback()`` or ``await token.wait()``. Tokens can be
chained: a child created with ``parent=`` is cancelled whenever its parent
is. Cancellation is advisory; nothing here interrupts running code.

Example:
    shutdown = CancellationToken()
    invocation = CancellationToken(parent=shutdown)
    ...
    shutdown.cancel("SIGTERM")
    assert invocation.cancelled and invocation.reason == "SIGTERM"
    invocation.detach()
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from turbowatch.errors import OperationCancelledError
from turbowatch.logging import get_logger

log = get_logger("cancellation")

CancelCallback = Callable[["CancellationToken"], None]


class CancellationToken:
    """A one-shot cancellation signal, optionally chained to a parent."""

    def __init__(self, parent: CancellationToken | None = None) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[CancelCallback] = []
        self._parent = parent
        self._unlink: Callable[[], None] | None = None

        if parent is not None:
            self._unlink = parent.add_callback(self._on_parent_cancelled)

    @property
    def cancelled(self) -> bool:
        """True once cancel() has been called on this token or an ancestor."""
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Raise the signal. Later calls are ignored."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                log.exception("Error in cancellation callback")

    def add_callback(self, callback: CancelCallback) -> Callable[[], None]:
        """Register a callback to run when the token is cancelled.

        The callback runs immediately if the token is already cancelled.

        Returns:
            A function that unregisters the callback.
        """
        if self._cancelled:
            callback(self)
            return lambda: None

        self._callbacks.append(callback)

        def unregister() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unregister

    async def wait(self) -> str | None:
        """Suspend until the token is cancelled, then return the reason."""
        if self._cancelled:
            return self._reason

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def wake(_token: CancellationToken) -> None:
            if not future.done():
                future.set_result(None)

        unregister = self.add_callback(wake)
        try:
            await future
        finally:
            unregister()
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelledError(self._reason)

    def detach(self) -> None:
        """Unlink from the parent token.

        The token keeps its current state; it just stops following the
        parent from now on.
        """
        if self._unlink is not None:
            self._unlink()
            self._unlink = None
        self._parent = None

    def _on_parent_cancelled(self, parent: CancellationToken) -> None:
        self._unlink = None
        self.cancel(parent.reason)

    def __repr__(self) -> str:
        if self._cancelled:
            return f"<CancellationToken cancelled reason={self._reason!r}>"
        return "<CancellationToken active>"
