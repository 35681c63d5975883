"""Notification dispatch and cancellation-scoped continuations.

This module provides two small building blocks used by the session state
machine:

* :class:`Signal` -- a named list of listeners called in registration order.
  A listener that raises is logged and skipped so one broken observer cannot
  stall the protocol flow for the others.
* :class:`CancellationToken` -- owned by a session. Continuations scheduled
  through :meth:`CancellationToken.call_soon` check the token before firing,
  so nothing scheduled by a session runs after that session was closed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Signal:
    """Dispatches notifications to listeners in registration order.

    Example::

        result = Signal("result")
        result.connect(lambda flow: print(flow.result))
        result.emit(flow_result)
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Callable[..., Any]] = []

    def connect(self, listener: Callable[..., Any]) -> Callable[..., Any]:
        """Register *listener*; returns it so the method works as a decorator."""
        self._listeners.append(listener)
        return listener

    def disconnect(self, listener: Callable[..., Any]) -> None:
        """Remove *listener*. No-op if it was never connected."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def clear(self) -> None:
        self._listeners.clear()

    def emit(self, *args: Any) -> None:
        """Call every listener with *args*.

        Each listener receives the same arguments. If a listener raises, the
        exception is logged and the remaining listeners still run.
        """
        for listener in list(self._listeners):
            try:
                listener(*args)
            except Exception:
                logger.exception("Listener for signal '%s' failed", self.name)

    def __len__(self) -> int:
        return len(self._listeners)


class CancellationToken:
    """Guards continuations against running after their owner is gone.

    The owner calls :meth:`cancel` when it is destroyed. Callbacks scheduled
    with :meth:`call_soon` are dropped if the token is cancelled before they
    fire, and pending handles are cancelled eagerly.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._handles: set[asyncio.Handle] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()

    def call_soon(
        self,
        callback: Callable[..., Any],
        *args: Any,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> Optional[asyncio.Handle]:
        """Schedule *callback* on the event loop unless the token is cancelled.

        Returns:
            The scheduled handle, or ``None`` when the token is already
            cancelled.
        """
        if self._cancelled:
            return None
        loop = loop or asyncio.get_running_loop()
        handle: asyncio.Handle

        def _fire() -> None:
            self._handles.discard(handle)
            if self._cancelled:
                return
            callback(*args)

        handle = loop.call_soon(_fire)
        self._handles.add(handle)
        return handle
