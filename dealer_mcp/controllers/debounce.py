"""Restartable timers and request tokens for search-as-you-type."""

from __future__ import annotations

import asyncio
import itertools
from typing import Callable


class Debouncer:
    """Run ``callback`` once ``delay`` seconds after the last :meth:`trigger`.

    Each trigger restarts the timer, so a burst of calls collapses into one.
    Must be used from inside a running event loop.
    """

    def __init__(self, delay: float, callback: Callable[[], object]) -> None:
        if delay < 0:
            raise ValueError("delay must be >= 0")
        self.delay = delay
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def flush(self) -> bool:
        """Fire a pending callback now.  Returns ``False`` if nothing was pending."""
        if self._handle is None:
            return False
        self.cancel()
        self._callback()
        return True

    def _fire(self) -> None:
        self._handle = None
        self._callback()


class RequestToken:
    """Identifies one dispatched request; cancelled once a newer one is issued."""

    __slots__ = ("seq", "_cancelled")

    def __init__(self, seq: int) -> None:
        self.seq = seq
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def __repr__(self) -> str:
        return f"RequestToken(seq={self.seq}, cancelled={self._cancelled})"


class RequestTracker:
    """Hands out tokens and remembers which one is current."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._current: RequestToken | None = None

    @property
    def current(self) -> RequestToken | None:
        return self._current

    def issue(self) -> RequestToken:
        if self._current is not None:
            self._current.cancel()
        self._current = RequestToken(next(self._counter))
        return self._current

    def is_current(self, token: RequestToken) -> bool:
        return token is self._current and not token.cancelled

    def invalidate(self) -> None:
        """Cancel the current token without issuing a new one."""
        if self._current is not None:
            self._current.cancel()
        self._current = None
