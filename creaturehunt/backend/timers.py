"""Single-shot cancellable timers driven by the asyncio event loop."""

from __future__ import annotations

import asyncio
import itertools
from typing import Callable, Protocol

_tokens = itertools.count(1)


class TimerHandle:
    """Token returned when a timer is armed and passed back to cancel it.

    Cancelling twice, or after the callback already ran, is a no-op.
    """

    def __init__(self, deadline: float) -> None:
        self.token = next(_tokens)
        self.deadline = deadline
        self.fired = False
        self.cancelled = False
        self._cancel_hook: Callable[[], None] | None = None

    @property
    def pending(self) -> bool:
        return not (self.fired or self.cancelled)

    def bind(self, cancel_hook: Callable[[], None]) -> None:
        self._cancel_hook = cancel_hook

    def cancel(self) -> None:
        if not self.pending:
            return
        self.cancelled = True
        if self._cancel_hook is not None:
            self._cancel_hook()
            self._cancel_hook = None

    def run(self, callback: Callable[[], None]) -> None:
        if not self.pending:
            return
        self.fired = True
        self._cancel_hook = None
        callback()


class TimerScheduler(Protocol):
    def now(self) -> float:
        """Monotonic clock used for deadlines."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Arm a single-shot timer and return its handle."""


class AsyncioTimerScheduler:
    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop if self._loop is not None else asyncio.get_running_loop()

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self.loop
        handle = TimerHandle(deadline=loop.time() + delay)
        scheduled = loop.call_later(delay, handle.run, callback)
        handle.bind(scheduled.cancel)
        return handle
