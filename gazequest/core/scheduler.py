"""
gazequest/core/scheduler.py — Cooperative timer scheduling.

Every dwell, scan, calibration, auto-repeat and analysis timer in the input
core is an explicit scheduled task owned through a :class:`TimerHandle`.
Cancelling a handle guarantees the callback never runs, which keeps
cancellation races testable.

Two implementations:

- :class:`ManualScheduler` — virtual clock advanced explicitly; used by the
  tests, the sensor simulator and the CLI demos.
- :class:`AsyncioScheduler` — wraps ``loop.call_later`` for live sessions.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import time
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle:
    """Cancellation token for one scheduled callback."""

    __slots__ = ("due_ms", "_callback", "_cancelled", "_fired", "_on_cancel")

    def __init__(
        self,
        due_ms: float,
        callback: Callable[[], None],
        on_cancel: Optional[Callable[[], None]] = None,
    ) -> None:
        self.due_ms = due_ms
        self._callback = callback
        self._cancelled = False
        self._fired = False
        self._on_cancel = on_cancel

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def pending(self) -> bool:
        """True while the callback has neither run nor been cancelled."""
        return not (self._cancelled or self._fired)

    def cancel(self) -> None:
        """Cancel the callback. Idempotent; a no-op after it has fired."""
        if not self.pending:
            return
        self._cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()

    def _run(self) -> None:
        if not self.pending:
            return
        self._fired = True
        self._callback()

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "fired" if self._fired else "pending"
        return f"TimerHandle(due={self.due_ms:.1f}ms, {state})"


class Scheduler(Protocol):
    """What the input core needs from a clock."""

    def now_ms(self) -> float: ...

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle: ...


# ──────────────────────────────────────────────────────────────
# Virtual clock
# ──────────────────────────────────────────────────────────────

class ManualScheduler:
    """
    Deterministic scheduler driven by :meth:`advance`.

    Callbacks due at the same instant run in scheduling order. Callbacks may
    schedule further callbacks; those run within the same :meth:`advance`
    call if they fall due before its end.

    Args:
        start_ms: Initial value of the virtual clock.
    """

    def __init__(self, start_ms: float = 0.0) -> None:
        self._now = float(start_ms)
        self._queue: list[tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()

    def now_ms(self) -> float:
        return self._now

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self._now + max(0.0, float(delay_ms)), callback)
        heapq.heappush(self._queue, (handle.due_ms, next(self._seq), handle))
        return handle

    def advance(self, ms: float) -> None:
        """
        Move the virtual clock forward by *ms*, running every due callback.

        Args:
            ms: Milliseconds to advance; must be non-negative.

        Raises:
            ValueError: If *ms* is negative.
        """
        if ms < 0:
            raise ValueError(f"cannot advance by negative time: {ms}")
        target = self._now + ms
        while self._queue and self._queue[0][0] <= target:
            due, _, handle = heapq.heappop(self._queue)
            if not handle.pending:
                continue
            self._now = max(self._now, due)
            try:
                handle._run()
            except Exception:  # noqa: BLE001
                logger.exception("scheduled callback raised at t=%.1fms", self._now)
        self._now = target

    def run_until_idle(self, limit_ms: float = 600_000.0) -> None:
        """Advance until no pending callback remains (bounded by *limit_ms*)."""
        deadline = self._now + limit_ms
        while self.pending_count() and self._now < deadline:
            next_due = min(h.due_ms for _, _, h in self._queue if h.pending)
            self.advance(max(0.0, min(next_due, deadline) - self._now))

    def pending_count(self) -> int:
        """Number of callbacks still waiting to run."""
        return sum(1 for _, _, h in self._queue if h.pending)


# ──────────────────────────────────────────────────────────────
# Live clock
# ──────────────────────────────────────────────────────────────

class AsyncioScheduler:
    """
    Scheduler backed by an asyncio event loop.

    Args:
        loop: Event loop to schedule on; defaults to the running loop.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._origin = time.monotonic()

    def now_ms(self) -> float:
        return (time.monotonic() - self._origin) * 1000.0

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        handle: TimerHandle

        def _fire() -> None:
            try:
                handle._run()
            except Exception:  # noqa: BLE001
                logger.exception("scheduled callback raised")

        loop_handle = self._loop.call_later(max(0.0, delay_ms) / 1000.0, _fire)
        handle = TimerHandle(self.now_ms() + delay_ms, callback, on_cancel=loop_handle.cancel)
        return handle


class TimerGroup:
    """
    A bag of timer handles owned by one component.

    ``cancel_all()`` is the single exit path every machine uses when it
    leaves a timed state or is deactivated.
    """

    def __init__(self, scheduler: Scheduler) -> None:
        self._scheduler = scheduler
        self._handles: dict[str, TimerHandle] = {}

    def start(self, key: str, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        """Schedule *callback* under *key*, cancelling any previous timer with that key."""
        self.cancel(key)
        handle = self._scheduler.call_later(delay_ms, callback)
        self._handles[key] = handle
        return handle

    def cancel(self, key: str) -> None:
        handle = self._handles.pop(key, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()

    def is_pending(self, key: str) -> bool:
        handle = self._handles.get(key)
        return handle is not None and handle.pending

    def pending_keys(self) -> list[str]:
        return [k for k, h in self._handles.items() if h.pending]
