"""
gazequest/adaptive/tracker.py — Per-modality performance statistics.

Subscribes to the InputEventBus and keeps:

- one :class:`PerformanceRecord` per (modality, context key), updated
  incrementally; a success is any event with accuracy ≥ 0.5;
- a bounded history of recent events that feeds the recommendation engine;
- an exponential success rate per modality (0.9 old / 0.1 new).

The context key is ``"<scene or unknown>_<hour // 4>"`` and is set by the
game through :meth:`PerformanceTracker.set_context`.
"""

from __future__ import annotations

from collections import deque
from typing import Optional

from gazequest.core.constants import C, Modality
from gazequest.core.logger import get_logger
from gazequest.core.models import InputEvent, PerformanceRecord
from gazequest.events.bus import InputEventBus, SubscriptionToken

_log = get_logger()

_HOUR_MS = 60 * 60 * 1000.0


def context_key(scene: Optional[str], hour: int) -> str:
    """Group key for contextual statistics (six four-hour buckets per scene)."""
    return f"{scene or 'unknown'}_{int(hour) // 4}"


class PerformanceTracker:
    """
    Incremental performance statistics for every modality.

    Args:
        max_history: Capacity of the recent-event history.
    """

    def __init__(self, max_history: int = C.MAX_INPUT_HISTORY) -> None:
        self._records: dict[tuple[Modality, str], PerformanceRecord] = {}
        self._history: deque[InputEvent] = deque(maxlen=max_history)
        self._ema_success: dict[Modality, float] = {}
        self._scene: Optional[str] = None
        self._hour: int = 12
        self._context_key = context_key(None, 12)
        self._token: Optional[SubscriptionToken] = None
        self._bus: Optional[InputEventBus] = None

    # ──────────────────────────────────────────
    # Wiring
    # ──────────────────────────────────────────

    def attach(self, bus: InputEventBus) -> SubscriptionToken:
        """Subscribe to *bus*; detaches from any previous bus first."""
        self.detach()
        self._bus = bus
        self._token = bus.subscribe(self.record)
        return self._token

    def detach(self) -> None:
        if self._bus is not None and self._token is not None:
            self._bus.unsubscribe(self._token)
        self._bus = None
        self._token = None

    # ──────────────────────────────────────────
    # Recording
    # ──────────────────────────────────────────

    def set_context(self, scene: Optional[str], hour: int) -> str:
        """
        Set the context that subsequent events are grouped under.

        Args:
            scene: Current scene name, or None.
            hour: Local hour of day (0–23).

        Returns:
            The new context key.
        """
        self._scene = scene
        self._hour = int(hour)
        self._context_key = context_key(scene, hour)
        _log.debug("tracker", "context_set", {"context": self._context_key})
        return self._context_key

    def record(self, event: InputEvent) -> None:
        """Fold one event into the statistics and the history."""
        key = (event.modality, self._context_key)
        rec = self._records.get(key)
        if rec is None:
            rec = PerformanceRecord(modality=event.modality, context_key=self._context_key)
            self._records[key] = rec
        rec.update(event)
        self._history.append(event)

        prev = self._ema_success.get(event.modality, 1.0)
        self._ema_success[event.modality] = prev * 0.9 + event.accuracy * 0.1

    def reset(self) -> None:
        """Drop all statistics and history."""
        self._records.clear()
        self._history.clear()
        self._ema_success.clear()
        _log.info("tracker", "reset", {})

    # ──────────────────────────────────────────
    # Queries
    # ──────────────────────────────────────────

    @property
    def context(self) -> str:
        return self._context_key

    @property
    def scene(self) -> Optional[str]:
        return self._scene

    @property
    def hour(self) -> int:
        return self._hour

    def history(self) -> list[InputEvent]:
        """Recent events, oldest first."""
        return list(self._history)

    def record_for(self, modality: Modality, context: Optional[str] = None) -> Optional[PerformanceRecord]:
        return self._records.get((modality, context or self._context_key))

    def records(self) -> list[PerformanceRecord]:
        return list(self._records.values())

    def aggregate(self, modality: Modality) -> Optional[PerformanceRecord]:
        """Combine a modality's records across every context."""
        parts = [r for (m, _), r in self._records.items() if m is modality]
        if not parts:
            return None
        total = sum(r.count for r in parts)
        return PerformanceRecord(
            modality=modality,
            context_key="*",
            count=total,
            mean_accuracy=sum(r.mean_accuracy * r.count for r in parts) / total,
            mean_response_time_ms=sum(r.mean_response_time_ms * r.count for r in parts) / total,
            success_count=sum(r.success_count for r in parts),
            error_count=sum(r.error_count for r in parts),
            last_updated_ms=max(r.last_updated_ms for r in parts),
        )

    def success_rate(self, modality: Modality) -> float:
        """Exponentially-weighted success rate (1.0 before any event)."""
        return self._ema_success.get(modality, 1.0)

    def recent_error_rate(self, window: int = C.ANALYSIS_WINDOW) -> float:
        recent = list(self._history)[-window:]
        if not recent:
            return 0.0
        return sum(1 for e in recent if not e.successful) / len(recent)

    def estimate_fatigue(self, play_time_ms: float) -> float:
        """
        Rough fatigue estimate in [0, 1].

        One hour of play saturates the time term; the recent error rate adds
        up to 0.5 on top.
        """
        fatigue = min(max(play_time_ms, 0.0) / _HOUR_MS, 1.0)
        fatigue += self.recent_error_rate() * 0.5
        return min(fatigue, 1.0)
