"""
gazequest/acquisition/dwell.py — Dwell-to-activate target acquisition.

State machine::

    IDLE ─► HOVERING ─► COMMITTING ─► ACTIVATED ─► IDLE
      ▲         │            │
      └─────────┴────────────┘   (target left / reset)

Entering an eligible target starts a dwell timer. Leaving it before the
timer elapses cancels the timer with no partial credit. On elapse the
hovered target is activated and a ``select`` event is emitted; the machine
then returns to IDLE and will not fire again on the same target until the
resolved target changes.

An uncalibrated modality that needs calibration never selects: elapse
produces a ``navigate`` event at half confidence and no activation.
"""

from __future__ import annotations

from collections import deque
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

import numpy as np

from gazequest.core.constants import ActionKind, C, Modality
from gazequest.core.fsm import StateMachine
from gazequest.core.interfaces import Announcer, TargetEnvironment
from gazequest.core.logger import get_logger
from gazequest.core.models import InputEvent, TargetRef
from gazequest.core.scheduler import Scheduler, TimerGroup

if TYPE_CHECKING:
    from gazequest.calibration.engine import CalibrationEngine

_log = get_logger()


class DwellState(Enum):
    IDLE = "IDLE"
    HOVERING = "HOVERING"
    COMMITTING = "COMMITTING"
    ACTIVATED = "ACTIVATED"


_DWELL_TRANSITIONS: dict[DwellState, tuple[DwellState, ...]] = {
    DwellState.IDLE: (DwellState.HOVERING,),
    DwellState.HOVERING: (DwellState.COMMITTING, DwellState.IDLE),
    DwellState.COMMITTING: (DwellState.ACTIVATED, DwellState.IDLE),
    DwellState.ACTIVATED: (DwellState.IDLE,),
}


def gaze_confidence(points: list[tuple[float, float]]) -> float:
    """
    ``max(0.1, 1 − variance / 1000)`` over the given points.

    Variance is the mean squared distance from the centroid. Fewer than
    three points yields 0.5.
    """
    if len(points) < C.CONFIDENCE_WINDOW:
        return 0.5
    arr = np.asarray(points, dtype=float)
    variance = float(np.mean(np.sum((arr - arr.mean(axis=0)) ** 2, axis=1)))
    return max(C.CONFIDENCE_FLOOR, 1.0 - variance / C.CONFIDENCE_VARIANCE_SCALE)


class DwellMachine:
    """
    Dwell acquisition for pointer-like modalities.

    Args:
        modality: Producing modality (gaze, or breath used as a pointer).
        environment: Hit-testing and activation collaborator.
        scheduler: Timer source.
        emit: Sink for produced events (usually ``InputEventBus.publish``).
        calibration: Optional engine consulted for the calibration gate and
            accuracy. Without one the modality counts as uncalibrated.
        dwell_time_ms: Hold time required for activation.
        announcer: Optional announcement sink.
    """

    def __init__(
        self,
        modality: Modality,
        environment: TargetEnvironment,
        scheduler: Scheduler,
        emit: Callable[[InputEvent], None],
        calibration: Optional["CalibrationEngine"] = None,
        dwell_time_ms: float = C.DWELL_TIME_MS,
        announcer: Optional[Announcer] = None,
    ) -> None:
        if dwell_time_ms <= 0:
            raise ValueError(f"dwell_time_ms must be positive, got {dwell_time_ms}")
        self._modality = modality
        self._env = environment
        self._scheduler = scheduler
        self._emit = emit
        self._calibration = calibration
        self._dwell_ms = float(dwell_time_ms)
        self._announcer = announcer

        self._fsm: StateMachine[DwellState] = StateMachine(
            f"dwell:{modality.value}",
            DwellState.IDLE,
            _DWELL_TRANSITIONS,
            on_transition=self._on_transition,
            clock=scheduler.now_ms,
        )
        self._timers = TimerGroup(scheduler)
        self._hovered: Optional[TargetRef] = None
        self._commit_started_ms: Optional[float] = None
        self._commit_length_ms: float = self._dwell_ms
        self._suspended = False
        self._recent: deque[tuple[float, float]] = deque(maxlen=C.CONFIDENCE_WINDOW)
        self._progress_listeners: list[Callable[[Optional[TargetRef], float], None]] = []

    # ──────────────────────────────────────────
    # Properties
    # ──────────────────────────────────────────

    @property
    def state(self) -> DwellState:
        return self._fsm.current_state

    @property
    def hovered_target(self) -> Optional[TargetRef]:
        return self._hovered

    @property
    def dwell_time_ms(self) -> float:
        return self._dwell_ms

    @property
    def machine(self) -> StateMachine[DwellState]:
        return self._fsm

    def progress(self) -> float:
        """Fraction of the dwell completed, in [0, 1]."""
        if self.state is not DwellState.COMMITTING or self._commit_started_ms is None:
            return 0.0
        if self._suspended:
            return 1.0
        elapsed = self._scheduler.now_ms() - self._commit_started_ms
        return max(0.0, min(1.0, elapsed / self._commit_length_ms))

    def on_progress(self, callback: Callable[[Optional[TargetRef], float], None]) -> None:
        """Register ``callback(target, progress)`` for UI feedback."""
        self._progress_listeners.append(callback)

    # ──────────────────────────────────────────
    # Input
    # ──────────────────────────────────────────

    def update(self, x: float, y: float) -> None:
        """
        Feed one conditioned pointer position.

        Args:
            x: Horizontal position in surface pixels.
            y: Vertical position in surface pixels.
        """
        self._recent.append((x, y))
        target = self._env.resolve_target_at(x, y)

        if target == self._hovered:
            if self.state is DwellState.COMMITTING:
                self._notify_progress()
            return

        self._leave(reason="target_changed")
        self._hovered = target
        if target is not None:
            self._enter(target)

    def refresh_targets(self) -> None:
        """
        Re-check eligibility after the environment changed.

        A suspended commit completes if its target is eligible again; a
        hovered target that is no longer eligible is left.
        """
        if self._hovered is None:
            return
        eligible = self._env.list_eligible_targets()
        if self._hovered not in eligible:
            if not self._suspended:
                self._leave(reason="target_ineligible")
                self._hovered = None
            return
        if self.state is DwellState.COMMITTING and self._suspended:
            _log.debug("dwell", "resume_suspended", {"target": self._hovered.id})
            self._suspended = False
            self._complete()

    def set_dwell_time(self, ms: float) -> None:
        """Change the hold time; applies from the next commit."""
        if ms <= 0:
            raise ValueError(f"dwell time must be positive, got {ms}")
        self._dwell_ms = float(ms)
        _log.info("dwell", "dwell_time_changed", {
            "modality": self._modality.value,
            "dwell_time_ms": ms,
        })

    def reset(self) -> None:
        """Cancel any pending dwell and return to IDLE."""
        self._timers.cancel_all()
        self._fsm.reset()
        self._hovered = None
        self._commit_started_ms = None
        self._suspended = False
        self._recent.clear()

    # ──────────────────────────────────────────
    # Internal transitions
    # ──────────────────────────────────────────

    def _enter(self, target: TargetRef) -> None:
        self._fsm.transition(DwellState.HOVERING, "target_entered")
        self._fsm.transition(DwellState.COMMITTING, "dwell_started")
        self._commit_started_ms = self._scheduler.now_ms()
        self._commit_length_ms = self._dwell_ms
        self._suspended = False
        self._timers.start("dwell", self._dwell_ms, self._on_elapsed)
        if self._announcer is not None and target.label:
            self._announcer.announce(
                f"Looking at {target.label}. Keep looking for "
                f"{self._dwell_ms / 1000:g} seconds to activate."
            )
        self._notify_progress()

    def _leave(self, reason: str) -> None:
        self._timers.cancel_all()
        was_committing = self.state is DwellState.COMMITTING
        if self.state is not DwellState.IDLE:
            self._fsm.transition(DwellState.IDLE, reason)
        self._commit_started_ms = None
        self._suspended = False
        if was_committing:
            self._notify_progress(0.0)

    def _on_elapsed(self) -> None:
        target = self._hovered
        if target is None or self.state is not DwellState.COMMITTING:
            return
        if target not in self._env.list_eligible_targets():
            self._suspended = True
            _log.info("dwell", "activation_suppressed", {
                "modality": self._modality.value,
                "target": target.id,
                "reason": "no_eligible_target",
            })
            return
        self._complete()

    def _complete(self) -> None:
        target = self._hovered
        if target is None:
            _log.debug("dwell", "complete_without_target", {"modality": self._modality.value})
            return
        now = self._scheduler.now_ms()
        confidence = gaze_confidence(list(self._recent))
        profile = self._calibration.profile(self._modality) if self._calibration else None
        calibrated = profile is not None and profile.is_calibrated
        accuracy = profile.accuracy if calibrated else 0.5

        if C.requires_calibration(self._modality) and not calibrated:
            event = InputEvent(
                kind=ActionKind.NAVIGATE,
                modality=self._modality,
                accuracy=accuracy,
                confidence=confidence * C.UNCALIBRATED_CONFIDENCE_FACTOR,
                response_time_ms=self._commit_length_ms,
                timestamp_ms=now,
                target=target,
                metadata={"reason": "uncalibrated"},
            )
            self._fsm.transition(DwellState.IDLE, "uncalibrated_navigate")
            self._commit_started_ms = None
            _log.info("dwell", "downgraded_to_navigate", {
                "modality": self._modality.value,
                "target": target.id,
            })
            self._emit(event)
            self._notify_progress(0.0)
            return

        self._fsm.transition(DwellState.ACTIVATED, "dwell_elapsed")
        event = InputEvent(
            kind=ActionKind.SELECT,
            modality=self._modality,
            accuracy=accuracy,
            confidence=confidence,
            response_time_ms=self._commit_length_ms,
            timestamp_ms=now,
            target=target,
        )
        self._commit_started_ms = None
        _log.info("dwell", "activated", {
            "modality": self._modality.value,
            "target": target.id,
            "confidence": round(confidence, 3),
        })
        self._env.activate(target)
        if self._announcer is not None:
            self._announcer.announce(f"Activated: {target}")
        self._emit(event)
        self._fsm.transition(DwellState.IDLE, "activation_done")
        self._notify_progress(1.0)

    def _on_transition(self, from_state: DwellState, to_state: DwellState, reason: str) -> None:
        _log.debug("dwell", "transition", {
            "modality": self._modality.value,
            "from": from_state.value,
            "to": to_state.value,
            "reason": reason,
        })

    def _notify_progress(self, value: Optional[float] = None) -> None:
        if not self._progress_listeners:
            return
        p = self.progress() if value is None else value
        for cb in list(self._progress_listeners):
            try:
                cb(self._hovered, p)
            except Exception as exc:  # noqa: BLE001
                _log.error("dwell", "progress_listener_error", {"error": str(exc)})
