"""
gazequest/modalities/breath.py — Breath (sip-and-puff / microphone level) modality.

The conditioned level is shifted by the calibrated resting baseline so that
rest sits at 0.5, then classified:

    exhale   level > exhale_threshold        → select (navigate if uncalibrated)
    inhale   level < inhale_threshold        → move up
    hold     |level − 0.5| < hold_tolerance  → command "pause"
    idle     anything else                   → nothing

An event is emitted only when the classified state changes.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from gazequest.calibration.engine import CalibrationEngine
from gazequest.core.config import BreathConfig
from gazequest.core.constants import ActionKind, C, Direction, Modality, Reliability
from gazequest.core.interfaces import Announcer
from gazequest.core.logger import get_logger
from gazequest.core.models import InputEvent, ModalityCapabilities, RawSample
from gazequest.core.scheduler import Scheduler
from gazequest.input.conditioner import SignalConditioner
from gazequest.modalities.base import BaseModality, EmitFn

_log = get_logger()


class BreathState(Enum):
    IDLE = "idle"
    EXHALE = "exhale"
    INHALE = "inhale"
    HOLD = "hold"


def classify_breath(level: float, cfg: BreathConfig) -> BreathState:
    """Map a baseline-relative level in [0, 1] to a breath state."""
    if level > cfg.exhale_threshold:
        return BreathState.EXHALE
    if level < cfg.inhale_threshold:
        return BreathState.INHALE
    if abs(level - 0.5) < cfg.hold_tolerance:
        return BreathState.HOLD
    return BreathState.IDLE


class BreathModality(BaseModality):
    """Breath-driven select / up / pause."""

    modality = Modality.BREATH
    capabilities = ModalityCapabilities(
        actions=frozenset({ActionKind.SELECT, ActionKind.MOVE, ActionKind.COMMAND, ActionKind.NAVIGATE}),
        reliability=Reliability.LOW,
        requires_calibration=True,
    )
    activation_message = "Breath control activated. Exhale to select, inhale to move up."

    def __init__(
        self,
        conditioner: SignalConditioner,
        calibration: CalibrationEngine,
        scheduler: Scheduler,
        emit: EmitFn,
        config: Optional[BreathConfig] = None,
        announcer: Optional[Announcer] = None,
        available: bool = True,
    ) -> None:
        super().__init__(emit, scheduler, announcer, available)
        self._conditioner = conditioner
        self._calibration = calibration
        self._cfg = config or BreathConfig()
        self._state = BreathState.IDLE
        self._state_since_ms = scheduler.now_ms()

    @property
    def state(self) -> BreathState:
        return self._state

    def relative_level(self, level: float) -> float:
        """Shift *level* so the calibrated resting level maps to 0.5."""
        profile = self._calibration.profile(Modality.BREATH)
        if not profile.is_calibrated or not profile.baseline:
            return level
        return max(0.0, min(1.0, 0.5 + level - profile.baseline[0]))

    def push_sample(self, sample: RawSample) -> None:
        """Feed one raw breath level."""
        if not self.is_active:
            return
        signal = self._conditioner.condition(Modality.BREATH, sample)
        if signal is None or self._calibration.is_calibrating(Modality.BREATH):
            return

        level = self.relative_level(signal.values[0])
        state = classify_breath(level, self._cfg)
        if state is self._state:
            return

        now = self.now_ms()
        held_ms = now - self._state_since_ms
        previous, self._state, self._state_since_ms = self._state, state, now
        _log.debug("breath", "state_changed", {
            "from": previous.value,
            "to": state.value,
            "level": round(level, 3),
        })

        event = self._event_for(state, level, held_ms, now)
        if event is not None:
            self.emit(event)

    def _event_for(self, state: BreathState, level: float, held_ms: float, now: float) -> Optional[InputEvent]:
        profile = self._calibration.profile(Modality.BREATH)
        calibrated = profile.is_calibrated
        accuracy = profile.accuracy if calibrated else 0.5
        confidence = 1.0 if calibrated else C.UNCALIBRATED_CONFIDENCE_FACTOR
        common = dict(
            modality=Modality.BREATH,
            accuracy=accuracy,
            confidence=confidence,
            response_time_ms=held_ms,
            timestamp_ms=now,
        )

        if state is BreathState.EXHALE:
            if calibrated:
                return InputEvent(kind=ActionKind.SELECT, intensity=level, **common)
            return InputEvent(
                kind=ActionKind.NAVIGATE,
                intensity=level,
                metadata={"reason": "uncalibrated"},
                **common,
            )
        if state is BreathState.INHALE:
            return InputEvent(
                kind=ActionKind.MOVE,
                direction=Direction.UP,
                intensity=1.0 - level,
                **common,
            )
        if state is BreathState.HOLD:
            return InputEvent(kind=ActionKind.COMMAND, command="pause", **common)
        return None

    def _on_deactivate(self) -> None:
        self._state = BreathState.IDLE
        self._calibration.cancel_calibration(Modality.BREATH)
        self._conditioner.reset(Modality.BREATH)
