"""
gazequest/modalities/orientation.py — Device tilt modality.

Readings are (alpha, beta, gamma) in degrees. Beta (front/back) and gamma
(left/right) are taken relative to the calibrated baseline; the dominant
axis outside the dead zone gives the move direction and
``min(|delta| / max_tilt, 1)`` gives the intensity.

A move is emitted whenever the resolved direction changes. Returning to the
dead zone emits nothing but re-arms the next move.
"""

from __future__ import annotations

from typing import NamedTuple, Optional

from gazequest.calibration.engine import CalibrationEngine
from gazequest.core.config import OrientationConfig
from gazequest.core.constants import ActionKind, C, Direction, Modality, Reliability
from gazequest.core.interfaces import Announcer
from gazequest.core.logger import get_logger
from gazequest.core.models import InputEvent, ModalityCapabilities, RawSample
from gazequest.core.scheduler import Scheduler
from gazequest.input.conditioner import SignalConditioner
from gazequest.modalities.base import BaseModality, EmitFn

_log = get_logger()


class TiltPreset(NamedTuple):
    dead_zone_deg: float
    max_tilt_deg: float


SENSITIVITY_PRESETS: dict[str, TiltPreset] = {
    "low": TiltPreset(10.0, 60.0),
    "medium": TiltPreset(5.0, 45.0),
    "high": TiltPreset(2.0, 30.0),
}


def resolve_tilt(
    delta_beta: float, delta_gamma: float, preset: TiltPreset
) -> Optional[tuple[Direction, float]]:
    """
    Pick the dominant tilt axis.

    Returns:
        ``(direction, intensity)``, or None inside the dead zone.
    """
    if abs(delta_gamma) < preset.dead_zone_deg and abs(delta_beta) < preset.dead_zone_deg:
        return None
    if abs(delta_gamma) > abs(delta_beta):
        direction = Direction.RIGHT if delta_gamma > 0 else Direction.LEFT
        magnitude = abs(delta_gamma)
    else:
        direction = Direction.DOWN if delta_beta > 0 else Direction.UP
        magnitude = abs(delta_beta)
    return direction, min(magnitude / preset.max_tilt_deg, 1.0)


class OrientationModality(BaseModality):
    """Tilt-to-move input."""

    modality = Modality.ORIENTATION
    capabilities = ModalityCapabilities(
        actions=frozenset({ActionKind.MOVE}),
        reliability=Reliability.MEDIUM,
        requires_calibration=True,
    )
    activation_message = "Tilt control activated. Tilt your device to move."

    def __init__(
        self,
        conditioner: SignalConditioner,
        calibration: CalibrationEngine,
        scheduler: Scheduler,
        emit: EmitFn,
        config: Optional[OrientationConfig] = None,
        announcer: Optional[Announcer] = None,
        available: bool = True,
    ) -> None:
        super().__init__(emit, scheduler, announcer, available)
        self._conditioner = conditioner
        self._calibration = calibration
        self._preset = SENSITIVITY_PRESETS[(config or OrientationConfig()).sensitivity]
        self._last_direction: Optional[Direction] = None
        self._last_move_ms = scheduler.now_ms()

    @property
    def preset(self) -> TiltPreset:
        return self._preset

    def set_sensitivity(self, name: str) -> None:
        """Switch to the ``low``, ``medium`` or ``high`` preset."""
        if name not in SENSITIVITY_PRESETS:
            raise ValueError(f"sensitivity must be one of {sorted(SENSITIVITY_PRESETS)}, got {name!r}")
        self._preset = SENSITIVITY_PRESETS[name]
        _log.info("orientation", "sensitivity_changed", {"sensitivity": name})

    def push_sample(self, sample: RawSample) -> None:
        """Feed one raw (alpha, beta, gamma) reading."""
        if not self.is_active:
            return
        signal = self._conditioner.condition(Modality.ORIENTATION, sample)
        if signal is None or self._calibration.is_calibrating(Modality.ORIENTATION):
            return

        profile = self._calibration.profile(Modality.ORIENTATION)
        calibrated = profile.is_calibrated and profile.baseline is not None
        baseline = profile.baseline if calibrated else (0.0, 0.0, 0.0)
        _, beta, gamma = signal.values
        resolved = resolve_tilt(beta - baseline[1], gamma - baseline[2], self._preset)

        if resolved is None:
            self._last_direction = None
            return
        direction, intensity = resolved
        if direction is self._last_direction:
            return

        now = self.now_ms()
        self._last_direction = direction
        event = InputEvent(
            kind=ActionKind.MOVE,
            modality=Modality.ORIENTATION,
            accuracy=profile.accuracy if calibrated else 0.5,
            confidence=1.0 if calibrated else C.UNCALIBRATED_CONFIDENCE_FACTOR,
            response_time_ms=now - self._last_move_ms,
            timestamp_ms=now,
            direction=direction,
            intensity=intensity,
        )
        self._last_move_ms = now
        self.emit(event)

    def _on_deactivate(self) -> None:
        self._last_direction = None
        self._calibration.cancel_calibration(Modality.ORIENTATION)
        self._conditioner.reset(Modality.ORIENTATION)
