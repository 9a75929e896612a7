"""
gazequest/modalities/gaze.py — Eye-tracking modality.

Raw (x, y) gaze estimates flow through the SignalConditioner. While a gaze
calibration is running the conditioned readings are only observed by the
CalibrationEngine; otherwise they drive the dwell machine.
"""

from __future__ import annotations

from typing import Optional

from gazequest.acquisition.dwell import DwellMachine
from gazequest.calibration.engine import CalibrationEngine
from gazequest.core.config import DwellConfig
from gazequest.core.constants import ActionKind, Modality, Reliability
from gazequest.core.interfaces import Announcer, SettingsStore, TargetEnvironment
from gazequest.core.logger import get_logger
from gazequest.core.models import ModalityCapabilities, RawSample
from gazequest.core.scheduler import Scheduler
from gazequest.input.conditioner import SignalConditioner
from gazequest.modalities.base import BaseModality, EmitFn

_log = get_logger()

DWELL_TIME_SETTING = "input.gaze.dwell_time_ms"


class GazeModality(BaseModality):
    """
    Gaze pointer with dwell activation.

    Args:
        environment: Hit-testing and activation collaborator.
        conditioner: Shared signal conditioner.
        calibration: Shared calibration engine.
        scheduler: Timer source.
        emit: Event sink.
        dwell_config: Default dwell time; a saved per-user value overrides it.
        settings: Optional settings store.
        announcer: Optional announcement sink.
    """

    modality = Modality.GAZE
    capabilities = ModalityCapabilities(
        actions=frozenset({ActionKind.SELECT, ActionKind.NAVIGATE}),
        reliability=Reliability.MEDIUM,
        requires_calibration=True,
    )
    activation_message = "Eye tracking activated."

    def __init__(
        self,
        environment: TargetEnvironment,
        conditioner: SignalConditioner,
        calibration: CalibrationEngine,
        scheduler: Scheduler,
        emit: EmitFn,
        dwell_config: Optional[DwellConfig] = None,
        settings: Optional[SettingsStore] = None,
        announcer: Optional[Announcer] = None,
        available: bool = True,
    ) -> None:
        super().__init__(emit, scheduler, announcer, available)
        self._conditioner = conditioner
        self._calibration = calibration
        self._settings = settings
        cfg = dwell_config or DwellConfig()
        saved = settings.get_setting(DWELL_TIME_SETTING) if settings is not None else None
        self.dwell = DwellMachine(
            Modality.GAZE,
            environment,
            scheduler,
            self.emit,
            calibration=calibration,
            dwell_time_ms=float(saved) if saved else cfg.dwell_time_ms,
            announcer=announcer,
        )

    def push_sample(self, sample: RawSample) -> None:
        """Feed one raw gaze estimate."""
        if not self.is_active:
            return
        signal = self._conditioner.condition(Modality.GAZE, sample)
        if signal is None or self._calibration.is_calibrating(Modality.GAZE):
            return
        x, y = signal.values
        self.dwell.update(x, y)

    def set_dwell_time(self, ms: float) -> None:
        """Change and persist the per-user dwell time."""
        self.dwell.set_dwell_time(ms)
        if self._settings is not None:
            self._settings.set_setting(DWELL_TIME_SETTING, float(ms))

    def set_viewport(self, width: float, height: float) -> None:
        """Resize the gaze surface; any existing calibration becomes invalid."""
        self.dwell.reset()
        self._calibration.set_viewport(width, height)

    def _on_activate(self) -> None:
        if not self._calibration.is_calibrated(Modality.GAZE):
            self._announce("Eye tracking is not calibrated. Calibration is recommended.")

    def _on_deactivate(self) -> None:
        self.dwell.reset()
        self._calibration.cancel_calibration(Modality.GAZE)
        self._conditioner.reset(Modality.GAZE)
