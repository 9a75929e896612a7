"""
gazequest/modalities/switch.py — Single-switch modality over the scanning machine.

A press is forwarded to :meth:`ScanningMachine.press` immediately. Releasing
a switch that was held for at least the long-press time reverses the scan
direction.
"""

from __future__ import annotations

from typing import Optional

from gazequest.acquisition.scanning import ScanningMachine
from gazequest.core.config import ScanningConfig
from gazequest.core.constants import ActionKind, Modality, Reliability
from gazequest.core.interfaces import Announcer, SettingsStore, TargetEnvironment
from gazequest.core.logger import get_logger
from gazequest.core.models import ModalityCapabilities
from gazequest.core.scheduler import Scheduler
from gazequest.modalities.base import BaseModality, EmitFn

_log = get_logger()


class SwitchModality(BaseModality):
    """One physical (or on-screen) switch driving scan-and-select."""

    modality = Modality.SWITCH
    capabilities = ModalityCapabilities(
        actions=frozenset({ActionKind.SELECT}),
        reliability=Reliability.HIGH,
        requires_calibration=False,
        requires_scanning=True,
    )
    activation_message = "Switch control activated. Press your switch to start scanning."

    def __init__(
        self,
        environment: TargetEnvironment,
        scheduler: Scheduler,
        emit: EmitFn,
        config: Optional[ScanningConfig] = None,
        settings: Optional[SettingsStore] = None,
        announcer: Optional[Announcer] = None,
        available: bool = True,
    ) -> None:
        super().__init__(emit, scheduler, announcer, available)
        self._cfg = config or ScanningConfig()
        self.scanning = ScanningMachine(
            Modality.SWITCH,
            environment,
            scheduler,
            self.emit,
            config=self._cfg,
            settings=settings,
            announcer=announcer,
        )
        self._pressed_at_ms: Optional[float] = None

    @property
    def is_pressed(self) -> bool:
        return self._pressed_at_ms is not None

    def press(self) -> None:
        if not self.is_active:
            return
        if self._pressed_at_ms is not None:
            return
        self._pressed_at_ms = self.now_ms()
        self.scanning.press()

    def release(self) -> None:
        if self._pressed_at_ms is None:
            return
        held_ms = self.now_ms() - self._pressed_at_ms
        self._pressed_at_ms = None
        if not self.is_active:
            return
        if held_ms >= self._cfg.long_press_ms:
            _log.debug("switch", "long_press", {"held_ms": held_ms})
            self.scanning.reverse()

    def _on_deactivate(self) -> None:
        self._pressed_at_ms = None
        self.scanning.cancel()
