"""
gazequest/modalities/keyboard.py — Keyboard modality.

Default bindings (DOM ``KeyboardEvent.code`` names)::

    Space, Enter            select
    Arrow keys              move
    Escape                  cancel
    Tab                     navigate (Shift+Tab backwards)
    Digit1 / Digit2 / Digit3  command hint / pause / menu

A key that is already held ignores further key_down calls, so OS key repeat
never double-fires. Move keys repeat on their own through the scheduler
after ``repeat_delay_ms``, every ``repeat_interval_ms``, until key_up.
"""

from __future__ import annotations

from typing import NamedTuple, Optional

from gazequest.core.config import KeyboardConfig
from gazequest.core.constants import ActionKind, Direction, Modality, Reliability
from gazequest.core.interfaces import Announcer
from gazequest.core.logger import get_logger
from gazequest.core.models import InputEvent, ModalityCapabilities
from gazequest.core.scheduler import Scheduler
from gazequest.modalities.base import BaseModality, EmitFn

_log = get_logger()


class KeyBinding(NamedTuple):
    kind: ActionKind
    direction: Optional[Direction] = None
    command: Optional[str] = None


DEFAULT_BINDINGS: dict[str, KeyBinding] = {
    "Space": KeyBinding(ActionKind.SELECT),
    "Enter": KeyBinding(ActionKind.SELECT),
    "ArrowUp": KeyBinding(ActionKind.MOVE, Direction.UP),
    "ArrowDown": KeyBinding(ActionKind.MOVE, Direction.DOWN),
    "ArrowLeft": KeyBinding(ActionKind.MOVE, Direction.LEFT),
    "ArrowRight": KeyBinding(ActionKind.MOVE, Direction.RIGHT),
    "Escape": KeyBinding(ActionKind.CANCEL),
    "Tab": KeyBinding(ActionKind.NAVIGATE),
    "Digit1": KeyBinding(ActionKind.COMMAND, command="hint"),
    "Digit2": KeyBinding(ActionKind.COMMAND, command="pause"),
    "Digit3": KeyBinding(ActionKind.COMMAND, command="menu"),
}


class KeyboardModality(BaseModality):
    """Discrete keyboard commands with move-key auto-repeat."""

    modality = Modality.KEYBOARD
    capabilities = ModalityCapabilities(
        actions=frozenset(ActionKind),
        reliability=Reliability.HIGH,
        requires_calibration=False,
    )

    def __init__(
        self,
        scheduler: Scheduler,
        emit: EmitFn,
        config: Optional[KeyboardConfig] = None,
        bindings: Optional[dict[str, KeyBinding]] = None,
        announcer: Optional[Announcer] = None,
        available: bool = True,
    ) -> None:
        super().__init__(emit, scheduler, announcer, available)
        self._cfg = config or KeyboardConfig()
        self._bindings = dict(DEFAULT_BINDINGS if bindings is None else bindings)
        self._held: set[str] = set()
        self._last_key_ms: Optional[float] = None

    @property
    def bindings(self) -> dict[str, KeyBinding]:
        return dict(self._bindings)

    def bind(self, code: str, binding: KeyBinding) -> None:
        self._bindings[code] = binding

    def held_keys(self) -> set[str]:
        return set(self._held)

    def key_down(self, code: str, shift: bool = False) -> bool:
        """
        Handle a key press.

        Returns:
            True if the key is bound and produced an event.
        """
        if not self.is_active:
            return False
        binding = self._bindings.get(code)
        if binding is None:
            return False
        if code in self._held:
            return False
        self._held.add(code)

        now = self.now_ms()
        response_ms = 0.0 if self._last_key_ms is None else now - self._last_key_ms
        self._last_key_ms = now

        metadata = {"key": code}
        if binding.kind is ActionKind.NAVIGATE:
            metadata["reverse"] = shift
        self._emit_binding(binding, response_ms, metadata)

        if binding.kind is ActionKind.MOVE:
            self.timers.start(
                f"repeat:{code}", self._cfg.repeat_delay_ms, lambda: self._repeat(code)
            )
        return True

    def key_up(self, code: str) -> None:
        self._held.discard(code)
        self.timers.cancel(f"repeat:{code}")

    def _repeat(self, code: str) -> None:
        if code not in self._held or not self.is_active:
            return
        binding = self._bindings.get(code)
        if binding is None:
            return
        self._emit_binding(binding, self._cfg.repeat_interval_ms, {"key": code, "repeat": True})
        self.timers.start(
            f"repeat:{code}", self._cfg.repeat_interval_ms, lambda: self._repeat(code)
        )

    def _emit_binding(self, binding: KeyBinding, response_ms: float, metadata: dict) -> None:
        self.emit(InputEvent(
            kind=binding.kind,
            modality=Modality.KEYBOARD,
            accuracy=1.0,
            confidence=1.0,
            response_time_ms=response_ms,
            timestamp_ms=self.now_ms(),
            direction=binding.direction,
            command=binding.command,
            metadata=metadata,
        ))

    def _on_deactivate(self) -> None:
        self._held.clear()
