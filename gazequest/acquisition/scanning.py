"""
gazequest/acquisition/scanning.py — Single-switch scanning acquisition.

State machine::

    STOPPED ─► SCANNING ─────────────────────► STOPPED
    STOPPED ─► GROUP_SCANNING ─► ITEM_SCANNING ─► STOPPED

A fixed-interval timer moves the highlight across the eligible targets.
One press starts scanning; the next press activates the highlighted target.
Sets larger than the group threshold are first scanned as groups of ⌈√N⌉;
a press on a group narrows scanning to its members. At either end of the
list the highlight either bounces back (direction reversal) or wraps.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Callable, Optional, Sequence, Union

from gazequest.core.config import ScanningConfig
from gazequest.core.constants import ActionKind, C, Modality
from gazequest.core.fsm import StateMachine
from gazequest.core.interfaces import Announcer, SettingsStore, TargetEnvironment
from gazequest.core.logger import get_logger
from gazequest.core.models import InputEvent, TargetRef
from gazequest.core.scheduler import Scheduler, TimerGroup

_log = get_logger()

ScanItem = Union[TargetRef, tuple[TargetRef, ...]]

SCAN_SPEED_SETTING = "input.switch.scan_speed_ms"


class ScanState(Enum):
    STOPPED = "STOPPED"
    SCANNING = "SCANNING"
    GROUP_SCANNING = "GROUP_SCANNING"
    ITEM_SCANNING = "ITEM_SCANNING"


_SCAN_TRANSITIONS: dict[ScanState, tuple[ScanState, ...]] = {
    ScanState.STOPPED: (ScanState.SCANNING, ScanState.GROUP_SCANNING),
    ScanState.SCANNING: (ScanState.STOPPED,),
    ScanState.GROUP_SCANNING: (ScanState.ITEM_SCANNING, ScanState.STOPPED),
    ScanState.ITEM_SCANNING: (ScanState.STOPPED,),
}


def make_groups(items: Sequence[TargetRef]) -> list[tuple[TargetRef, ...]]:
    """Split *items* into consecutive groups of ⌈√N⌉."""
    if not items:
        return []
    size = math.ceil(math.sqrt(len(items)))
    return [tuple(items[i:i + size]) for i in range(0, len(items), size)]


def next_index(index: int, direction: int, length: int, reverse_at_ends: bool) -> tuple[int, int]:
    """
    Step the highlight once.

    Returns:
        ``(new_index, new_direction)``.
    """
    if length <= 1:
        return 0, direction
    candidate = index + direction
    if 0 <= candidate < length:
        return candidate, direction
    if reverse_at_ends:
        direction = -direction
        return index + direction, direction
    return candidate % length, direction


def clamp_interval(ms: float) -> float:
    return max(C.SCAN_INTERVAL_MIN_MS, min(C.SCAN_INTERVAL_MAX_MS, float(ms)))


class ScanningMachine:
    """
    Scanning acquisition for switch-like modalities.

    Args:
        modality: Producing modality (switch, or keyboard used as a switch).
        environment: Source of eligible targets and activation.
        scheduler: Timer source.
        emit: Sink for produced events.
        config: Interval, rescan and grouping behaviour.
        settings: Optional store; a saved scan speed overrides the config.
        announcer: Optional announcement sink.
    """

    def __init__(
        self,
        modality: Modality,
        environment: TargetEnvironment,
        scheduler: Scheduler,
        emit: Callable[[InputEvent], None],
        config: Optional[ScanningConfig] = None,
        settings: Optional[SettingsStore] = None,
        announcer: Optional[Announcer] = None,
    ) -> None:
        self._modality = modality
        self._env = environment
        self._scheduler = scheduler
        self._emit = emit
        self._cfg = config or ScanningConfig()
        self._settings = settings
        self._announcer = announcer

        saved = settings.get_setting(SCAN_SPEED_SETTING) if settings is not None else None
        self._interval_ms = clamp_interval(saved if saved is not None else self._cfg.interval_ms)

        self._fsm: StateMachine[ScanState] = StateMachine(
            f"scan:{modality.value}",
            ScanState.STOPPED,
            _SCAN_TRANSITIONS,
            on_transition=self._on_transition,
            clock=scheduler.now_ms,
        )
        self._timers = TimerGroup(scheduler)
        self._items: list[ScanItem] = []
        self._group_members: tuple[TargetRef, ...] = ()
        self._index: Optional[int] = None
        self._direction = 1
        self._highlight_since_ms = 0.0
        self._highlight_listeners: list[Callable[[Optional[int], Optional[ScanItem]], None]] = []

    # ──────────────────────────────────────────
    # Properties
    # ──────────────────────────────────────────

    @property
    def state(self) -> ScanState:
        return self._fsm.current_state

    @property
    def machine(self) -> StateMachine[ScanState]:
        return self._fsm

    @property
    def interval_ms(self) -> float:
        return self._interval_ms

    @property
    def direction(self) -> int:
        return self._direction

    @property
    def highlight_index(self) -> Optional[int]:
        return self._index

    @property
    def highlighted(self) -> Optional[ScanItem]:
        if self._index is None or not self._items:
            return None
        return self._items[self._index]

    @property
    def items(self) -> list[ScanItem]:
        return list(self._items)

    def on_highlight(self, callback: Callable[[Optional[int], Optional[ScanItem]], None]) -> None:
        """Register ``callback(index, item)``; item is a target or a group tuple."""
        self._highlight_listeners.append(callback)

    # ──────────────────────────────────────────
    # Input
    # ──────────────────────────────────────────

    def press(self) -> None:
        """Handle one switch activation according to the current state."""
        state = self.state
        if state is ScanState.STOPPED:
            self._start()
        elif state is ScanState.GROUP_SCANNING:
            self._enter_group()
        else:
            self._activate_highlighted()

    def reverse(self) -> None:
        """Flip the scan direction (long press)."""
        self._direction = -self._direction
        _log.info("scanning", "direction_reversed", {
            "modality": self._modality.value,
            "direction": self._direction,
        })
        self._announce("Scan direction reversed.")

    def cancel(self) -> None:
        """Stop from any state, clearing the highlight and every timer."""
        self._timers.cancel_all()
        self._fsm.reset("cancel")
        self._clear()
        _log.info("scanning", "cancelled", {"modality": self._modality.value})

    def refresh_targets(self) -> None:
        """Re-read eligible targets; an empty set holds and suppresses activation."""
        state = self.state
        if state is ScanState.STOPPED:
            return
        previous = self.highlighted
        eligible = list(self._env.list_eligible_targets())

        if state is ScanState.SCANNING:
            self._items = list(eligible)
        elif state is ScanState.GROUP_SCANNING:
            self._items = list(make_groups(eligible))
        else:
            self._items = [t for t in self._group_members if t in eligible]

        if not self._items:
            self._index = None
        elif previous is not None and previous in self._items:
            self._index = self._items.index(previous)
        else:
            self._index = min(self._index or 0, len(self._items) - 1)

        if self.highlighted != previous:
            self._on_highlight_changed()

    def adjust_scan_speed(self, delta_ms: float) -> float:
        """
        Change the scan interval by *delta_ms* (clamped) and persist it.

        Returns:
            The new interval in milliseconds.
        """
        self._interval_ms = clamp_interval(self._interval_ms + delta_ms)
        if self._settings is not None:
            self._settings.set_setting(SCAN_SPEED_SETTING, self._interval_ms)
        if self.state is not ScanState.STOPPED:
            self._schedule_advance()
        _log.info("scanning", "speed_adjusted", {
            "modality": self._modality.value,
            "interval_ms": self._interval_ms,
        })
        self._announce(f"Scan speed adjusted to {self._interval_ms:.0f} milliseconds")
        return self._interval_ms

    # ──────────────────────────────────────────
    # Internal transitions
    # ──────────────────────────────────────────

    def _start(self) -> None:
        self._timers.cancel("rescan")
        eligible = list(self._env.list_eligible_targets())
        self._direction = 1
        if len(eligible) > self._cfg.group_threshold:
            self._items = list(make_groups(eligible))
            self._fsm.transition(ScanState.GROUP_SCANNING, "press")
        else:
            self._items = list(eligible)
            self._fsm.transition(ScanState.SCANNING, "press")
        self._index = 0 if self._items else None

        _log.info("scanning", "started", {
            "modality": self._modality.value,
            "state": self.state.value,
            "candidates": len(eligible),
        })
        if not eligible:
            _log.info("scanning", "no_eligible_targets", {"modality": self._modality.value})
        self._announce("Scanning started. Press your switch when the item you want is highlighted.")
        self._on_highlight_changed()
        self._schedule_advance()

    def _enter_group(self) -> None:
        group = self.highlighted
        if not isinstance(group, tuple) or not group:
            _log.debug("scanning", "press_suppressed", {"reason": "no_group"})
            return
        self._fsm.transition(ScanState.ITEM_SCANNING, "group_selected")
        self._group_members = group
        self._items = list(group)
        self._index = 0
        self._direction = 1
        self._announce(f"Group selected. Scanning {len(group)} items.")
        self._on_highlight_changed()
        self._schedule_advance()

    def _activate_highlighted(self) -> None:
        target = self.highlighted
        if not isinstance(target, TargetRef):
            _log.debug("scanning", "press_suppressed", {"reason": "no_highlight"})
            return
        if target not in self._env.list_eligible_targets():
            _log.info("scanning", "activation_suppressed", {
                "modality": self._modality.value,
                "target": target.id,
                "reason": "not_eligible",
            })
            return

        now = self._scheduler.now_ms()
        event = InputEvent(
            kind=ActionKind.SELECT,
            modality=self._modality,
            accuracy=1.0,
            confidence=1.0,
            response_time_ms=now - self._highlight_since_ms,
            timestamp_ms=now,
            target=target,
            metadata={"scan_index": self._index},
        )
        self._timers.cancel("advance")
        self._fsm.transition(ScanState.STOPPED, "activated")
        self._clear()
        _log.info("scanning", "activated", {
            "modality": self._modality.value,
            "target": target.id,
            "response_time_ms": round(event.response_time_ms, 1),
        })
        self._env.activate(target)
        self._announce(f"Selected: {target}")
        self._emit(event)

        if self._cfg.auto_rescan:
            self._timers.start("rescan", self._cfg.rescan_delay_ms, self._rescan)

    def _rescan(self) -> None:
        if self.state is ScanState.STOPPED:
            self._start()

    def _schedule_advance(self) -> None:
        self._timers.start("advance", self._interval_ms, self._tick)

    def _tick(self) -> None:
        if self.state is ScanState.STOPPED:
            return
        if self._items and self._index is not None:
            self._index, self._direction = next_index(
                self._index, self._direction, len(self._items), self._cfg.direction_reversal
            )
            self._on_highlight_changed()
        self._schedule_advance()

    def _clear(self) -> None:
        self._items = []
        self._group_members = ()
        self._index = None
        self._direction = 1
        self._notify_highlight()

    def _on_highlight_changed(self) -> None:
        self._highlight_since_ms = self._scheduler.now_ms()
        item = self.highlighted
        if isinstance(item, tuple):
            self._announce(
                f"Group {self._index + 1} of {len(self._items)}. Contains {len(item)} items."
            )
        elif item is not None:
            self._announce(str(item))
        self._notify_highlight()

    def _on_transition(self, from_state: ScanState, to_state: ScanState, reason: str) -> None:
        _log.debug("scanning", "transition", {
            "modality": self._modality.value,
            "from": from_state.value,
            "to": to_state.value,
            "reason": reason,
        })

    def _notify_highlight(self) -> None:
        for cb in list(self._highlight_listeners):
            try:
                cb(self._index, self.highlighted)
            except Exception as exc:  # noqa: BLE001
                _log.error("scanning", "highlight_listener_error", {"error": str(exc)})

    def _announce(self, message: str) -> None:
        if self._announcer is not None:
            self._announcer.announce(message)
