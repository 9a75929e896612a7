"""
input/simulator.py — Simulated gaze, tilt and breath sensors.

Drives a sample sink from the cooperative scheduler so demos and tests run
without hardware. Three modes are supported through :class:`SimulationMode`:

SCRIPTED
    Plays back a list of ``(values, hold_ms)`` steps, emitting one sample per
    tick. After the last step the final values are held until stopped.

RANDOM
    Picks random readings for the modality and holds each for a random
    duration (0.5 – 2.5 s). Seeded, so runs are reproducible.

INTERACTIVE
    Emits whatever :meth:`SimulatedSensor.hold` last set; used by the
    calibration follower and by tests.

Every tick adds optional Gaussian jitter (numpy) to the held values.
"""

from __future__ import annotations

import enum
import random
from typing import TYPE_CHECKING, Callable, Optional

import numpy as np

from gazequest.core.constants import C, Modality
from gazequest.core.logger import get_logger
from gazequest.core.models import RawSample
from gazequest.core.scheduler import Scheduler, TimerHandle

if TYPE_CHECKING:
    from gazequest.calibration.engine import CalibrationEngine

_log = get_logger()

#: ``(values, hold_duration_ms)``
ScriptStep = tuple[tuple[float, ...], float]

_REST_VALUES: dict[Modality, tuple[float, ...]] = {
    Modality.GAZE: (C.VIEWPORT_WIDTH / 2, C.VIEWPORT_HEIGHT / 2),
    Modality.ORIENTATION: (0.0, 0.0, 0.0),
    Modality.BREATH: (0.5,),
}


class SimulationMode(enum.Enum):
    """Operating mode for :class:`SimulatedSensor`."""

    SCRIPTED = "SCRIPTED"
    RANDOM = "RANDOM"
    INTERACTIVE = "INTERACTIVE"


class SimulatedSensor:
    """
    Scheduler-driven stand-in for a gaze tracker, tilt sensor or breath sensor.

    Args:
        modality: Gaze, orientation or breath.
        scheduler: Timer source for the sample ticks.
        sink: Receives every generated :class:`RawSample`.
        mode: Operating mode.
        script: Steps for ``SCRIPTED`` mode; defaults to the modality's demo
            script.
        rate_hz: Sample rate.
        jitter: Standard deviation of the noise added to every component.
        seed: Seed for ``RANDOM`` mode and the jitter generator.
    """

    # ── Pre-built demo scripts ─────────────────────────────────────────────
    #
    # The gaze script matches the 3-target board in main.py:
    #   Start (240,300)   Map (640,300)   Quit (1040,300)
    # Each hold ≥ DWELL_TIME_MS (2 000 ms) triggers one dwell activation.

    DEMO_GAZE_SCRIPT: list[ScriptStep] = [
        ((640.0, 600.0), 800.0),    # Rest below the board
        ((240.0, 300.0), 2500.0),   # Dwell on Start
        ((640.0, 600.0), 600.0),    # Look away, re-arm
        ((640.0, 300.0), 1200.0),   # Glance at Map, too short
        ((1040.0, 300.0), 2500.0),  # Dwell on Quit
    ]

    DEMO_TILT_SCRIPT: list[ScriptStep] = [
        ((0.0, 0.0, 0.0), 1000.0),    # Level
        ((0.0, 0.0, 20.0), 800.0),    # Tilt right
        ((0.0, 0.0, 0.0), 500.0),
        ((0.0, -25.0, 0.0), 800.0),   # Tilt away, up
        ((0.0, 0.0, 0.0), 500.0),
    ]

    DEMO_BREATH_SCRIPT: list[ScriptStep] = [
        ((0.5,), 2500.0),   # Resting (calibration baseline)
        ((0.9,), 1000.0),   # Exhale, select
        ((0.5,), 1000.0),   # Hold, pause
        ((0.1,), 1000.0),   # Inhale, move up
        ((0.5,), 1000.0),
    ]

    def __init__(
        self,
        modality: Modality,
        scheduler: Scheduler,
        sink: Callable[[RawSample], None],
        mode: SimulationMode = SimulationMode.SCRIPTED,
        script: Optional[list[ScriptStep]] = None,
        rate_hz: float = 30.0,
        jitter: float = 0.0,
        seed: Optional[int] = None,
    ) -> None:
        if modality not in _REST_VALUES:
            raise ValueError(f"no simulated sensor for {modality.value}")
        if rate_hz <= 0:
            raise ValueError(f"rate_hz must be positive, got {rate_hz}")
        self._modality = modality
        self._scheduler = scheduler
        self._sink = sink
        self._mode = mode
        self._script = list(script) if script is not None else self._default_script(modality)
        self._interval_ms = 1000.0 / rate_hz
        self._jitter = float(jitter)
        self._random = random.Random(seed)
        self._rng = np.random.default_rng(seed)

        self._running = False
        self._timer: Optional[TimerHandle] = None
        self._values: tuple[float, ...] = _REST_VALUES[modality]
        self._step = 0
        self._step_ends_ms = 0.0
        self.samples_emitted = 0

        _log.info("simulator", "init", {
            "modality": modality.value,
            "mode": mode.value,
            "rate_hz": rate_hz,
            "steps": len(self._script),
        })

    # ── Lifecycle ──────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    @property
    def current_values(self) -> tuple[float, ...]:
        return self._values

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._step = 0
        now = self._scheduler.now_ms()
        if self._mode is SimulationMode.SCRIPTED and self._script:
            self._values, hold = self._script[0]
            self._step_ends_ms = now + hold
        elif self._mode is SimulationMode.RANDOM:
            self._pick_random(now)
        self._tick()
        _log.info("simulator", "started", {"modality": self._modality.value})

    def stop(self) -> None:
        """Stop emitting. Safe to call multiple times."""
        self._running = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        _log.info("simulator", "stopped", {
            "modality": self._modality.value,
            "samples": self.samples_emitted,
        })

    def hold(self, values: tuple[float, ...]) -> None:
        """Set the values emitted from the next tick on."""
        self._values = tuple(float(v) for v in values)

    # ── Private ────────────────────────────────────────────────────────────

    @staticmethod
    def _default_script(modality: Modality) -> list[ScriptStep]:
        return {
            Modality.GAZE: SimulatedSensor.DEMO_GAZE_SCRIPT,
            Modality.ORIENTATION: SimulatedSensor.DEMO_TILT_SCRIPT,
            Modality.BREATH: SimulatedSensor.DEMO_BREATH_SCRIPT,
        }[modality]

    def _advance_script(self, now: float) -> None:
        while now >= self._step_ends_ms and self._step + 1 < len(self._script):
            self._step += 1
            self._values, hold = self._script[self._step]
            self._step_ends_ms += hold
            _log.debug("simulator", "scripted_step", {
                "modality": self._modality.value,
                "step": self._step,
                "values": self._values,
            })

    def _pick_random(self, now: float) -> None:
        r = self._random
        if self._modality is Modality.GAZE:
            self._values = (r.uniform(0, C.VIEWPORT_WIDTH), r.uniform(0, C.VIEWPORT_HEIGHT))
        elif self._modality is Modality.ORIENTATION:
            self._values = (0.0, r.uniform(-40, 40), r.uniform(-40, 40))
        else:
            self._values = (r.uniform(0.0, 1.0),)
        self._step_ends_ms = now + r.uniform(500.0, 2500.0)

    def _tick(self) -> None:
        if not self._running:
            return
        now = self._scheduler.now_ms()
        if self._mode is SimulationMode.SCRIPTED:
            self._advance_script(now)
        elif self._mode is SimulationMode.RANDOM and now >= self._step_ends_ms:
            self._pick_random(now)

        values = np.asarray(self._values, dtype=float)
        if self._jitter > 0:
            values = values + self._rng.normal(0.0, self._jitter, size=values.shape)
        self.samples_emitted += 1
        self._sink(RawSample(
            modality=self._modality,
            values=tuple(float(v) for v in values),
            timestamp_ms=now,
        ))
        self._timer = self._scheduler.call_later(self._interval_ms, self._tick)


def follow_calibration(sensor: SimulatedSensor, engine: "CalibrationEngine") -> None:
    """
    Point a simulated gaze sensor at each calibration target as it appears.

    Single-point protocols are left alone; the sensor keeps its rest values.
    """

    def _on_target(modality: Modality, index: int, point: Optional[tuple[float, float]]) -> None:
        if point is not None and modality is Modality.GAZE:
            sensor.hold(point)

    engine.on_target(_on_target)
