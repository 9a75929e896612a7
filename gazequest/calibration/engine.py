"""
gazequest/calibration/engine.py — Calibration protocols and profiles.

Two protocols run on the cooperative scheduler:

Multi-point (gaze)
    N reference targets on a 3×3 grid inset by a margin. For each target the
    conditioner buffer is cleared, listeners are told where the target is,
    and the latest conditioned reading is sampled 8 times at 300 ms spacing.
    The protocol advances after a fixed 3.5 s window regardless of how many
    samples arrived, waits a fixed gap, and moves on.

Single-point (breath, orientation)
    The latest conditioned reading is sampled during a settle window; the
    reading at the end of the window becomes the zero reference.

Accuracy is ``max(0.1, min(1.0, 1 − avg_error / max_error))`` where
``max_error`` is a quarter of the viewport diagonal for gaze and a fixed
normaliser otherwise. A protocol that produced no valid samples still
completes, with accuracy 0.5.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from gazequest.core.config import CalibrationConfig, GazeConfig
from gazequest.core.constants import C, Modality
from gazequest.core.errors import (
    CalibrationNotSupportedError,
    ConcurrentCalibrationError,
    GazeQuestError,
)
from gazequest.core.interfaces import Announcer, SettingsStore
from gazequest.core.logger import get_logger
from gazequest.core.models import CalibrationPoint, CalibrationProfile
from gazequest.core.scheduler import Scheduler, TimerGroup
from gazequest.core.session import SessionContext
from gazequest.input.conditioner import SignalConditioner

_log = get_logger()

TargetListener = Callable[[Modality, int, Optional[tuple[float, float]]], None]
CompleteListener = Callable[[CalibrationProfile], None]
RecalibrationListener = Callable[[Modality, str], None]

_NORMALIZERS: dict[Modality, float] = {
    Modality.ORIENTATION: C.ORIENTATION_NORMALIZER_DEG,
    Modality.BREATH: C.BREATH_NORMALIZER,
}


def calibration_grid(
    width: float, height: float, margin: float, points: int = 9
) -> list[tuple[float, float]]:
    """
    Reference targets in reading order.

    Nine points cover corners, edge midpoints and centre; five points use
    the corners plus centre.
    """
    xs = (margin, width / 2.0, width - margin)
    ys = (margin, height / 2.0, height - margin)
    grid = [(x, y) for y in ys for x in xs]
    if points == 5:
        return [grid[0], grid[2], grid[4], grid[6], grid[8]]
    return grid


def accuracy_from_error(avg_error: float, max_error: float) -> float:
    """Map an average error onto [0.1, 1.0]."""
    if max_error <= 0:
        return C.CALIBRATION_MIN_ACCURACY
    return max(C.CALIBRATION_MIN_ACCURACY, min(1.0, 1.0 - avg_error / max_error))


@dataclass
class CalibrationSession:
    """A running calibration protocol for one modality."""

    modality: Modality
    started_at_ms: float
    targets: list[tuple[float, float]] = field(default_factory=list)
    current_index: int = 0
    points: list[CalibrationPoint] = field(default_factory=list)
    readings: list[tuple[float, ...]] = field(default_factory=list)
    baseline: Optional[tuple[float, ...]] = None

    @property
    def multi_point(self) -> bool:
        return bool(self.targets)

    @property
    def sample_count(self) -> int:
        return len(self.points) if self.multi_point else len(self.readings)


class CalibrationEngine:
    """
    Runs calibration protocols and owns the per-modality profiles.

    Args:
        conditioner: Source of conditioned readings; its buffers are reset
            per target.
        scheduler: Timer source for the protocol steps.
        session: Shared session context; a modality is in
            ``session.calibrating`` while its protocol runs.
        config: Protocol timings.
        gaze_config: Viewport geometry for the reference grid.
        announcer: Optional announcement sink.
        settings: Optional settings store for persisted profiles.
    """

    def __init__(
        self,
        conditioner: SignalConditioner,
        scheduler: Scheduler,
        session: Optional[SessionContext] = None,
        config: Optional[CalibrationConfig] = None,
        gaze_config: Optional[GazeConfig] = None,
        announcer: Optional[Announcer] = None,
        settings: Optional[SettingsStore] = None,
    ) -> None:
        self._conditioner = conditioner
        self._scheduler = scheduler
        self._session = session or SessionContext()
        self._cfg = config or CalibrationConfig()
        gaze_cfg = gaze_config or GazeConfig()
        self._viewport = (gaze_cfg.viewport_width, gaze_cfg.viewport_height)
        self._announcer = announcer
        self._settings = settings

        self._profiles: dict[Modality, CalibrationProfile] = {}
        self._sessions: dict[Modality, CalibrationSession] = {}
        self._timers: dict[Modality, TimerGroup] = {}

        self._target_listeners: list[TargetListener] = []
        self._complete_listeners: list[CompleteListener] = []
        self._recal_listeners: list[RecalibrationListener] = []

        for modality in C.CALIBRATED_MODALITIES:
            self._profiles[modality] = self._load_profile(modality)

    # ──────────────────────────────────────────
    # Listeners
    # ──────────────────────────────────────────

    def on_target(self, callback: TargetListener) -> None:
        """Register ``callback(modality, index, point)``; point is None for single-point."""
        self._target_listeners.append(callback)

    def on_complete(self, callback: CompleteListener) -> None:
        self._complete_listeners.append(callback)

    def on_recalibration_needed(self, callback: RecalibrationListener) -> None:
        self._recal_listeners.append(callback)

    # ──────────────────────────────────────────
    # Queries
    # ──────────────────────────────────────────

    def profile(self, modality: Modality) -> CalibrationProfile:
        """Current profile for *modality* (an uncalibrated stub if never calibrated)."""
        if modality not in self._profiles:
            self._profiles[modality] = CalibrationProfile(modality=modality)
        return self._profiles[modality]

    def is_calibrated(self, modality: Modality) -> bool:
        profile = self._profiles.get(modality)
        return bool(profile and profile.is_calibrated)

    def is_calibrating(self, modality: Modality) -> bool:
        return modality in self._sessions

    def active_session(self, modality: Modality) -> Optional[CalibrationSession]:
        return self._sessions.get(modality)

    @property
    def viewport(self) -> tuple[float, float]:
        return self._viewport

    # ──────────────────────────────────────────
    # Protocol control
    # ──────────────────────────────────────────

    def start_calibration(self, modality: Modality) -> CalibrationSession:
        """
        Begin the calibration protocol for *modality*.

        Raises:
            ConcurrentCalibrationError: A protocol is already running for
                *modality*; the running session is left untouched.
            CalibrationNotSupportedError: *modality* has no protocol.
        """
        if modality not in C.CALIBRATED_MODALITIES:
            raise CalibrationNotSupportedError(modality)
        if modality in self._sessions:
            _log.warn("calibration", "concurrent_request", {"modality": modality.value})
            raise ConcurrentCalibrationError(modality)

        targets: list[tuple[float, float]] = []
        if modality is Modality.GAZE:
            targets = calibration_grid(
                self._viewport[0], self._viewport[1], self._cfg.margin_px, self._cfg.points
            )

        session = CalibrationSession(
            modality=modality,
            started_at_ms=self._scheduler.now_ms(),
            targets=targets,
        )
        self._sessions[modality] = session
        self._timers[modality] = TimerGroup(self._scheduler)
        self._session.calibrating.add(modality)

        _log.info("calibration", "started", {
            "modality": modality.value,
            "points": len(targets) or 1,
            "session_id": self._session.session_id,
        })

        if session.multi_point:
            self._announce(
                "Calibration started. Look at each point as it appears "
                "and keep looking until it disappears."
            )
            self._begin_point(session, 0)
        else:
            self._announce(f"{modality.value.capitalize()} calibration started. Please stay relaxed.")
            self._begin_settle(session)
        return session

    def complete_calibration(self, modality: Modality) -> CalibrationProfile:
        """
        Finish the running protocol (early or at its natural end).

        Returns:
            The new, calibrated profile.

        Raises:
            GazeQuestError: No protocol is running for *modality*.
        """
        session = self._sessions.pop(modality, None)
        if session is None:
            raise GazeQuestError(f"no calibration running for {modality.value}")
        self._timers.pop(modality).cancel_all()
        self._session.calibrating.discard(modality)

        if session.multi_point:
            errors = [p.error for p in session.points]
            max_error = math.hypot(*self._viewport) / 4.0
            baseline = None
        else:
            if session.baseline is None:
                latest = self._conditioner.latest(modality)
                session.baseline = latest.values if latest is not None else None
            errors = []
            if session.baseline is not None and session.readings:
                diffs = np.asarray(session.readings, dtype=float) - np.asarray(session.baseline, dtype=float)
                errors = list(np.linalg.norm(diffs, axis=1))
            max_error = _NORMALIZERS[modality]
            baseline = session.baseline

        if errors:
            avg_error = float(np.mean(errors))
            accuracy = accuracy_from_error(avg_error, max_error)
        else:
            avg_error = float("nan")
            accuracy = C.CALIBRATION_UNKNOWN_ACCURACY
            _log.warn("calibration", "calibration_incomplete", {
                "modality": modality.value,
                "reason": "no_valid_samples",
            })

        previous = self._profiles.get(modality)
        profile = CalibrationProfile(
            modality=modality,
            baseline=baseline,
            reference_points=list(session.points),
            accuracy=accuracy,
            calibrated_at_ms=self._scheduler.now_ms(),
            is_calibrated=True,
            sample_count=len(errors),
            last_known_accuracy=previous.accuracy if previous and previous.is_calibrated else None,
        )
        self._profiles[modality] = profile
        self._persist(profile)

        duration = self._scheduler.now_ms() - session.started_at_ms
        _log.perf("calibration", "complete", duration, {
            "modality": modality.value,
            "accuracy": round(accuracy, 4),
            "samples": len(errors),
            "avg_error": None if math.isnan(avg_error) else round(avg_error, 3),
        })
        self._announce(f"Calibration complete. Accuracy {round(accuracy * 100)} percent.")

        for cb in list(self._complete_listeners):
            try:
                cb(profile)
            except Exception as exc:  # noqa: BLE001
                _log.error("calibration", "listener_error", {"error": str(exc)})
        return profile

    def cancel_calibration(self, modality: Modality) -> bool:
        """
        Abort the running protocol without producing a profile.

        Returns:
            True if a protocol was running.
        """
        session = self._sessions.pop(modality, None)
        if session is None:
            return False
        self._timers.pop(modality).cancel_all()
        self._session.calibrating.discard(modality)
        self._conditioner.reset(modality)
        _log.info("calibration", "cancelled", {
            "modality": modality.value,
            "samples": session.sample_count,
        })
        self._announce("Calibration cancelled.")
        return True

    def invalidate(self, modality: Modality, reason: str) -> None:
        """
        Mark *modality* as needing recalibration.

        Keeps the last accuracy as a hint, persists the change, announces it
        and notifies recalibration listeners.
        """
        profile = self.profile(modality)
        was_calibrated = profile.is_calibrated
        profile.invalidate()
        self._persist(profile)
        _log.info("calibration", "invalidated", {
            "modality": modality.value,
            "reason": reason,
            "was_calibrated": was_calibrated,
        })
        self._announce(f"Recalibration needed for {modality.value}.", priority="assertive")
        for cb in list(self._recal_listeners):
            try:
                cb(modality, reason)
            except Exception as exc:  # noqa: BLE001
                _log.error("calibration", "listener_error", {"error": str(exc)})

    def set_viewport(self, width: float, height: float) -> None:
        """Resize the gaze surface; invalidates any gaze calibration."""
        if (width, height) == self._viewport:
            return
        self._viewport = (width, height)
        self._conditioner.set_viewport(width, height)
        if Modality.GAZE in self._sessions:
            self.cancel_calibration(Modality.GAZE)
        self.invalidate(Modality.GAZE, "viewport_changed")

    def cancel_all(self) -> None:
        for modality in list(self._sessions):
            self.cancel_calibration(modality)

    # ──────────────────────────────────────────
    # Multi-point protocol steps
    # ──────────────────────────────────────────

    def _begin_point(self, session: CalibrationSession, index: int) -> None:
        modality = session.modality
        timers = self._timers[modality]
        session.current_index = index
        target = session.targets[index]
        self._conditioner.reset(modality)

        _log.debug("calibration", "point_shown", {
            "modality": modality.value,
            "index": index,
            "target": target,
        })
        self._notify_target(modality, index, target)

        for i in range(self._cfg.samples_per_point):
            timers.start(
                f"sample-{index}-{i}",
                self._cfg.sample_interval_ms * i,
                lambda: self._sample_point(session, target),
            )
        timers.start(f"point-{index}", self._cfg.point_dwell_ms,
                     lambda: self._finish_point(session, index))

    def _sample_point(self, session: CalibrationSession, target: tuple[float, float]) -> None:
        latest = self._conditioner.latest(session.modality)
        if latest is None:
            return
        session.points.append(CalibrationPoint(
            target=target,
            observed=(latest.values[0], latest.values[1]),
            timestamp_ms=latest.timestamp_ms,
        ))

    def _finish_point(self, session: CalibrationSession, index: int) -> None:
        if self._sessions.get(session.modality) is not session:
            return
        if index + 1 >= len(session.targets):
            self.complete_calibration(session.modality)
            return
        self._timers[session.modality].start(
            "gap", self._cfg.gap_ms, lambda: self._begin_point(session, index + 1)
        )

    # ──────────────────────────────────────────
    # Single-point protocol steps
    # ──────────────────────────────────────────

    def _begin_settle(self, session: CalibrationSession) -> None:
        modality = session.modality
        timers = self._timers[modality]
        self._conditioner.reset(modality)
        self._notify_target(modality, 0, None)

        settle_ms = (
            self._cfg.breath_settle_ms if modality is Modality.BREATH
            else self._cfg.orientation_settle_ms
        )
        n = max(1, int(settle_ms // self._cfg.sample_interval_ms))
        for i in range(n):
            timers.start(
                f"settle-sample-{i}",
                self._cfg.sample_interval_ms * i,
                lambda: self._sample_reading(session),
            )
        timers.start("settle", settle_ms, lambda: self._finish_settle(session))

    def _sample_reading(self, session: CalibrationSession) -> None:
        latest = self._conditioner.latest(session.modality)
        if latest is not None:
            session.readings.append(latest.values)

    def _finish_settle(self, session: CalibrationSession) -> None:
        if self._sessions.get(session.modality) is not session:
            return
        latest = self._conditioner.latest(session.modality)
        if latest is not None:
            session.baseline = latest.values
        self.complete_calibration(session.modality)

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    def _notify_target(self, modality: Modality, index: int, target: Optional[tuple[float, float]]) -> None:
        for cb in list(self._target_listeners):
            try:
                cb(modality, index, target)
            except Exception as exc:  # noqa: BLE001
                _log.error("calibration", "listener_error", {"error": str(exc)})

    def _announce(self, message: str, priority: str = "polite") -> None:
        if self._announcer is not None:
            self._announcer.announce(message, priority)

    def _persist(self, profile: CalibrationProfile) -> None:
        if self._settings is None:
            return
        prefix = f"input.{profile.modality.value}"
        self._settings.set_setting(f"{prefix}.calibrated", profile.is_calibrated)
        self._settings.set_setting(f"{prefix}.accuracy", profile.accuracy)
        if profile.baseline is not None:
            self._settings.set_setting(f"{prefix}.baseline", list(profile.baseline))

    def _load_profile(self, modality: Modality) -> CalibrationProfile:
        profile = CalibrationProfile(modality=modality)
        if self._settings is None:
            return profile
        prefix = f"input.{modality.value}"
        if self._settings.get_setting(f"{prefix}.calibrated", False):
            profile.is_calibrated = True
            profile.accuracy = float(self._settings.get_setting(f"{prefix}.accuracy", C.CALIBRATION_UNKNOWN_ACCURACY))
            baseline = self._settings.get_setting(f"{prefix}.baseline")
            if baseline is not None:
                profile.baseline = tuple(float(v) for v in baseline)
            _log.info("calibration", "profile_restored", profile.to_dict())
        return profile
