"""
pipeline/controller.py — InputController: session orchestrator for GazeQuest input.

Wires together every subsystem in strict initialisation order::

    sensors ─► SignalConditioner ─► CalibrationEngine / Dwell / Scanning
            ─► modality adapters ─► InputEventBus ─► PerformanceTracker
                                                  ─► game subscribers
    PerformanceTracker ─► AdaptiveRecommendationEngine ─► recommendation handlers

Everything runs on the caller's thread. Timers (dwell, scanning, calibration,
key repeat and the periodic adaptive analysis) go through one Scheduler, so a
``ManualScheduler`` makes a whole session deterministic.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from gazequest.adaptive.recommender import AdaptiveRecommendationEngine, FatigueContext
from gazequest.adaptive.tracker import PerformanceTracker
from gazequest.calibration.engine import CalibrationEngine, CalibrationSession
from gazequest.core.config import GazeQuestConfig
from gazequest.core.constants import C, Modality, RecommendationKind
from gazequest.core.errors import (
    ConcurrentCalibrationError,
    GazeQuestError,
    SensorUnavailableError,
    UnknownModalityError,
)
from gazequest.core.interfaces import Announcer, InMemorySettingsStore, SettingsStore, TargetEnvironment
from gazequest.core.logger import get_logger
from gazequest.core.models import CalibrationProfile, InputEvent, RawSample, Recommendation
from gazequest.core.scheduler import ManualScheduler, Scheduler, TimerGroup
from gazequest.core.session import SessionContext
from gazequest.events.bus import InputEventBus, SubscriptionToken
from gazequest.input.conditioner import SignalConditioner
from gazequest.modalities.base import BaseModality
from gazequest.modalities.breath import BreathModality
from gazequest.modalities.gaze import GazeModality
from gazequest.modalities.keyboard import KeyboardModality
from gazequest.modalities.orientation import OrientationModality
from gazequest.modalities.switch import SwitchModality
from gazequest.modalities.voice import VoiceModality

_log = get_logger()

RecommendationHandler = Callable[[Recommendation], None]


class InputController:
    """
    Session orchestrator for every input modality.

    Subsystem initialisation order:

    1.  :class:`~gazequest.core.session.SessionContext`
    2.  :class:`~gazequest.events.bus.InputEventBus`
    3.  :class:`~gazequest.input.conditioner.SignalConditioner`
    4.  :class:`~gazequest.calibration.engine.CalibrationEngine`
    5.  Modality adapters (gaze, breath, orientation, switch, keyboard, voice)
    6.  :class:`~gazequest.adaptive.tracker.PerformanceTracker`
    7.  :class:`~gazequest.adaptive.recommender.AdaptiveRecommendationEngine`

    Args:
        environment: Game-side hit-testing and activation collaborator.
        config: Loaded configuration; defaults apply when None.
        scheduler: Timer source; a fresh :class:`ManualScheduler` when None.
        settings: Per-user settings store; in-memory when None.
        announcer: Optional screen-reader announcement sink.
        availability: Initial sensor availability per modality (missing
            entries count as available).

    Example::

        ctrl = InputController(env, load_config(), AsyncioScheduler())
        ctrl.subscribe(lambda ev: print(ev.kind, ev.target))
        ctrl.on_recommendation(lambda rec: print(rec.kind))
        ctrl.start()
        ...
        ctrl.shutdown()
    """

    def __init__(
        self,
        environment: TargetEnvironment,
        config: Optional[GazeQuestConfig] = None,
        scheduler: Optional[Scheduler] = None,
        settings: Optional[SettingsStore] = None,
        announcer: Optional[Announcer] = None,
        availability: Optional[dict[Modality, bool]] = None,
    ) -> None:
        self._cfg = config or GazeQuestConfig()
        self._scheduler = scheduler or ManualScheduler()
        self._settings = settings if settings is not None else InMemorySettingsStore()
        self._announcer = announcer
        self._env = environment
        availability = availability or {}

        # ── 1. Session context ────────────────────────────────────────────
        _t = time.perf_counter()
        self.session = SessionContext(max_recommendations=self._cfg.adaptive.max_per_session)
        _log.perf("pipeline", "init_session", (time.perf_counter() - _t) * 1_000.0, {
            "session_id": self.session.session_id,
        })

        # ── 2. Event bus ──────────────────────────────────────────────────
        _t = time.perf_counter()
        self.bus = InputEventBus()
        _log.perf("pipeline", "init_bus", (time.perf_counter() - _t) * 1_000.0, {})

        # ── 3. Signal conditioner ─────────────────────────────────────────
        _t = time.perf_counter()
        self.conditioner = SignalConditioner(self._cfg.signal, self._cfg.gaze, self.session)
        _log.perf("pipeline", "init_conditioner", (time.perf_counter() - _t) * 1_000.0, {})

        # ── 4. Calibration engine ─────────────────────────────────────────
        _t = time.perf_counter()
        self.calibration = CalibrationEngine(
            self.conditioner,
            self._scheduler,
            session=self.session,
            config=self._cfg.calibration,
            gaze_config=self._cfg.gaze,
            announcer=announcer,
            settings=self._settings,
        )
        self.calibration.on_recalibration_needed(self._on_recalibration_needed)
        _log.perf("pipeline", "init_calibration", (time.perf_counter() - _t) * 1_000.0, {
            "calibrated": [m.value for m in C.CALIBRATED_MODALITIES if self.calibration.is_calibrated(m)],
        })

        # ── 5. Modality adapters ──────────────────────────────────────────
        _t = time.perf_counter()
        publish = self.bus.publish
        sched = self._scheduler

        def _avail(m: Modality) -> bool:
            return availability.get(m, True)

        self.gaze = GazeModality(
            environment, self.conditioner, self.calibration, sched, publish,
            dwell_config=self._cfg.dwell, settings=self._settings,
            announcer=announcer, available=_avail(Modality.GAZE),
        )
        self.breath = BreathModality(
            self.conditioner, self.calibration, sched, publish,
            config=self._cfg.breath, announcer=announcer, available=_avail(Modality.BREATH),
        )
        self.orientation = OrientationModality(
            self.conditioner, self.calibration, sched, publish,
            config=self._cfg.orientation, announcer=announcer,
            available=_avail(Modality.ORIENTATION),
        )
        self.switch = SwitchModality(
            environment, sched, publish, config=self._cfg.scanning,
            settings=self._settings, announcer=announcer, available=_avail(Modality.SWITCH),
        )
        self.keyboard = KeyboardModality(
            sched, publish, config=self._cfg.keyboard,
            announcer=announcer, available=_avail(Modality.KEYBOARD),
        )
        self.voice = VoiceModality(
            sched, publish, config=self._cfg.voice,
            announcer=announcer, available=_avail(Modality.VOICE),
        )
        self._modalities: dict[Modality, BaseModality] = {
            Modality.GAZE: self.gaze,
            Modality.BREATH: self.breath,
            Modality.ORIENTATION: self.orientation,
            Modality.SWITCH: self.switch,
            Modality.KEYBOARD: self.keyboard,
            Modality.VOICE: self.voice,
        }
        self._sample_sinks: dict[Modality, Callable[[RawSample], None]] = {
            Modality.GAZE: self.gaze.push_sample,
            Modality.ORIENTATION: self.orientation.push_sample,
            Modality.BREATH: self.breath.push_sample,
        }
        _log.perf("pipeline", "init_modalities", (time.perf_counter() - _t) * 1_000.0, {
            "available": [m.value for m, a in self._modalities.items() if a.is_available()],
        })

        # ── 6. Performance tracker ────────────────────────────────────────
        _t = time.perf_counter()
        self.tracker = PerformanceTracker(max_history=self._cfg.controller.max_history)
        self.tracker.attach(self.bus)
        _log.perf("pipeline", "init_tracker", (time.perf_counter() - _t) * 1_000.0, {})

        # ── 7. Recommendation engine ──────────────────────────────────────
        _t = time.perf_counter()
        self.recommender = AdaptiveRecommendationEngine(self._cfg.adaptive, self.session)
        _log.perf("pipeline", "init_recommender", (time.perf_counter() - _t) * 1_000.0, {})

        # ── Runtime state ─────────────────────────────────────────────────
        self._timers = TimerGroup(self._scheduler)
        self._rec_handlers: list[RecommendationHandler] = []
        self._primary: Optional[Modality] = None
        self._last_primary_change_ms: Optional[float] = None
        self._started_ms: Optional[float] = None
        self._running = False

        _log.info("pipeline", "controller_ready", {
            "session_id": self.session.session_id,
            "enabled": list(self._cfg.controller.enabled_modalities),
            "primary": self._cfg.controller.primary_modality,
        })

    # ── Subscriptions ─────────────────────────────────────────────────────────

    def subscribe(
        self,
        handler: Callable[[InputEvent], None],
        modalities: Optional[set[Modality]] = None,
    ) -> SubscriptionToken:
        """Receive every published InputEvent (optionally filtered by modality)."""
        return self.bus.subscribe(handler, modalities)

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        return self.bus.unsubscribe(token)

    def on_recommendation(self, handler: RecommendationHandler) -> None:
        """Register *handler* for every recommendation the analysis delivers."""
        self._rec_handlers.append(handler)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def primary(self) -> Optional[Modality]:
        return self._primary

    def modality(self, modality: Modality) -> BaseModality:
        """
        Adapter for *modality*.

        Raises:
            UnknownModalityError: No adapter is registered for it.
        """
        try:
            return self._modalities[modality]
        except KeyError:
            raise UnknownModalityError(modality) from None

    def active_modalities(self) -> list[Modality]:
        """Active modalities in fallback priority order."""
        return sorted(
            (m for m, a in self._modalities.items() if a.is_active),
            key=lambda m: C.MODALITY_PRIORITY.get(m, 99),
        )

    def start(self) -> None:
        """Activate the enabled modalities, pick the primary and start analysis."""
        if self._running:
            return
        self._running = True
        self._started_ms = self._scheduler.now_ms()
        for name in self._cfg.controller.enabled_modalities:
            self.activate_modality(Modality(name))

        wanted = Modality(self._cfg.controller.primary_modality)
        if self.modality(wanted).is_active:
            self._set_primary_now(wanted, "configured")
        elif self._primary is None:
            self.fallback("configured_primary_unavailable")
        else:
            _log.warn("pipeline", "configured_primary_unavailable", {
                "wanted": wanted.value,
                "using": self._primary.value,
            })

        self._schedule_analysis()
        _log.info("pipeline", "run_start", {
            "active": [m.value for m in self.active_modalities()],
            "primary": self._primary.value if self._primary else None,
        })

    def shutdown(self) -> None:
        """
        Stop analysis, cancel every calibration and deactivate all modalities.

        Safe to call multiple times.
        """
        _log.info("pipeline", "shutdown_requested", {})
        self._running = False
        self._timers.cancel_all()
        self.calibration.cancel_all()
        for adapter in self._modalities.values():
            adapter.deactivate()
        self.tracker.detach()
        _log.info("pipeline", "controller_shutdown", {
            "published": self.bus.published_count,
            "faults": self.bus.fault_count,
        })
        _log.flush()

    # ── Modality management ───────────────────────────────────────────────────

    def activate_modality(self, modality: Modality) -> bool:
        """
        Activate *modality*.

        Returns:
            False if the sensor is unavailable (announced once); True otherwise.
        """
        adapter = self.modality(modality)
        try:
            adapter.activate()
        except SensorUnavailableError as exc:
            _log.warn("pipeline", "activation_failed", {
                "modality": modality.value,
                "error": str(exc),
            })
            return False
        if self._primary is None:
            self._set_primary_now(modality, "first_active")
        return True

    def deactivate_modality(self, modality: Modality) -> None:
        """Deactivate *modality*, cancelling its timers; falls back if it was primary."""
        self.modality(modality).deactivate()
        if self._primary is modality:
            self.fallback(f"{modality.value}_deactivated")

    def set_availability(self, modality: Modality, available: bool, detail: str = "") -> None:
        """Report a sensor/permission result from the presentation layer."""
        was_primary = self._primary is modality
        self.modality(modality).set_availability(available, detail)
        if not available and was_primary:
            self.fallback(f"{modality.value}_unavailable")

    def set_primary(self, modality: Modality, force: bool = False) -> bool:
        """
        Make *modality* the primary input.

        Changes within the switch cooldown are refused unless *force*.

        Returns:
            True if the primary is now *modality*.
        """
        if self._primary is modality:
            return True
        now = self._scheduler.now_ms()
        cooldown = self._cfg.controller.switch_cooldown_ms
        if (
            not force
            and self._last_primary_change_ms is not None
            and now - self._last_primary_change_ms < cooldown
        ):
            _log.info("pipeline", "primary_change_throttled", {
                "requested": modality.value,
                "since_last_ms": now - self._last_primary_change_ms,
            })
            return False
        if not self.modality(modality).is_active and not self.activate_modality(modality):
            return False
        self._set_primary_now(modality, "requested")
        return True

    def fallback(self, reason: str = "fallback") -> Optional[Modality]:
        """
        Move the primary to the highest-priority active modality, activating
        an available one if none is active.

        Returns:
            The new primary, or None if nothing can be used.
        """
        candidates = [m for m in self.active_modalities() if m is not self._primary]
        if not candidates:
            for m in sorted(self._modalities, key=lambda m: C.MODALITY_PRIORITY.get(m, 99)):
                if m is not self._primary and self._modalities[m].is_available():
                    if self.activate_modality(m):
                        candidates = [m]
                        break
        if not candidates:
            _log.error("pipeline", "no_modality_available", {"reason": reason})
            self._primary = None
            self._announce("No input method is available.", "assertive")
            return None
        self._set_primary_now(candidates[0], reason)
        self._announce(f"Switched to {candidates[0].value} input.")
        return candidates[0]

    # ── Raw input entry points ────────────────────────────────────────────────

    def push_raw_sample(self, sample: RawSample) -> None:
        """
        Route a raw gaze, tilt or breath reading to its modality.

        Raises:
            UnknownModalityError: *sample* comes from a modality without a
                sample stream.
        """
        sink = self._sample_sinks.get(sample.modality)
        if sink is None:
            raise UnknownModalityError(
                sample.modality, f"{sample.modality.value} has no raw sample stream"
            )
        sink(sample)

    def press_switch(self) -> None:
        self.switch.press()

    def release_switch(self) -> None:
        self.switch.release()

    def key_down(self, code: str, shift: bool = False) -> bool:
        return self.keyboard.key_down(code, shift)

    def key_up(self, code: str) -> None:
        self.keyboard.key_up(code)

    def speech(self, transcript: str, confidence: float) -> bool:
        return self.voice.speech(transcript, confidence)

    def refresh_targets(self) -> None:
        """Tell the acquisition machines that eligible targets changed."""
        self.gaze.dwell.refresh_targets()
        self.switch.scanning.refresh_targets()

    def set_context(self, scene: Optional[str], hour: int) -> str:
        return self.tracker.set_context(scene, hour)

    # ── Calibration ───────────────────────────────────────────────────────────

    def start_calibration(self, modality: Modality) -> CalibrationSession:
        """Start calibrating *modality*, activating it first if needed."""
        if not self.modality(modality).is_active and not self.activate_modality(modality):
            raise SensorUnavailableError(modality, "cannot calibrate an unavailable sensor")
        return self.calibration.start_calibration(modality)

    def complete_calibration(self, modality: Modality) -> CalibrationProfile:
        return self.calibration.complete_calibration(modality)

    def cancel_calibration(self, modality: Modality) -> bool:
        return self.calibration.cancel_calibration(modality)

    def set_viewport(self, width: float, height: float) -> None:
        self.gaze.set_viewport(width, height)

    # ── Adaptive analysis ─────────────────────────────────────────────────────

    def run_analysis(self) -> list[Recommendation]:
        """Analyse recent history now and deliver any recommendations."""
        now = self._scheduler.now_ms()
        play_ms = now - self._started_ms if self._started_ms is not None else 0.0
        ctx = FatigueContext(
            fatigue=self.tracker.estimate_fatigue(play_ms),
            scene=self.tracker.scene,
            hour=self.tracker.hour,
            active_modality=self._primary,
        )
        try:
            recs = self.recommender.analyze(self.tracker.history(), ctx)
        except GazeQuestError as exc:
            _log.error("pipeline", "analysis_failed", {"error": str(exc)})
            return []
        for rec in recs:
            self._deliver(rec)
        return recs

    def apply_recommendation(self, rec: Recommendation) -> bool:
        """
        Act on *rec*.

        ``adjust-timing`` and ``recalibrate`` are applied automatically when
        delivered; ``recalibrate`` invalidates the profile and restarts the
        protocol. ``switch-method`` is applied only when the player accepts
        it through this method. ``suggest-break`` has nothing to apply.

        Returns:
            True if something changed.
        """
        kind = rec.kind
        if kind is RecommendationKind.ADJUST_TIMING:
            return self._apply_timing(rec)
        if kind is RecommendationKind.RECALIBRATE:
            modality = rec.payload["modality"]
            if not self.calibration.is_calibrated(modality):
                return False
            self.calibration.invalidate(modality, rec.reason)
            try:
                self.start_calibration(modality)
            except (ConcurrentCalibrationError, SensorUnavailableError) as exc:
                _log.warn("pipeline", "recalibration_not_started", {
                    "modality": modality.value,
                    "error": str(exc),
                })
            return True
        if kind is RecommendationKind.SWITCH_METHOD:
            return self.set_primary(rec.payload["target_modality"], force=True)
        return False

    # ── Private helpers ───────────────────────────────────────────────────────

    def _set_primary_now(self, modality: Modality, reason: str) -> None:
        previous = self._primary
        self._primary = modality
        self._last_primary_change_ms = self._scheduler.now_ms()
        _log.info("pipeline", "primary_changed", {
            "from": previous.value if previous else None,
            "to": modality.value,
            "reason": reason,
        })

    def _schedule_analysis(self) -> None:
        self._timers.start("analysis", self._cfg.controller.update_interval_ms, self._analysis_tick)

    def _analysis_tick(self) -> None:
        if not self._running:
            return
        self.run_analysis()
        self._schedule_analysis()

    def _deliver(self, rec: Recommendation) -> None:
        _log.info("pipeline", "recommendation", rec.to_dict())
        if rec.kind in (RecommendationKind.ADJUST_TIMING, RecommendationKind.RECALIBRATE):
            self.apply_recommendation(rec)
        if self._cfg.controller.announce_recommendations:
            message = self._describe(rec)
            if message:
                self._announce(message)
        for cb in list(self._rec_handlers):
            try:
                cb(rec)
            except Exception as exc:  # noqa: BLE001
                _log.error("pipeline", "recommendation_handler_error", {"error": str(exc)})

    def _apply_timing(self, rec: Recommendation) -> bool:
        modality: Modality = rec.payload["modality"]
        delta = float(rec.payload["amount_ms"])
        if rec.payload["direction"] == "decrease":
            delta = -delta

        if modality is Modality.GAZE:
            new_ms = min(C.DWELL_TIME_MAX_MS, max(C.DWELL_TIME_MIN_MS, self.gaze.dwell.dwell_time_ms + delta))
            self.gaze.set_dwell_time(new_ms)
        elif modality is Modality.SWITCH:
            self.switch.scanning.adjust_scan_speed(delta)
        else:
            path = f"input.{modality.value}.timing_offset_ms"
            self._settings.set_setting(path, float(self._settings.get_setting(path, 0.0)) + delta)
        _log.info("pipeline", "timing_adjusted", {
            "modality": modality.value,
            "delta_ms": delta,
        })
        return True

    def _describe(self, rec: Recommendation) -> str:
        p = rec.payload
        if rec.kind is RecommendationKind.SWITCH_METHOD:
            return f"{p['target_modality'].value.capitalize()} input may work better for you right now."
        if rec.kind is RecommendationKind.ADJUST_TIMING:
            return f"{p['modality'].value.capitalize()} timing adjusted to help you."
        if rec.kind is RecommendationKind.SUGGEST_BREAK:
            minutes = max(1, round(p["duration_s"] / 60))
            return f"You've been playing for a while. Consider a {minutes} minute break."
        return ""

    def _on_recalibration_needed(self, modality: Modality, reason: str) -> None:
        _log.info("pipeline", "recalibration_needed", {
            "modality": modality.value,
            "reason": reason,
        })

    def _announce(self, message: str, priority: str = "polite") -> None:
        if self._announcer is not None:
            self._announcer.announce(message, priority)
