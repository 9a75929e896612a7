"""
tests/test_controller.py — InputController orchestration.

Runs whole sessions on the ManualScheduler: routing, primary selection and
fallback, calibration passthrough and the periodic adaptive analysis.
"""

from __future__ import annotations

from typing import Iterator
from unittest.mock import MagicMock

import pytest

from conftest import CENTRES, START
from gazequest.core.config import ControllerConfig, GazeQuestConfig
from gazequest.core.constants import ActionKind, Modality, RecommendationKind
from gazequest.core.errors import SensorUnavailableError, UnknownModalityError
from gazequest.core.interfaces import InMemorySettingsStore, LogAnnouncer, StaticTargetEnvironment
from gazequest.core.models import InputEvent, RawSample, Recommendation
from gazequest.core.scheduler import ManualScheduler
from gazequest.pipeline.controller import InputController


def _config(**controller) -> GazeQuestConfig:
    return GazeQuestConfig(controller=ControllerConfig(**controller))


@pytest.fixture()
def controller(
    env: StaticTargetEnvironment,
    scheduler: ManualScheduler,
    settings: InMemorySettingsStore,
    announcer: LogAnnouncer,
) -> Iterator[InputController]:
    ctrl = InputController(env, None, scheduler, settings=settings, announcer=announcer)
    yield ctrl
    ctrl.shutdown()


# ──────────────────────────────────────────────────────────────
# Lifecycle
# ──────────────────────────────────────────────────────────────

class TestLifecycle:
    def test_start_activates_enabled_modalities(self, controller: InputController) -> None:
        controller.start()
        assert controller.running
        assert controller.active_modalities() == [Modality.KEYBOARD, Modality.SWITCH, Modality.GAZE]
        assert controller.primary is Modality.KEYBOARD

    def test_unavailable_configured_primary_falls_back(
        self, env: StaticTargetEnvironment, scheduler: ManualScheduler
    ) -> None:
        ctrl = InputController(
            env, _config(primary_modality="gaze"), scheduler,
            availability={Modality.GAZE: False},
        )
        ctrl.start()
        assert Modality.GAZE not in ctrl.active_modalities()
        assert ctrl.primary is Modality.KEYBOARD
        ctrl.shutdown()

    def test_shutdown_deactivates_everything(self, controller: InputController) -> None:
        controller.start()
        controller.shutdown()
        controller.shutdown()
        assert not controller.running
        assert controller.active_modalities() == []

    def test_unknown_raw_stream(self, controller: InputController) -> None:
        with pytest.raises(UnknownModalityError):
            controller.push_raw_sample(RawSample(Modality.KEYBOARD, (1.0,), 0.0))


# ──────────────────────────────────────────────────────────────
# Routing
# ──────────────────────────────────────────────────────────────

class TestRouting:
    def test_events_reach_subscribers_and_tracker(self, controller: InputController) -> None:
        seen: list = []
        controller.subscribe(seen.append)
        controller.start()
        controller.key_down("Enter")
        assert [e.kind for e in seen] == [ActionKind.SELECT]
        assert len(controller.tracker.history()) == 1

    def test_filtered_subscription(self, controller: InputController) -> None:
        gaze_only: list = []
        token = controller.subscribe(gaze_only.append, {Modality.GAZE})
        controller.start()
        controller.key_down("Enter")
        assert gaze_only == []
        assert controller.unsubscribe(token)

    def test_gaze_samples_drive_dwell(
        self, controller: InputController, scheduler: ManualScheduler, env: StaticTargetEnvironment
    ) -> None:
        seen: list = []
        controller.subscribe(seen.append)
        controller.start()
        for _ in range(25):
            controller.push_raw_sample(RawSample(Modality.GAZE, CENTRES[START], scheduler.now_ms()))
            scheduler.advance(100)
        # Uncalibrated gaze only navigates.
        assert [(e.kind, e.target) for e in seen] == [(ActionKind.NAVIGATE, START)]
        assert env.activated == []

    def test_switch_scan_selects(
        self, controller: InputController, scheduler: ManualScheduler, env: StaticTargetEnvironment
    ) -> None:
        controller.start()
        controller.press_switch()
        controller.release_switch()
        scheduler.advance(1000)
        controller.press_switch()
        controller.release_switch()
        assert len(env.activated) == 1

    def test_voice_needs_activation(self, controller: InputController) -> None:
        controller.start()
        assert controller.speech("select", 0.9) is False
        assert controller.activate_modality(Modality.VOICE)
        assert controller.speech("select", 0.9) is True


# ──────────────────────────────────────────────────────────────
# Primary modality
# ──────────────────────────────────────────────────────────────

class TestPrimary:
    def test_cooldown_throttles_changes(
        self, controller: InputController, scheduler: ManualScheduler
    ) -> None:
        controller.start()
        assert controller.set_primary(Modality.SWITCH) is False
        scheduler.advance(2000)
        assert controller.set_primary(Modality.SWITCH) is True
        assert controller.primary is Modality.SWITCH

    def test_force_bypasses_cooldown(self, controller: InputController) -> None:
        controller.start()
        assert controller.set_primary(Modality.GAZE, force=True) is True
        assert controller.primary is Modality.GAZE

    def test_set_primary_activates(self, controller: InputController) -> None:
        controller.start()
        assert controller.set_primary(Modality.VOICE, force=True)
        assert Modality.VOICE in controller.active_modalities()

    def test_losing_primary_falls_back_by_priority(
        self, controller: InputController, announcer: LogAnnouncer
    ) -> None:
        controller.start()
        controller.set_primary(Modality.GAZE, force=True)
        controller.set_availability(Modality.GAZE, False, "camera unplugged")
        assert controller.primary is Modality.KEYBOARD
        assert ("Switched to keyboard input.", "polite") in announcer.messages

    def test_deactivating_primary_falls_back(self, controller: InputController) -> None:
        controller.start()
        controller.deactivate_modality(Modality.KEYBOARD)
        assert controller.primary is Modality.SWITCH

    def test_nothing_available(self, env: StaticTargetEnvironment, scheduler: ManualScheduler) -> None:
        announcer = LogAnnouncer()
        ctrl = InputController(
            env, _config(enabled_modalities=("keyboard",)), scheduler, announcer=announcer,
            availability={m: False for m in Modality if m is not Modality.KEYBOARD},
        )
        ctrl.start()
        assert ctrl.fallback() is None
        assert ctrl.primary is None
        assert ("No input method is available.", "assertive") in announcer.messages
        ctrl.shutdown()

    def test_unavailable_activation_returns_false(self, controller: InputController) -> None:
        controller.set_availability(Modality.ORIENTATION, False, "no gyroscope")
        assert controller.activate_modality(Modality.ORIENTATION) is False


# ──────────────────────────────────────────────────────────────
# Calibration passthrough
# ──────────────────────────────────────────────────────────────

class TestCalibration:
    def test_start_calibration_activates_modality(self, controller: InputController) -> None:
        controller.start_calibration(Modality.BREATH)
        assert Modality.BREATH in controller.active_modalities()
        assert controller.session.is_calibrating(Modality.BREATH)
        assert controller.cancel_calibration(Modality.BREATH)

    def test_calibrating_unavailable_sensor(self, controller: InputController) -> None:
        controller.set_availability(Modality.BREATH, False)
        with pytest.raises(SensorUnavailableError):
            controller.start_calibration(Modality.BREATH)

    def test_complete_calibration(self, controller: InputController) -> None:
        controller.start_calibration(Modality.ORIENTATION)
        profile = controller.complete_calibration(Modality.ORIENTATION)
        assert profile.is_calibrated
        assert profile.accuracy == 0.5


# ──────────────────────────────────────────────────────────────
# Adaptive analysis
# ──────────────────────────────────────────────────────────────

class TestAdaptive:
    def _rec(self, kind: RecommendationKind, payload: dict) -> Recommendation:
        return Recommendation(kind=kind, confidence=0.9, payload=payload, reason="test")

    def test_periodic_analysis_delivers(
        self, controller: InputController, scheduler: ManualScheduler, settings: InMemorySettingsStore
    ) -> None:
        received: list[Recommendation] = []
        controller.on_recommendation(received.append)
        controller.start()
        for _ in range(10):
            controller.key_down("Enter")
            controller.key_up("Enter")
            scheduler.advance(2500)

        kinds = [r.kind for r in received]
        assert RecommendationKind.ADJUST_TIMING in kinds
        # Slow, accurate keyboard input is sped up automatically.
        assert settings.get_setting("input.keyboard.timing_offset_ms") < 0

    def test_analysis_stops_after_shutdown(
        self, controller: InputController, scheduler: ManualScheduler
    ) -> None:
        calls: list = []
        controller.on_recommendation(calls.append)
        controller.start()
        controller.shutdown()
        scheduler.advance(60_000)
        assert calls == []

    def test_apply_gaze_timing_clamped(self, controller: InputController, settings: InMemorySettingsStore) -> None:
        rec = self._rec(RecommendationKind.ADJUST_TIMING, {
            "modality": Modality.GAZE, "direction": "decrease", "amount_ms": 500.0,
        })
        for _ in range(5):
            controller.apply_recommendation(rec)
        assert controller.gaze.dwell.dwell_time_ms == 500.0
        assert settings.get_setting("input.gaze.dwell_time_ms") == 500.0

    def test_apply_switch_timing(self, controller: InputController) -> None:
        rec = self._rec(RecommendationKind.ADJUST_TIMING, {
            "modality": Modality.SWITCH, "direction": "increase", "amount_ms": 300.0,
        })
        assert controller.apply_recommendation(rec)
        assert controller.switch.scanning.interval_ms == 1300.0

    def test_apply_recalibrate_only_when_calibrated(self, controller: InputController) -> None:
        rec = self._rec(RecommendationKind.RECALIBRATE, {"modality": Modality.GAZE, "accuracy": 0.4})
        assert controller.apply_recommendation(rec) is False

        controller.start_calibration(Modality.GAZE)
        controller.complete_calibration(Modality.GAZE)
        assert controller.apply_recommendation(rec) is True
        assert not controller.calibration.is_calibrated(Modality.GAZE)
        assert controller.calibration.is_calibrating(Modality.GAZE)

    def test_degraded_accuracy_restarts_calibration(
        self, controller: InputController, scheduler: ManualScheduler
    ) -> None:
        controller.start()
        controller.start_calibration(Modality.GAZE)
        controller.complete_calibration(Modality.GAZE)
        assert controller.set_primary(Modality.GAZE, force=True)

        for _ in range(20):
            controller.bus.publish(InputEvent(
                kind=ActionKind.SELECT, modality=Modality.GAZE, accuracy=0.2,
                confidence=0.9, response_time_ms=1000.0, timestamp_ms=scheduler.now_ms(),
            ))
            scheduler.advance(10)

        recs = controller.run_analysis()
        assert RecommendationKind.RECALIBRATE in [r.kind for r in recs]
        assert not controller.calibration.is_calibrated(Modality.GAZE)
        assert controller.calibration.is_calibrating(Modality.GAZE)

    def test_recalibrate_during_running_protocol(self, controller: InputController) -> None:
        controller.start_calibration(Modality.GAZE)
        controller.complete_calibration(Modality.GAZE)
        session = controller.start_calibration(Modality.GAZE)
        rec = self._rec(RecommendationKind.RECALIBRATE, {"modality": Modality.GAZE, "accuracy": 0.4})

        assert controller.apply_recommendation(rec) is True
        assert controller.calibration.active_session(Modality.GAZE) is session

    def test_apply_switch_method(self, controller: InputController) -> None:
        controller.start()
        rec = self._rec(RecommendationKind.SWITCH_METHOD, {
            "from_modality": Modality.KEYBOARD, "target_modality": Modality.SWITCH,
        })
        assert controller.apply_recommendation(rec)
        assert controller.primary is Modality.SWITCH

    def test_break_has_nothing_to_apply(self, controller: InputController) -> None:
        rec = self._rec(RecommendationKind.SUGGEST_BREAK, {"duration_s": 300.0})
        assert controller.apply_recommendation(rec) is False

    def test_delivery_with_mocked_engine(
        self, controller: InputController, announcer: LogAnnouncer
    ) -> None:
        rec = self._rec(RecommendationKind.SUGGEST_BREAK, {"duration_s": 300.0})
        controller.recommender.analyze = MagicMock(return_value=[rec])
        handler = MagicMock()
        controller.on_recommendation(handler)

        assert controller.run_analysis() == [rec]
        handler.assert_called_once_with(rec)
        assert ("You've been playing for a while. Consider a 5 minute break.", "polite") in announcer.messages

    def test_failing_handler_does_not_block_others(self, controller: InputController) -> None:
        rec = self._rec(RecommendationKind.SUGGEST_BREAK, {"duration_s": 60.0})
        controller.recommender.analyze = MagicMock(return_value=[rec])
        controller.on_recommendation(MagicMock(side_effect=RuntimeError("boom")))
        second = MagicMock()
        controller.on_recommendation(second)

        controller.run_analysis()
        second.assert_called_once_with(rec)
