"""
tests/test_recommender.py — Adaptive recommendation rules, filtering and caps.
"""

from __future__ import annotations

import pytest

from gazequest.adaptive.recommender import (
    AdaptiveRecommendationEngine,
    FatigueContext,
    primary_modality,
)
from gazequest.core.constants import ActionKind, Modality, RecommendationKind
from gazequest.core.models import InputEvent
from gazequest.core.session import SessionContext


def _event(modality: Modality, accuracy: float, rt: float = 1000.0, ts: float = 0.0) -> InputEvent:
    return InputEvent(
        kind=ActionKind.SELECT, modality=modality, accuracy=accuracy,
        confidence=1.0, response_time_ms=rt, timestamp_ms=ts,
    )


def _series(modality: Modality, accuracies: list[float], rt: float = 1000.0) -> list[InputEvent]:
    return [_event(modality, a, rt=rt, ts=float(i * 100)) for i, a in enumerate(accuracies)]


@pytest.fixture()
def engine(session: SessionContext) -> AdaptiveRecommendationEngine:
    return AdaptiveRecommendationEngine(session=session)


# ──────────────────────────────────────────────────────────────
# Primary modality
# ──────────────────────────────────────────────────────────────

class TestPrimaryModality:
    def test_most_frequent_wins(self) -> None:
        events = _series(Modality.GAZE, [1.0] * 6) + _series(Modality.KEYBOARD, [1.0] * 4)
        assert primary_modality(events) is Modality.GAZE

    def test_tie_goes_to_most_recent(self) -> None:
        events = _series(Modality.GAZE, [1.0] * 5) + _series(Modality.KEYBOARD, [1.0] * 5)
        assert primary_modality(events) is Modality.KEYBOARD

    def test_only_last_ten_count(self) -> None:
        events = _series(Modality.GAZE, [1.0] * 20) + _series(Modality.VOICE, [1.0] * 10)
        assert primary_modality(events) is Modality.VOICE

    def test_empty(self) -> None:
        assert primary_modality([]) is None


# ──────────────────────────────────────────────────────────────
# Rules
# ──────────────────────────────────────────────────────────────

class TestRules:
    def test_too_little_history(self, engine: AdaptiveRecommendationEngine) -> None:
        history = _series(Modality.GAZE, [0.1] * 9)
        assert engine.analyze(history, FatigueContext(fatigue=0.95)) == []
        assert engine.generate_candidates(history) == []

    def test_recalibrate_on_degraded_accuracy(self, engine: AdaptiveRecommendationEngine) -> None:
        history = _series(Modality.GAZE, [0.3, 0.5] * 10)
        candidates = engine.generate_candidates(history)
        assert [c.kind for c in candidates] == [RecommendationKind.RECALIBRATE]
        rec = candidates[0]
        assert rec.confidence == pytest.approx(1.0 - 0.4)
        assert rec.payload["modality"] is Modality.GAZE
        # 0.6 is below the delivery threshold.
        assert engine.analyze(history) == []

    def test_no_recalibration_for_keyboard(self, engine: AdaptiveRecommendationEngine) -> None:
        history = _series(Modality.KEYBOARD, [0.3, 0.5] * 10)
        kinds = [c.kind for c in engine.generate_candidates(history)]
        assert RecommendationKind.RECALIBRATE not in kinds

    def test_fatigue_switches_unreliable_modality_to_keyboard(
        self, engine: AdaptiveRecommendationEngine
    ) -> None:
        history = _series(Modality.GAZE, [0.9] * 10)
        recs = engine.analyze(history, FatigueContext(fatigue=0.9, active_modality=Modality.GAZE))
        assert len(recs) == 1
        rec = recs[0]
        assert rec.kind is RecommendationKind.SWITCH_METHOD
        assert rec.confidence == pytest.approx(0.9)
        assert rec.payload["target_modality"] is Modality.KEYBOARD
        assert rec.payload["from_modality"] is Modality.GAZE
        assert rec.reason == "fatigue_management"

    def test_fatigue_replaces_performance_switch(self, engine: AdaptiveRecommendationEngine) -> None:
        history = _series(Modality.SWITCH, [1.0] * 10, rt=100.0) + _series(Modality.GAZE, [0.55] * 10)
        ctx = FatigueContext(fatigue=0.9, active_modality=Modality.GAZE)
        switches = [
            c for c in engine.generate_candidates(history, ctx)
            if c.kind is RecommendationKind.SWITCH_METHOD
        ]
        assert len(switches) == 1
        assert switches[0].payload["target_modality"] is Modality.KEYBOARD

    def test_fatigue_on_reliable_modality_suggests_break(
        self, engine: AdaptiveRecommendationEngine
    ) -> None:
        history = _series(Modality.KEYBOARD, [1.0] * 10)
        recs = engine.analyze(history, FatigueContext(fatigue=0.8))
        assert [r.kind for r in recs] == [RecommendationKind.SUGGEST_BREAK]
        assert recs[0].payload["duration_s"] == pytest.approx(300.0)

    def test_fatigue_at_threshold_is_ignored(self, engine: AdaptiveRecommendationEngine) -> None:
        history = _series(Modality.KEYBOARD, [1.0] * 10)
        assert engine.generate_candidates(history, FatigueContext(fatigue=0.7)) == []

    def test_fast_errors_slow_timing_down(self, engine: AdaptiveRecommendationEngine) -> None:
        history = _series(Modality.KEYBOARD, [0.0, 1.0] * 5, rt=300.0)
        recs = engine.analyze(history)
        assert [r.kind for r in recs] == []
        candidates = engine.generate_candidates(history)
        timing = [c for c in candidates if c.kind is RecommendationKind.ADJUST_TIMING][0]
        assert timing.payload["direction"] == "increase"
        assert timing.payload["amount_ms"] == pytest.approx(500.0)
        assert timing.confidence == pytest.approx(0.5)

    def test_slow_accurate_input_speeds_up(self, engine: AdaptiveRecommendationEngine) -> None:
        history = _series(Modality.KEYBOARD, [1.0] * 10, rt=2400.0)
        recs = engine.analyze(history)
        assert [r.kind for r in recs] == [RecommendationKind.ADJUST_TIMING]
        assert recs[0].payload["direction"] == "decrease"
        assert recs[0].payload["amount_ms"] == pytest.approx(500.0)

    def test_performance_switch(self, engine: AdaptiveRecommendationEngine) -> None:
        history = _series(Modality.KEYBOARD, [1.0] * 10, rt=100.0) + _series(Modality.GAZE, [0.1] * 10, rt=1500.0)
        ctx = FatigueContext(active_modality=Modality.GAZE)
        switch = engine.recommend_method(history, ctx)
        assert switch is not None
        assert switch.payload["target_modality"] is Modality.KEYBOARD
        assert switch.reason == "performance_optimization"


# ──────────────────────────────────────────────────────────────
# Filtering and caps
# ──────────────────────────────────────────────────────────────

class TestCaps:
    def _bad_history(self) -> list[InputEvent]:
        return _series(Modality.GAZE, [0.2] * 12, rt=300.0)

    def test_at_most_two_per_call_highest_first(self, engine: AdaptiveRecommendationEngine) -> None:
        recs = engine.analyze(self._bad_history(), FatigueContext(fatigue=0.9))
        assert len(recs) == 2
        assert recs[0].confidence >= recs[1].confidence
        assert [r.kind for r in recs] == [
            RecommendationKind.ADJUST_TIMING,
            RecommendationKind.SWITCH_METHOD,
        ]

    def test_session_cap(self, engine: AdaptiveRecommendationEngine, session: SessionContext) -> None:
        ctx = FatigueContext(fatigue=0.9)
        counts = [len(engine.analyze(self._bad_history(), ctx)) for _ in range(4)]
        assert counts == [2, 2, 1, 0]
        assert session.recommendations_issued == 5

    def test_session_reset_restores_budget(
        self, engine: AdaptiveRecommendationEngine, session: SessionContext
    ) -> None:
        ctx = FatigueContext(fatigue=0.9)
        for _ in range(3):
            engine.analyze(self._bad_history(), ctx)
        session.reset()
        assert len(engine.analyze(self._bad_history(), ctx)) == 2

    def test_candidates_do_not_consume_budget(
        self, engine: AdaptiveRecommendationEngine, session: SessionContext
    ) -> None:
        engine.generate_candidates(self._bad_history(), FatigueContext(fatigue=0.9))
        assert session.recommendations_issued == 0


class TestProfileLearning:
    def test_summary(self, engine: AdaptiveRecommendationEngine) -> None:
        history = _series(Modality.GAZE, [0.9] * 6) + _series(Modality.KEYBOARD, [0.9] * 4)
        engine.generate_candidates(history)
        summary = engine.summary()
        assert summary["total_sessions"] == 1
        assert summary["preferred_methods"][0] == "gaze"
        assert summary["average_performance"]["accuracy"] == pytest.approx(0.9)

    def test_method_score_unknown_modality(self, engine: AdaptiveRecommendationEngine) -> None:
        assert engine.method_score(Modality.VOICE, "unknown_3") == 0.0
