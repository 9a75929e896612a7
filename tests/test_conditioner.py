"""
tests/test_conditioner.py — Smoothing window and validity gating.
"""

from __future__ import annotations

import math

import pytest

from gazequest.core.config import SignalConfig
from gazequest.core.constants import Modality
from gazequest.core.models import RawSample
from gazequest.core.session import SessionContext
from gazequest.input.conditioner import SignalConditioner


def _gaze(x: float, y: float, ts: float) -> RawSample:
    return RawSample(Modality.GAZE, (x, y), ts)


@pytest.fixture()
def conditioner(session: SessionContext) -> SignalConditioner:
    return SignalConditioner(session=session)


# ──────────────────────────────────────────────────────────────
# Smoothing
# ──────────────────────────────────────────────────────────────

class TestSmoothing:
    def test_mean_of_window(self, conditioner: SignalConditioner) -> None:
        for i, x in enumerate([100.0, 200.0, 300.0]):
            out = conditioner.condition(Modality.GAZE, _gaze(x, 400.0, float(i)))
        assert out is not None
        assert out.values == pytest.approx((200.0, 400.0))
        assert out.window == 3
        assert out.timestamp_ms == 2.0

    def test_refeeding_stable_buffer_is_idempotent(self, conditioner: SignalConditioner) -> None:
        w = conditioner.window(Modality.GAZE)
        first = None
        for i in range(w):
            first = conditioner.condition(Modality.GAZE, _gaze(320.0, 240.0, float(i)))
        assert first is not None
        assert first.values == pytest.approx((320.0, 240.0))

        for i in range(w, 2 * w):
            again = conditioner.condition(Modality.GAZE, _gaze(320.0, 240.0, float(i)))
            assert again is not None
            assert again.values == pytest.approx(first.values)
            assert again.window == w
        assert conditioner.recent_values(Modality.GAZE, w) == [(320.0, 240.0)] * w

    def test_window_drops_oldest(self) -> None:
        cond = SignalConditioner(SignalConfig(smoothing_window=2))
        cond.condition(Modality.GAZE, _gaze(100.0, 100.0, 0.0))
        cond.condition(Modality.GAZE, _gaze(200.0, 100.0, 1.0))
        out = cond.condition(Modality.GAZE, _gaze(400.0, 100.0, 2.0))
        assert out is not None
        assert out.values[0] == pytest.approx(300.0)
        assert cond.recent_values(Modality.GAZE, 5) == [(200.0, 100.0), (400.0, 100.0)]

    def test_breath_uses_longer_window(self, conditioner: SignalConditioner) -> None:
        assert conditioner.window(Modality.BREATH) == 10
        assert conditioner.window(Modality.GAZE) == 5

    def test_latest_and_reset(self, conditioner: SignalConditioner) -> None:
        conditioner.condition(Modality.BREATH, RawSample(Modality.BREATH, (0.4,), 0.0))
        assert conditioner.latest(Modality.BREATH) is not None
        conditioner.reset(Modality.BREATH)
        assert conditioner.latest(Modality.BREATH) is None
        assert conditioner.recent_values(Modality.BREATH, 3) == []


# ──────────────────────────────────────────────────────────────
# Rejection
# ──────────────────────────────────────────────────────────────

class TestRejection:
    @pytest.mark.parametrize("values", [
        (math.nan, 300.0),
        (300.0, math.inf),
        (300.0,),
        (10.0, 300.0),          # inside the left dead zone
        (1250.0, 300.0),        # inside the right dead zone
    ])
    def test_invalid_gaze_dropped(self, conditioner: SignalConditioner, values) -> None:
        out = conditioner.condition(Modality.GAZE, RawSample(Modality.GAZE, values, 0.0))
        assert out is None
        assert conditioner.rejected_count(Modality.GAZE) == 1
        assert conditioner.latest(Modality.GAZE) is None

    def test_breath_outside_unit_range(self, conditioner: SignalConditioner) -> None:
        assert conditioner.condition(Modality.BREATH, RawSample(Modality.BREATH, (1.2,), 0.0)) is None

    def test_unconditioned_modality(self, conditioner: SignalConditioner) -> None:
        sample = RawSample(Modality.KEYBOARD, (1.0,), 0.0)
        assert conditioner.condition(Modality.KEYBOARD, sample) is None

    def test_stale_sample_dropped(self, conditioner: SignalConditioner) -> None:
        conditioner.condition(Modality.GAZE, _gaze(300.0, 300.0, 1000.0))
        assert conditioner.condition(Modality.GAZE, _gaze(310.0, 300.0, 400.0)) is None
        # Slightly out of order but within the age bound is accepted.
        assert conditioner.condition(Modality.GAZE, _gaze(310.0, 300.0, 700.0)) is not None

    def test_rejected_sample_does_not_disturb_buffer(self, conditioner: SignalConditioner) -> None:
        conditioner.condition(Modality.GAZE, _gaze(300.0, 300.0, 0.0))
        conditioner.condition(Modality.GAZE, _gaze(math.nan, 300.0, 1.0))
        assert conditioner.recent_values(Modality.GAZE, 5) == [(300.0, 300.0)]


# ──────────────────────────────────────────────────────────────
# Calibration relaxation
# ──────────────────────────────────────────────────────────────

class TestCalibrationRelaxation:
    def test_dead_zone_relaxed_while_calibrating(
        self, conditioner: SignalConditioner, session: SessionContext
    ) -> None:
        session.calibrating.add(Modality.GAZE)
        assert conditioner.condition(Modality.GAZE, _gaze(10.0, 10.0, 0.0)) is not None
        # Far outside the viewport is still rejected.
        assert conditioner.condition(Modality.GAZE, _gaze(-500.0, 10.0, 1.0)) is None

    def test_staleness_skipped_while_calibrating(
        self, conditioner: SignalConditioner, session: SessionContext
    ) -> None:
        conditioner.condition(Modality.GAZE, _gaze(300.0, 300.0, 5000.0))
        session.calibrating.add(Modality.GAZE)
        assert conditioner.condition(Modality.GAZE, _gaze(300.0, 300.0, 0.0)) is not None

    def test_viewport_change_rebuilds_envelope(self, conditioner: SignalConditioner) -> None:
        assert conditioner.condition(Modality.GAZE, _gaze(1500.0, 300.0, 0.0)) is None
        conditioner.set_viewport(1920.0, 1080.0)
        assert conditioner.condition(Modality.GAZE, _gaze(1500.0, 300.0, 1.0)) is not None
