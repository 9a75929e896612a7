"""
gazequest/input/conditioner.py — Per-modality smoothing and sample validation.

Each continuous modality (gaze, orientation, breath) owns a fixed-capacity
FIFO of the last W accepted readings. The conditioned output is the
component-wise mean of that buffer, stamped with the newest sample's time.

Samples are dropped (never buffered) when they contain a non-finite
component, have the wrong arity, fall outside the modality's validity
envelope, or are older than the previous accepted sample by more than
``max_age_ms``. While a calibration protocol for the modality is running the
envelope relaxes to a coarse sanity check and the age check is skipped.
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from typing import Optional

import numpy as np

from gazequest.core.config import GazeConfig, SignalConfig
from gazequest.core.constants import Modality
from gazequest.core.logger import get_logger
from gazequest.core.models import ConditionedSignal, RawSample
from gazequest.core.session import SessionContext

_log = get_logger()

# Number of components each conditioned modality carries
ARITY: dict[Modality, int] = {
    Modality.GAZE: 2,         # x, y (px)
    Modality.ORIENTATION: 3,  # alpha, beta, gamma (deg)
    Modality.BREATH: 1,       # level in [0, 1]
}


@dataclass(frozen=True)
class ValidityEnvelope:
    """
    Acceptance region for one modality.

    ``low``/``high`` are per-component inclusive bounds. ``relaxed_low`` /
    ``relaxed_high`` apply while a calibration protocol runs.
    """

    low: tuple[float, ...]
    high: tuple[float, ...]
    relaxed_low: tuple[float, ...]
    relaxed_high: tuple[float, ...]

    def contains(self, values: tuple[float, ...], relaxed: bool = False) -> bool:
        lo, hi = (self.relaxed_low, self.relaxed_high) if relaxed else (self.low, self.high)
        return all(l <= v <= h for v, l, h in zip(values, lo, hi))


def gaze_envelope(width: float, height: float, dead_zone: float, margin: float) -> ValidityEnvelope:
    """Viewport minus the edge dead zone; relaxed to viewport plus margin."""
    return ValidityEnvelope(
        low=(dead_zone, dead_zone),
        high=(width - dead_zone, height - dead_zone),
        relaxed_low=(-margin, -margin),
        relaxed_high=(width + margin, height + margin),
    )


def _orientation_envelope(max_deg: float) -> ValidityEnvelope:
    bound = (max_deg,) * 3
    neg = (-max_deg,) * 3
    return ValidityEnvelope(low=neg, high=bound, relaxed_low=neg, relaxed_high=bound)


_BREATH_ENVELOPE = ValidityEnvelope(low=(0.0,), high=(1.0,), relaxed_low=(0.0,), relaxed_high=(1.0,))


class SignalConditioner:
    """
    Moving-average conditioner with validity gating.

    Args:
        signal_config: Window sizes and staleness bound.
        gaze_config: Viewport geometry for the gaze envelope.
        session: Shared session context; its ``calibrating`` set selects the
            relaxed envelope.
    """

    def __init__(
        self,
        signal_config: Optional[SignalConfig] = None,
        gaze_config: Optional[GazeConfig] = None,
        session: Optional[SessionContext] = None,
    ) -> None:
        self._cfg = signal_config or SignalConfig()
        self._gaze_cfg = gaze_config or GazeConfig()
        self._session = session or SessionContext()

        self._windows: dict[Modality, int] = {
            Modality.GAZE: self._cfg.smoothing_window,
            Modality.ORIENTATION: self._cfg.smoothing_window,
            Modality.BREATH: self._cfg.breath_smoothing_window,
        }
        self._envelopes: dict[Modality, ValidityEnvelope] = {
            Modality.GAZE: gaze_envelope(
                self._gaze_cfg.viewport_width,
                self._gaze_cfg.viewport_height,
                self._gaze_cfg.dead_zone_px,
                self._gaze_cfg.sanity_margin_px,
            ),
            Modality.ORIENTATION: _orientation_envelope(self._cfg.max_orientation_deg),
            Modality.BREATH: _BREATH_ENVELOPE,
        }
        self._buffers: dict[Modality, deque[tuple[float, ...]]] = {
            m: deque(maxlen=w) for m, w in self._windows.items()
        }
        self._last_ts: dict[Modality, float] = {}
        self._latest: dict[Modality, ConditionedSignal] = {}
        self._rejected: dict[Modality, int] = {m: 0 for m in ARITY}

        _log.info("conditioner", "init", {
            "windows": {m.value: w for m, w in self._windows.items()},
            "max_age_ms": self._cfg.max_sample_age_ms,
        })

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def condition(self, modality: Modality, sample: RawSample) -> Optional[ConditionedSignal]:
        """
        Validate *sample* and return the smoothed signal, or None if rejected.

        Args:
            modality: Modality whose buffer receives the sample.
            sample: Raw reading.

        Returns:
            The new :class:`ConditionedSignal`, or None when the sample was
            dropped.
        """
        if modality not in ARITY:
            self._reject(modality, sample, "unsupported_modality")
            return None

        values = tuple(float(v) for v in sample.values)
        if len(values) != ARITY[modality]:
            self._reject(modality, sample, "arity")
            return None
        if not all(math.isfinite(v) for v in values):
            self._reject(modality, sample, "non_finite")
            return None

        calibrating = self._session.is_calibrating(modality)
        if not self._envelopes[modality].contains(values, relaxed=calibrating):
            self._reject(modality, sample, "out_of_envelope")
            return None

        last = self._last_ts.get(modality)
        if (
            not calibrating
            and last is not None
            and sample.timestamp_ms < last - self._cfg.max_sample_age_ms
        ):
            self._reject(modality, sample, "stale")
            return None

        buf = self._buffers[modality]
        buf.append(values)
        self._last_ts[modality] = sample.timestamp_ms if last is None else max(last, sample.timestamp_ms)

        mean = np.mean(np.asarray(buf, dtype=float), axis=0)
        signal = ConditionedSignal(
            modality=modality,
            values=tuple(float(v) for v in mean),
            timestamp_ms=sample.timestamp_ms,
            window=len(buf),
        )
        self._latest[modality] = signal
        return signal

    def latest(self, modality: Modality) -> Optional[ConditionedSignal]:
        """Most recent conditioned output for *modality*, if any."""
        return self._latest.get(modality)

    def recent_values(self, modality: Modality, n: int) -> list[tuple[float, ...]]:
        """Up to *n* most recent accepted raw readings, oldest first."""
        buf = self._buffers.get(modality)
        if not buf:
            return []
        return list(buf)[-n:]

    def reset(self, modality: Optional[Modality] = None) -> None:
        """Clear the buffer (and staleness reference) for one or all modalities."""
        targets = [modality] if modality is not None else list(self._buffers)
        for m in targets:
            if m in self._buffers:
                self._buffers[m].clear()
            self._last_ts.pop(m, None)
            self._latest.pop(m, None)

    def rejected_count(self, modality: Modality) -> int:
        return self._rejected.get(modality, 0)

    def window(self, modality: Modality) -> int:
        return self._windows.get(modality, 1)

    def set_viewport(self, width: float, height: float) -> None:
        """Rebuild the gaze envelope for a resized surface."""
        self._envelopes[Modality.GAZE] = gaze_envelope(
            width, height, self._gaze_cfg.dead_zone_px, self._gaze_cfg.sanity_margin_px
        )
        self.reset(Modality.GAZE)
        _log.info("conditioner", "viewport_changed", {"width": width, "height": height})

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    def _reject(self, modality: Modality, sample: RawSample, reason: str) -> None:
        self._rejected[modality] = self._rejected.get(modality, 0) + 1
        _log.debug("conditioner", "sample_rejected", {
            "modality": modality.value,
            "reason": reason,
            "timestamp_ms": sample.timestamp_ms,
        })
