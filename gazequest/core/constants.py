"""
gazequest/core/constants.py — All system constants for GazeQuest input.

Modality and action enums plus a single frozen dataclass of typed constant
groups: timing defaults, smoothing windows, validity envelopes, calibration
protocol timings and adaptive-engine thresholds. Per-user overrides live in
:mod:`gazequest.core.config` and the settings store; these are the defaults.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────────────────────

class Modality(Enum):
    """One input channel."""

    GAZE = "gaze"
    SWITCH = "switch"
    KEYBOARD = "keyboard"
    ORIENTATION = "orientation"
    BREATH = "breath"
    VOICE = "voice"


class ActionKind(Enum):
    """Normalised action vocabulary carried by every InputEvent."""

    SELECT = "select"
    MOVE = "move"
    COMMAND = "command"
    CANCEL = "cancel"
    NAVIGATE = "navigate"


class Direction(Enum):
    """Direction attached to ``move`` events."""

    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


class RecommendationKind(Enum):
    """Kinds of adaptive recommendation."""

    SWITCH_METHOD = "switch-method"
    ADJUST_TIMING = "adjust-timing"
    RECALIBRATE = "recalibrate"
    SUGGEST_BREAK = "suggest-break"


class Reliability(Enum):
    """Coarse reliability class of a modality."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ──────────────────────────────────────────────────────────────
# Frozen constants dataclass
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GQConstants:
    """
    Frozen dataclass holding all GazeQuest input constants.

    Use the class attributes directly — do not instantiate this class.

    Example::

        from gazequest.core.constants import C, Modality

        print(C.DWELL_TIME_MS)          # 2000.0
        print(C.requires_calibration(Modality.GAZE))   # True
    """

    # ── Acquisition timing (milliseconds) ─────────────────────
    DWELL_TIME_MS: ClassVar[float] = 2000.0
    """ms gaze must hold on a target to trigger a dwell activation."""
    DWELL_TIME_MIN_MS: ClassVar[float] = 500.0
    DWELL_TIME_MAX_MS: ClassVar[float] = 5000.0

    SCAN_INTERVAL_MS: ClassVar[float] = 1000.0
    """ms between scan highlight advances."""

    SCAN_INTERVAL_MIN_MS: ClassVar[float] = 200.0
    SCAN_INTERVAL_MAX_MS: ClassVar[float] = 3000.0

    RESCAN_DELAY_MS: ClassVar[float] = 2000.0
    """Delay before auto-rescan restarts after an activation."""

    SCAN_GROUP_THRESHOLD: ClassVar[int] = 10
    """Candidate sets larger than this are scanned in groups of ⌈√N⌉."""

    LONG_PRESS_MS: ClassVar[float] = 2000.0
    """Switch hold duration that counts as a long press (direction reversal)."""

    # ── Signal conditioning ───────────────────────────────────
    SMOOTHING_WINDOW: ClassVar[int] = 5
    BREATH_SMOOTHING_WINDOW: ClassVar[int] = 10

    MAX_SAMPLE_AGE_MS: ClassVar[float] = 500.0
    """A sample older than the previous accepted one by more than this is stale."""

    GAZE_DEAD_ZONE_PX: ClassVar[float] = 50.0
    """Pixels around the viewport edge ignored outside calibration."""

    CALIBRATION_SANITY_MARGIN_PX: ClassVar[float] = 100.0
    """Relaxed envelope margin beyond the viewport while calibrating."""

    MAX_ORIENTATION_DEG: ClassVar[float] = 360.0

    VIEWPORT_WIDTH: ClassVar[float] = 1280.0
    VIEWPORT_HEIGHT: ClassVar[float] = 720.0

    # ── Calibration protocol ──────────────────────────────────
    CALIBRATION_POINTS: ClassVar[int] = 9
    CALIBRATION_MARGIN_PX: ClassVar[float] = 100.0
    CALIBRATION_SAMPLES_PER_POINT: ClassVar[int] = 8
    CALIBRATION_SAMPLE_INTERVAL_MS: ClassVar[float] = 300.0
    CALIBRATION_POINT_DWELL_MS: ClassVar[float] = 3500.0
    CALIBRATION_GAP_MS: ClassVar[float] = 1000.0
    BREATH_SETTLE_MS: ClassVar[float] = 2000.0
    ORIENTATION_SETTLE_MS: ClassVar[float] = 3000.0

    CALIBRATION_MIN_ACCURACY: ClassVar[float] = 0.1
    CALIBRATION_UNKNOWN_ACCURACY: ClassVar[float] = 0.5
    """Accuracy assigned when a protocol finished with zero valid samples."""

    ORIENTATION_NORMALIZER_DEG: ClassVar[float] = 45.0
    BREATH_NORMALIZER: ClassVar[float] = 1.0

    # ── Dwell confidence ──────────────────────────────────────
    CONFIDENCE_VARIANCE_SCALE: ClassVar[float] = 1000.0
    CONFIDENCE_FLOOR: ClassVar[float] = 0.1
    CONFIDENCE_WINDOW: ClassVar[int] = 3
    UNCALIBRATED_CONFIDENCE_FACTOR: ClassVar[float] = 0.5

    # ── Adaptive engine ───────────────────────────────────────
    MIN_HISTORY: ClassVar[int] = 10
    ANALYSIS_WINDOW: ClassVar[int] = 100
    ADAPTATION_THRESHOLD: ClassVar[float] = 0.15
    CONFIDENCE_THRESHOLD: ClassVar[float] = 0.7
    MAX_RECOMMENDATIONS_PER_SESSION: ClassVar[int] = 5
    MAX_RECOMMENDATIONS_PER_CALL: ClassVar[int] = 2
    FATIGUE_THRESHOLD: ClassVar[float] = 0.7
    MAX_BREAK_S: ClassVar[float] = 300.0
    SUCCESS_ACCURACY: ClassVar[float] = 0.5
    RECALIBRATE_ACCURACY: ClassVar[float] = 0.6
    RECALIBRATE_WINDOW: ClassVar[int] = 20

    # ── Controller ────────────────────────────────────────────
    MAX_INPUT_HISTORY: ClassVar[int] = 1000
    ADAPTIVE_UPDATE_INTERVAL_MS: ClassVar[float] = 5000.0
    INPUT_SWITCH_COOLDOWN_MS: ClassVar[float] = 2000.0

    # ── Modality tables ───────────────────────────────────────
    CALIBRATED_MODALITIES: ClassVar[frozenset[Modality]] = frozenset(
        {Modality.GAZE, Modality.BREATH, Modality.ORIENTATION}
    )
    """Modalities with a calibration protocol (baseline or reference points)."""

    SELECT_REQUIRES_CALIBRATION: ClassVar[frozenset[Modality]] = frozenset(
        {Modality.GAZE, Modality.BREATH}
    )
    """Modalities that may never emit ``select`` while uncalibrated."""

    RELIABLE_MODALITIES: ClassVar[tuple[Modality, ...]] = (
        Modality.KEYBOARD,
        Modality.SWITCH,
    )

    MODALITY_PRIORITY: ClassVar[dict[Modality, int]] = {
        Modality.KEYBOARD: 1,
        Modality.SWITCH: 2,
        Modality.GAZE: 3,
        Modality.VOICE: 4,
        Modality.BREATH: 5,
        Modality.ORIENTATION: 6,
    }

    @classmethod
    def requires_calibration(cls, modality: Modality) -> bool:
        """Return True if ``select`` from *modality* is gated on calibration."""
        return modality in cls.SELECT_REQUIRES_CALIBRATION

    @classmethod
    def smoothing_window(cls, modality: Modality) -> int:
        """Return the default smoothing window W for *modality*."""
        if modality is Modality.BREATH:
            return cls.BREATH_SMOOTHING_WINDOW
        return cls.SMOOTHING_WINDOW


# ──────────────────────────────────────────────────────────────
# Module-level convenience alias
# ──────────────────────────────────────────────────────────────

#: Convenience alias: ``from gazequest.core.constants import C``
C = GQConstants
