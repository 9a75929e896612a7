"""
gazequest/core/models.py — Data model shared by every input stage.

raw sample → conditioned signal → (calibration profile) → InputEvent →
performance record → recommendation. Events are frozen; everything else is a
plain mutable dataclass owned by exactly one component.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from gazequest.core.constants import (
    ActionKind,
    C,
    Direction,
    Modality,
    RecommendationKind,
    Reliability,
)


# ──────────────────────────────────────────────────────────────
# Signals
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RawSample:
    """
    One unprocessed sensor reading.

    Attributes:
        modality: Source modality.
        values: Reading components (gaze: x, y; orientation: alpha, beta,
            gamma; breath: level).
        timestamp_ms: Capture time in milliseconds.
        confidence: Optional sensor-reported confidence in [0, 1].
    """

    modality: Modality
    values: tuple[float, ...]
    timestamp_ms: float
    confidence: Optional[float] = None


@dataclass(frozen=True)
class ConditionedSignal:
    """Smoothed reading produced by the conditioner."""

    modality: Modality
    values: tuple[float, ...]
    timestamp_ms: float
    window: int


# ──────────────────────────────────────────────────────────────
# Calibration
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CalibrationPoint:
    """A known target coordinate paired with an observed reading."""

    target: tuple[float, float]
    observed: tuple[float, float]
    timestamp_ms: float

    @property
    def error(self) -> float:
        dx = self.observed[0] - self.target[0]
        dy = self.observed[1] - self.target[1]
        return (dx * dx + dy * dy) ** 0.5


@dataclass
class CalibrationProfile:
    """
    Result of a calibration protocol for one modality.

    ``last_known_accuracy`` survives :meth:`invalidate` so the UI can hint at
    how well the previous calibration went.
    """

    modality: Modality
    baseline: Optional[tuple[float, ...]] = None
    reference_points: list[CalibrationPoint] = field(default_factory=list)
    accuracy: float = 0.0
    calibrated_at_ms: Optional[float] = None
    is_calibrated: bool = False
    sample_count: int = 0
    last_known_accuracy: Optional[float] = None

    def invalidate(self) -> None:
        if self.is_calibrated:
            self.last_known_accuracy = self.accuracy
        self.is_calibrated = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "modality": self.modality.value,
            "accuracy": round(self.accuracy, 4),
            "is_calibrated": self.is_calibrated,
            "sample_count": self.sample_count,
            "calibrated_at_ms": self.calibrated_at_ms,
            "baseline": list(self.baseline) if self.baseline else None,
        }


# ──────────────────────────────────────────────────────────────
# Targets
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TargetRef:
    """Opaque handle to something the environment can focus or activate."""

    id: str
    label: str = ""

    def __str__(self) -> str:
        return self.label or self.id


# ──────────────────────────────────────────────────────────────
# Events
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class InputEvent:
    """
    Immutable normalised input event, the only thing the game consumes.

    Attributes:
        kind: Action kind.
        modality: Producing modality.
        accuracy: Estimated spatial/semantic accuracy in [0, 1].
        confidence: Confidence that the user intended this action, in [0, 1].
        response_time_ms: Time from stimulus to action.
        timestamp_ms: Emission time.
        direction: Present for ``move`` events.
        intensity: Optional analogue strength in [0, 1].
        target: Target the event refers to, if any.
        command: Command name for ``command`` events.
        metadata: Read-only free-form extras.
    """

    kind: ActionKind
    modality: Modality
    accuracy: float
    confidence: float
    response_time_ms: float
    timestamp_ms: float
    direction: Optional[Direction] = None
    intensity: Optional[float] = None
    target: Optional[TargetRef] = None
    command: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if not 0.0 <= self.accuracy <= 1.0:
            raise ValueError(f"accuracy must be in [0, 1], got {self.accuracy}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")
        if self.intensity is not None and not 0.0 <= self.intensity <= 1.0:
            raise ValueError(f"intensity must be in [0, 1], got {self.intensity}")
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def successful(self) -> bool:
        return self.accuracy >= C.SUCCESS_ACCURACY

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe view for logs and consumers."""
        return {
            "kind": self.kind.value,
            "modality": self.modality.value,
            "accuracy": round(self.accuracy, 4),
            "confidence": round(self.confidence, 4),
            "response_time_ms": round(self.response_time_ms, 1),
            "timestamp_ms": self.timestamp_ms,
            "direction": self.direction.value if self.direction else None,
            "intensity": self.intensity,
            "target": self.target.id if self.target else None,
            "command": self.command,
            "metadata": dict(self.metadata),
        }


# ──────────────────────────────────────────────────────────────
# Performance + recommendations
# ──────────────────────────────────────────────────────────────

@dataclass
class PerformanceRecord:
    """Incrementally-updated statistics for one (modality, context) key."""

    modality: Modality
    context_key: str
    count: int = 0
    mean_accuracy: float = 0.0
    mean_response_time_ms: float = 0.0
    success_count: int = 0
    error_count: int = 0
    last_updated_ms: float = 0.0

    def update(self, event: InputEvent) -> None:
        self.count += 1
        n = self.count
        self.mean_accuracy += (event.accuracy - self.mean_accuracy) / n
        self.mean_response_time_ms += (
            event.response_time_ms - self.mean_response_time_ms
        ) / n
        if event.successful:
            self.success_count += 1
        else:
            self.error_count += 1
        self.last_updated_ms = event.timestamp_ms

    @property
    def success_rate(self) -> float:
        return self.success_count / self.count if self.count else 0.0


@dataclass(frozen=True)
class Recommendation:
    """
    One adaptive suggestion.

    ``payload`` keys by kind: switch-method → ``target_modality``,
    ``from_modality``; adjust-timing → ``modality``, ``direction``
    (``'increase'``/``'decrease'``), ``amount_ms``; recalibrate →
    ``modality``, ``accuracy``; suggest-break → ``duration_s``.
    """

    kind: RecommendationKind
    confidence: float
    payload: Mapping[str, Any]
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "confidence": round(self.confidence, 4),
            "payload": {
                k: (v.value if isinstance(v, Modality) else v)
                for k, v in self.payload.items()
            },
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ModalityCapabilities:
    """Static description of what a modality can do."""

    actions: frozenset[ActionKind]
    reliability: Reliability
    requires_calibration: bool
    requires_scanning: bool = False
