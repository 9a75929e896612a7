"""
gazequest/adaptive/recommender.py — Rule-based adaptive recommendations.

Analyses the most recent input events and proposes at most two
recommendations per call (five per session):

switch-method
    Another modality's weighted score beats the active one by more than the
    adaptation threshold. Score = 0.4·accuracy + 0.3·success rate +
    0.2·(1 − min(rt/1000, 1)) + 0.1·context usage ratio.
adjust-timing
    The active modality errs often while responding fast (slow it down) or
    rarely errs while responding slowly (speed it up).
recalibrate
    A calibration-dependent modality's trailing accuracy dropped below 0.6.
fatigue
    Above the fatigue threshold, switch an unreliable modality to keyboard,
    or suggest a break when already on a reliable one.

Candidates below the confidence threshold are discarded. The per-session
cap lives in the shared :class:`SessionContext`.
"""

from __future__ import annotations

import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Optional, Sequence

from gazequest.adaptive.tracker import context_key
from gazequest.core.config import AdaptiveConfig
from gazequest.core.constants import C, Modality, RecommendationKind
from gazequest.core.logger import get_logger
from gazequest.core.models import InputEvent, Recommendation
from gazequest.core.session import SessionContext

_log = get_logger()

_FATIGUE_SLOT_MS = 5 * 60 * 1000.0
_MAX_SESSION_SUMMARIES = 50
_MAX_SLOT_HISTORY = 20
_TIMING_MIN_EVENTS = 5


@dataclass(frozen=True)
class FatigueContext:
    """
    Situation the analysis runs in.

    Attributes:
        fatigue: Estimated user fatigue in [0, 1].
        scene: Current scene name (context key).
        hour: Local hour of day (context key).
        active_modality: Explicit active modality; inferred from the history
            when None.
    """

    fatigue: float = 0.0
    scene: Optional[str] = None
    hour: int = 12
    active_modality: Optional[Modality] = None

    @property
    def key(self) -> str:
        return context_key(self.scene, self.hour)


@dataclass
class MethodMetrics:
    average_accuracy: float
    average_response_time_ms: float
    success_rate: float
    error_rate: float
    total_events: int
    last_updated_ms: float


@dataclass
class FatiguePattern:
    accuracy_history: deque = field(default_factory=lambda: deque(maxlen=_MAX_SLOT_HISTORY))
    response_time_history: deque = field(default_factory=lambda: deque(maxlen=_MAX_SLOT_HISTORY))
    samples: int = 0


@dataclass(frozen=True)
class SessionSummary:
    timestamp_ms: float
    context: str
    event_count: int
    modalities: tuple[Modality, ...]
    average_accuracy: float
    average_response_time_ms: float
    fatigue: float


@dataclass
class UserProfile:
    """What the engine has learned about the player."""

    performance_metrics: dict[Modality, MethodMetrics] = field(default_factory=dict)
    input_preferences: dict[str, Counter] = field(default_factory=dict)
    fatigue_patterns: dict[int, FatiguePattern] = field(default_factory=dict)
    session_data: deque = field(default_factory=lambda: deque(maxlen=_MAX_SESSION_SUMMARIES))
    adaptation_history: list[Recommendation] = field(default_factory=list)


def primary_modality(events: Sequence[InputEvent], window: int = 10) -> Optional[Modality]:
    """
    Most frequent modality among the last *window* events.

    Ties go to the modality used most recently.
    """
    recent = list(events)[-window:]
    if not recent:
        return None
    counts = Counter(e.modality for e in recent)
    best = max(counts.values())
    for event in reversed(recent):
        if counts[event.modality] == best:
            return event.modality
    return None


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class AdaptiveRecommendationEngine:
    """
    Learns from input history and proposes setting or method changes.

    Args:
        config: Thresholds and caps.
        session: Shared session context holding the per-session cap.
    """

    def __init__(
        self,
        config: Optional[AdaptiveConfig] = None,
        session: Optional[SessionContext] = None,
    ) -> None:
        self._cfg = config or AdaptiveConfig()
        self._session = session or SessionContext(max_recommendations=self._cfg.max_per_session)
        self._session.max_recommendations = self._cfg.max_per_session
        self.profile = UserProfile()

    @property
    def session(self) -> SessionContext:
        return self._session

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def analyze(
        self,
        history: Sequence[InputEvent],
        context: Optional[FatigueContext] = None,
    ) -> list[Recommendation]:
        """
        Produce filtered, capped recommendations.

        Args:
            history: Input events, oldest first.
            context: Fatigue and context information.

        Returns:
            Up to two recommendations, highest confidence first. Empty with
            fewer than ``min_history`` events or when the session cap is spent.
        """
        t0 = time.perf_counter()
        candidates = self.generate_candidates(history, context)
        selected = self._filter(candidates)
        if selected:
            self.profile.adaptation_history.extend(selected)
            _log.perf("adaptive", "analyze", (time.perf_counter() - t0) * 1000.0, {
                "candidates": len(candidates),
                "selected": [r.kind.value for r in selected],
                "issued": self._session.recommendations_issued,
            })
        return selected

    def generate_candidates(
        self,
        history: Sequence[InputEvent],
        context: Optional[FatigueContext] = None,
    ) -> list[Recommendation]:
        """
        Unfiltered candidates for the current history.

        Updates the learned profile but never touches the session cap.
        """
        ctx = context or FatigueContext()
        if len(history) < self._cfg.min_history:
            return []
        recent = list(history)[-self._cfg.analysis_window:]
        self._update_profile(recent, ctx)

        active = ctx.active_modality or primary_modality(recent)
        if active is None:
            return []

        candidates: list[Recommendation] = []
        switch = self._switch_candidate(active, ctx)
        timing = self._timing_candidate(recent, active)
        recal = self._recalibration_candidate(recent, active)
        fatigue = self._fatigue_candidate(active, ctx)

        if fatigue is not None and fatigue.kind is RecommendationKind.SWITCH_METHOD:
            switch = None
        for rec in (switch, timing, recal, fatigue):
            if rec is not None:
                candidates.append(rec)
        return candidates

    def recommend_method(
        self,
        history: Sequence[InputEvent],
        context: Optional[FatigueContext] = None,
    ) -> Optional[Recommendation]:
        """Best switch-method candidate above the confidence threshold, if any."""
        switches = [
            r for r in self.generate_candidates(history, context)
            if r.kind is RecommendationKind.SWITCH_METHOD
            and r.confidence >= self._cfg.confidence_threshold
        ]
        return max(switches, key=lambda r: r.confidence, default=None)

    def method_score(self, modality: Modality, context_key: str) -> float:
        """Weighted score of *modality* in *context_key* (0 if never seen)."""
        perf = self.profile.performance_metrics.get(modality)
        if perf is None:
            return 0.0
        prefs = self.profile.input_preferences.get(context_key, Counter())
        total = sum(prefs.values())
        usage_ratio = prefs.get(modality, 0) / total if total else 0.0
        return (
            perf.average_accuracy * 0.4
            + perf.success_rate * 0.3
            + (1.0 - min(perf.average_response_time_ms / 1000.0, 1.0)) * 0.2
            + usage_ratio * 0.1
        )

    def summary(self) -> dict:
        """Learned-profile summary for dashboards and logs."""
        totals: Counter = Counter()
        for prefs in self.profile.input_preferences.values():
            totals.update(prefs)
        metrics = list(self.profile.performance_metrics.values())
        average = None
        if metrics:
            average = {
                "accuracy": _mean([m.average_accuracy for m in metrics]),
                "response_time_ms": _mean([m.average_response_time_ms for m in metrics]),
                "success_rate": _mean([m.success_rate for m in metrics]),
            }
        return {
            "total_sessions": len(self.profile.session_data),
            "preferred_methods": [m.value for m, _ in totals.most_common(3)],
            "average_performance": average,
            "adaptation_count": len(self.profile.adaptation_history),
            "fatigue_slots": len(self.profile.fatigue_patterns),
        }

    # ──────────────────────────────────────────
    # Profile learning
    # ──────────────────────────────────────────

    def _update_profile(self, events: list[InputEvent], ctx: FatigueContext) -> None:
        by_modality: dict[Modality, list[InputEvent]] = {}
        for event in events:
            by_modality.setdefault(event.modality, []).append(event)

        for modality, evs in by_modality.items():
            errors = sum(1 for e in evs if not e.successful)
            self.profile.performance_metrics[modality] = MethodMetrics(
                average_accuracy=_mean([e.accuracy for e in evs]),
                average_response_time_ms=_mean([e.response_time_ms for e in evs]),
                success_rate=(len(evs) - errors) / len(evs),
                error_rate=errors / len(evs),
                total_events=len(evs),
                last_updated_ms=evs[-1].timestamp_ms,
            )

        prefs = self.profile.input_preferences.setdefault(ctx.key, Counter())
        prefs.update(e.modality for e in events)

        slots: dict[int, list[InputEvent]] = {}
        for event in events:
            slots.setdefault(int(event.timestamp_ms // _FATIGUE_SLOT_MS), []).append(event)
        for slot, evs in slots.items():
            pattern = self.profile.fatigue_patterns.setdefault(slot, FatiguePattern())
            pattern.accuracy_history.append(_mean([e.accuracy for e in evs]))
            pattern.response_time_history.append(_mean([e.response_time_ms for e in evs]))
            pattern.samples += 1

        self.profile.session_data.append(SessionSummary(
            timestamp_ms=events[-1].timestamp_ms,
            context=ctx.key,
            event_count=len(events),
            modalities=tuple(dict.fromkeys(e.modality for e in events)),
            average_accuracy=_mean([e.accuracy for e in events]),
            average_response_time_ms=_mean([e.response_time_ms for e in events]),
            fatigue=ctx.fatigue,
        ))

    # ──────────────────────────────────────────
    # Candidate rules
    # ──────────────────────────────────────────

    def _switch_candidate(self, active: Modality, ctx: FatigueContext) -> Optional[Recommendation]:
        current_score = self.method_score(active, ctx.key)
        best, best_score = active, current_score
        others = sorted(
            (m for m in self.profile.performance_metrics if m is not active),
            key=lambda m: C.MODALITY_PRIORITY.get(m, 99),
        )
        for modality in others:
            score = self.method_score(modality, ctx.key)
            if score > best_score + self._cfg.adaptation_threshold:
                best, best_score = modality, score
        if best is active:
            return None
        return Recommendation(
            kind=RecommendationKind.SWITCH_METHOD,
            confidence=min(best_score - current_score, 1.0),
            payload={"from_modality": active, "target_modality": best},
            reason="performance_optimization",
        )

    def _timing_candidate(self, events: list[InputEvent], active: Modality) -> Optional[Recommendation]:
        evs = [e for e in events if e.modality is active]
        if len(evs) < _TIMING_MIN_EVENTS:
            return None
        mean_rt = _mean([e.response_time_ms for e in evs])
        error_rate = sum(1 for e in evs if not e.successful) / len(evs)

        if error_rate > 0.3 and mean_rt < 500:
            return Recommendation(
                kind=RecommendationKind.ADJUST_TIMING,
                confidence=min(error_rate, 1.0),
                payload={
                    "modality": active,
                    "direction": "increase",
                    "amount_ms": min(500.0, error_rate * 1000.0),
                },
                reason="reduce_errors",
            )
        if error_rate < 0.1 and mean_rt > 2000:
            return Recommendation(
                kind=RecommendationKind.ADJUST_TIMING,
                confidence=min(1.0 - error_rate, 1.0),
                payload={
                    "modality": active,
                    "direction": "decrease",
                    "amount_ms": min(500.0, (mean_rt - 1000.0) * 0.5),
                },
                reason="improve_speed",
            )
        return None

    def _recalibration_candidate(self, events: list[InputEvent], active: Modality) -> Optional[Recommendation]:
        if not C.requires_calibration(active):
            return None
        evs = [e for e in events if e.modality is active][-C.RECALIBRATE_WINDOW:]
        if not evs:
            return None
        accuracy = _mean([e.accuracy for e in evs])
        if accuracy >= C.RECALIBRATE_ACCURACY:
            return None
        return Recommendation(
            kind=RecommendationKind.RECALIBRATE,
            confidence=1.0 - accuracy,
            payload={"modality": active, "accuracy": accuracy},
            reason="accuracy_degradation",
        )

    def _fatigue_candidate(self, active: Modality, ctx: FatigueContext) -> Optional[Recommendation]:
        if ctx.fatigue <= self._cfg.fatigue_threshold:
            return None
        if active not in C.RELIABLE_MODALITIES:
            return Recommendation(
                kind=RecommendationKind.SWITCH_METHOD,
                confidence=min(ctx.fatigue, 1.0),
                payload={"from_modality": active, "target_modality": Modality.KEYBOARD},
                reason="fatigue_management",
            )
        return Recommendation(
            kind=RecommendationKind.SUGGEST_BREAK,
            confidence=min(ctx.fatigue, 1.0),
            payload={"duration_s": min(C.MAX_BREAK_S, ctx.fatigue * 600.0)},
            reason="high_fatigue",
        )

    # ──────────────────────────────────────────
    # Filtering
    # ──────────────────────────────────────────

    def _filter(self, candidates: list[Recommendation]) -> list[Recommendation]:
        remaining = self._session.recommendations_remaining
        if remaining <= 0:
            if candidates:
                _log.debug("adaptive", "session_cap_reached", {
                    "issued": self._session.recommendations_issued,
                })
            return []
        kept = [r for r in candidates if r.confidence >= self._cfg.confidence_threshold]
        kept.sort(key=lambda r: r.confidence, reverse=True)
        selected = kept[:min(self._cfg.max_per_call, remaining)]
        self._session.recommendations_issued += len(selected)
        return selected
