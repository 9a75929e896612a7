"""
gazequest/core/session.py — Session-scoped mutable state.

Holds the per-session recommendation counter and the set of modalities whose
calibration is currently running. Passed explicitly into the calibration and
recommendation engines; cleared only by :meth:`SessionContext.reset`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from gazequest.core.constants import C, Modality


@dataclass
class SessionContext:
    """
    Mutable per-session state shared between engines.

    Attributes:
        session_id: Random identifier for log correlation.
        recommendations_issued: Recommendations delivered so far this session.
        max_recommendations: Per-session cap.
        calibrating: Modalities with a calibration protocol in progress.
    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    recommendations_issued: int = 0
    max_recommendations: int = C.MAX_RECOMMENDATIONS_PER_SESSION
    calibrating: set[Modality] = field(default_factory=set)

    @property
    def recommendations_remaining(self) -> int:
        return max(0, self.max_recommendations - self.recommendations_issued)

    def is_calibrating(self, modality: Modality) -> bool:
        return modality in self.calibrating

    def reset(self) -> None:
        """Start a fresh session: new id, counters cleared, no calibration running."""
        self.session_id = uuid.uuid4().hex[:12]
        self.recommendations_issued = 0
        self.calibrating.clear()
