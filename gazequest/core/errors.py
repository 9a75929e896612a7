"""
gazequest/core/errors.py — Exception hierarchy for the input core.

Nothing here is fatal to the process: every error degrades a single modality
or a single recommendation. Invalid samples and subscriber faults are counted
and logged rather than raised; zero-sample calibration is not an error at all.
"""

from __future__ import annotations

from typing import Optional

from gazequest.core.constants import Modality


class GazeQuestError(Exception):
    """Base class for all input-core errors."""


class SensorUnavailableError(GazeQuestError):
    """
    Raised when a modality's sensor is missing or permission was denied.

    Surfaced once at activation; the modality stays inert until activation
    is re-attempted.

    Args:
        modality: The modality that could not be activated.
        detail: Optional human-readable cause (e.g. ``'permission denied'``).
    """

    def __init__(self, modality: Modality, detail: str = "") -> None:
        self.modality = modality
        self.detail = detail
        super().__init__(
            f"{modality.value} sensor unavailable"
            + (f": {detail}" if detail else "")
        )


class ConcurrentCalibrationError(GazeQuestError):
    """
    Raised when a calibration is requested while one is already running.

    Recoverable — the running session continues unaffected.
    """

    def __init__(self, modality: Modality) -> None:
        self.modality = modality
        super().__init__(f"calibration already running for {modality.value}")


class CalibrationNotSupportedError(GazeQuestError):
    """Raised when calibration is requested for a modality with no protocol."""

    def __init__(self, modality: Modality) -> None:
        self.modality = modality
        super().__init__(f"{modality.value} has no calibration protocol")


class InvalidTransitionError(GazeQuestError, RuntimeError):
    """
    Raised when a requested state-machine transition is not in the valid map.

    Args:
        machine: Name of the machine that rejected the transition.
        from_state: Current state name at the time of the illegal attempt.
        to_state: Requested (invalid) target state name.
        reason: Caller-supplied reason string.
    """

    def __init__(
        self,
        machine: str,
        from_state: str,
        to_state: str,
        reason: str = "",
    ) -> None:
        self.machine = machine
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        super().__init__(
            f"{machine}: invalid transition {from_state} → {to_state}"
            + (f" (reason: {reason})" if reason else "")
        )


class UnknownModalityError(GazeQuestError, KeyError):
    """Raised when an operation names a modality that is not registered."""

    def __init__(self, modality: Modality, detail: Optional[str] = None) -> None:
        self.modality = modality
        super().__init__(detail or f"modality {modality.value} is not registered")


class ConfigError(GazeQuestError, ValueError):
    """Raised by the config loader for malformed or out-of-range values."""
