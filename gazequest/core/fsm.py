"""
gazequest/core/fsm.py — Validated finite state machine base.

Each acquisition machine owns one :class:`StateMachine` built from an explicit
transition map. Illegal transitions raise :class:`InvalidTransitionError`, an
optional ``on_transition`` callback observes every change, and the last 50
transitions are retained for inspection.

All machines run on the cooperative scheduler thread, so no locking is done.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Generic, Mapping, TypeVar

from gazequest.core.errors import InvalidTransitionError

logger = logging.getLogger(__name__)

S = TypeVar("S", bound=Enum)

# Maximum number of transition records kept in history
_MAX_HISTORY = 50


class StateMachine(Generic[S]):
    """
    Finite state machine with an explicit validated transition map.

    Args:
        name: Machine name used in logs and errors (e.g. ``'dwell:gaze'``).
        initial: Initial state.
        transitions: Mapping of state → allowed target states.
        on_transition: Optional callback invoked after every successful
            transition with signature ``(from_state, to_state, reason)``.
        clock: Optional zero-argument callable returning the current time in
            ms; used to timestamp history records.
    """

    def __init__(
        self,
        name: str,
        initial: S,
        transitions: Mapping[S, tuple[S, ...]],
        on_transition: Callable[[S, S, str], None] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._name = name
        self._initial = initial
        self._state: S = initial
        self._transitions = transitions
        self._history: list[dict] = []
        self._external_callback = on_transition
        self._clock = clock or (lambda: 0.0)
        self._last_transition: dict | None = None

        logger.debug("%s initialised in state: %s", name, initial.value)

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    @property
    def name(self) -> str:
        return self._name

    @property
    def current_state(self) -> S:
        """Return the current state."""
        return self._state

    def transition(self, new_state: S, reason: str = "") -> None:
        """
        Attempt a validated state transition.

        Records the transition in history and notifies the external callback.

        Args:
            new_state: Target state to transition to.
            reason: Human-readable reason for the transition.

        Raises:
            InvalidTransitionError: If the transition is not in the valid map.
        """
        from_state = self._state
        if new_state not in self._transitions.get(from_state, ()):
            raise InvalidTransitionError(
                self._name, from_state.value, new_state.value, reason
            )

        self._state = new_state
        self._record(from_state, new_state, reason)

        logger.debug(
            "%s: %s → %s%s",
            self._name,
            from_state.value,
            new_state.value,
            f" [{reason}]" if reason else "",
        )

        if self._external_callback is not None:
            try:
                self._external_callback(from_state, new_state, reason)
            except Exception as exc:  # noqa: BLE001
                logger.warning("%s external callback raised: %s", self._name, exc)

    def reset(self, reason: str = "RESET") -> None:
        """
        Force the machine back to its initial state unconditionally.

        Bypasses the transition map (does NOT raise InvalidTransitionError).
        """
        from_state = self._state
        if from_state is self._initial:
            return
        self._state = self._initial
        self._record(from_state, self._initial, reason)
        logger.debug("%s: RESET from %s", self._name, from_state.value)

    def can_transition(self, target: S) -> bool:
        """Return True if a transition to ``target`` is currently valid."""
        return target in self._transitions.get(self._state, ())

    def get_history(self) -> list[dict]:
        """
        Return a copy of the last (up to 50) transition records.

        Each record is a dict with keys ``from``, ``to``, ``reason`` and
        ``timestamp_ms``, oldest first.
        """
        return list(self._history)

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    def _record(self, from_state: S, to_state: S, reason: str) -> None:
        record = {
            "from": from_state.value,
            "to": to_state.value,
            "reason": reason,
            "timestamp_ms": self._clock(),
        }
        self._history.append(record)
        if len(self._history) > _MAX_HISTORY:
            self._history.pop(0)
        self._last_transition = record

    def __repr__(self) -> str:
        if self._last_transition:
            last = f"{self._last_transition['from']}→{self._last_transition['to']}"
        else:
            last = "none"
        return f"StateMachine({self._name}, state={self._state.value}, last={last})"
