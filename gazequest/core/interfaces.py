"""
gazequest/core/interfaces.py — Collaborator protocols.

The presentation layer is external. It supplies raw samples and permission
results, and satisfies these duck-typed protocols so the core can resolve
targets, activate them, speak announcements and persist user settings.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from gazequest.core.logger import get_logger
from gazequest.core.models import TargetRef

_log = get_logger()


@runtime_checkable
class TargetEnvironment(Protocol):
    """Hit-testing and activation surface (canvas picking, a11y tree, ...)."""

    def resolve_target_at(self, x: float, y: float) -> Optional[TargetRef]:
        """Return the topmost eligible target under (x, y), or None."""
        ...

    def list_eligible_targets(self) -> Sequence[TargetRef]:
        """Return currently activatable targets in traversal order."""
        ...

    def activate(self, target: TargetRef) -> None:
        """Perform the target's action."""
        ...


@runtime_checkable
class Announcer(Protocol):
    """Screen-reader style announcement sink."""

    def announce(self, message: str, priority: str = "polite") -> None:
        ...


@runtime_checkable
class SettingsStore(Protocol):
    """Opaque key-value store addressed by dotted paths."""

    def get_setting(self, path: str, default: Any = None) -> Any:
        ...

    def set_setting(self, path: str, value: Any) -> None:
        ...


# ──────────────────────────────────────────────────────────────
# Default implementations
# ──────────────────────────────────────────────────────────────

class InMemorySettingsStore:
    """
    Nested-dict settings store.

    ``set_setting("input.gaze.dwell_time_ms", 1500)`` creates intermediate
    mappings as needed.
    """

    def __init__(self, initial: Optional[dict] = None) -> None:
        self._data: dict = dict(initial or {})

    def get_setting(self, path: str, default: Any = None) -> Any:
        node: Any = self._data
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set_setting(self, path: str, value: Any) -> None:
        parts = path.split(".")
        node = self._data
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value

    def as_dict(self) -> dict:
        return self._data


class LogAnnouncer:
    """Announcer that only writes to the structured log."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def announce(self, message: str, priority: str = "polite") -> None:
        self.messages.append((message, priority))
        _log.info("announcer", "announce", {"message": message, "priority": priority})


class StaticTargetEnvironment:
    """
    Rectangle-based environment for demos and the simulator.

    Args:
        targets: Mapping of :class:`TargetRef` → ``(x, y, width, height)``.
            Later entries are drawn on top of earlier ones.
    """

    def __init__(self, targets: Optional[dict[TargetRef, tuple[float, float, float, float]]] = None) -> None:
        self._rects: dict[TargetRef, tuple[float, float, float, float]] = dict(targets or {})
        self._disabled: set[TargetRef] = set()
        self.activated: list[TargetRef] = []

    def add(self, target: TargetRef, rect: tuple[float, float, float, float]) -> None:
        self._rects[target] = rect

    def set_enabled(self, target: TargetRef, enabled: bool) -> None:
        if enabled:
            self._disabled.discard(target)
        else:
            self._disabled.add(target)

    def resolve_target_at(self, x: float, y: float) -> Optional[TargetRef]:
        hit: Optional[TargetRef] = None
        for target, (rx, ry, rw, rh) in self._rects.items():
            if target in self._disabled:
                continue
            if rx <= x <= rx + rw and ry <= y <= ry + rh:
                hit = target
        return hit

    def list_eligible_targets(self) -> list[TargetRef]:
        return [t for t in self._rects if t not in self._disabled]

    def activate(self, target: TargetRef) -> None:
        self.activated.append(target)
        _log.info("environment", "activate", {"target": target.id})
