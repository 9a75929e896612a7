"""
gazequest/modalities/base.py — Common adapter contract for every input channel.

Every device adapter exposes the same capability set so the controller,
acquisition machines and tracker treat all modalities uniformly::

    is_available() → init() → activate() ⇄ deactivate()

Events leave an adapter only through its emit sink and only while active.
Sensor availability (hardware presence, permission results) is reported by
the presentation layer through :meth:`BaseModality.set_availability`.
"""

from __future__ import annotations

from typing import Callable, ClassVar, Optional, Protocol, runtime_checkable

from gazequest.core.constants import Modality
from gazequest.core.errors import SensorUnavailableError
from gazequest.core.interfaces import Announcer
from gazequest.core.logger import get_logger
from gazequest.core.models import InputEvent, ModalityCapabilities
from gazequest.core.scheduler import Scheduler, TimerGroup

_log = get_logger()

EmitFn = Callable[[InputEvent], None]


@runtime_checkable
class ModalityAdapter(Protocol):
    """Structural contract satisfied by every modality."""

    modality: ClassVar[Modality]
    capabilities: ClassVar[ModalityCapabilities]

    def is_available(self) -> bool: ...

    def init(self) -> None: ...

    def activate(self) -> None: ...

    def deactivate(self) -> None: ...

    @property
    def is_active(self) -> bool: ...


class BaseModality:
    """
    Shared lifecycle plumbing for adapters.

    Subclasses set :attr:`modality` and :attr:`capabilities` and override
    the ``_on_activate`` / ``_on_deactivate`` hooks.

    Args:
        emit: Event sink (usually ``InputEventBus.publish``).
        scheduler: Timer source; every timer goes through :attr:`timers`
            so deactivation can cancel it.
        announcer: Optional announcement sink.
        available: Initial sensor availability.
    """

    modality: ClassVar[Modality]
    capabilities: ClassVar[ModalityCapabilities]
    activation_message: ClassVar[str] = ""

    def __init__(
        self,
        emit: EmitFn,
        scheduler: Scheduler,
        announcer: Optional[Announcer] = None,
        available: bool = True,
    ) -> None:
        self._emit_fn = emit
        self._scheduler = scheduler
        self._announcer = announcer
        self._available = available
        self._unavailable_detail = ""
        self._initialized = False
        self._active = False
        self._unavailable_reported = False
        self.timers = TimerGroup(scheduler)

    # ──────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def is_available(self) -> bool:
        return self._available

    def set_availability(self, available: bool, detail: str = "") -> None:
        """Record a sensor/permission result from the presentation layer."""
        self._available = available
        self._unavailable_detail = "" if available else detail
        if available:
            self._unavailable_reported = False
        elif self._active:
            self.deactivate()

    def init(self) -> None:
        """
        Prepare the adapter.

        Raises:
            SensorUnavailableError: The sensor is missing or permission was
                denied. Announced once until availability changes.
        """
        if not self._available:
            self._initialized = False
            self._report_unavailable()
            raise SensorUnavailableError(self.modality, self._unavailable_detail)
        if not self._initialized:
            self._initialized = True
            _log.info(self.modality.value, "initialized", {})

    def activate(self) -> None:
        """Start emitting events. Initialises first if needed."""
        if self._active:
            return
        self.init()
        self._active = True
        self._on_activate()
        _log.info(self.modality.value, "activated", {})
        if self.activation_message:
            self._announce(self.activation_message)

    def deactivate(self) -> None:
        """Stop emitting and cancel every pending timer of this modality."""
        if not self._active:
            return
        self._active = False
        self.timers.cancel_all()
        self._on_deactivate()
        _log.info(self.modality.value, "deactivated", {})

    # ──────────────────────────────────────────
    # Hooks
    # ──────────────────────────────────────────

    def _on_activate(self) -> None:
        pass

    def _on_deactivate(self) -> None:
        pass

    # ──────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────

    def emit(self, event: InputEvent) -> None:
        """Forward *event* to the sink if the adapter is active."""
        if not self._active:
            _log.debug(self.modality.value, "event_dropped_inactive", {"kind": event.kind.value})
            return
        self._emit_fn(event)

    def now_ms(self) -> float:
        return self._scheduler.now_ms()

    def _announce(self, message: str, priority: str = "polite") -> None:
        if self._announcer is not None:
            self._announcer.announce(message, priority)

    def _report_unavailable(self) -> None:
        if self._unavailable_reported:
            return
        self._unavailable_reported = True
        _log.warn(self.modality.value, "sensor_unavailable", {"detail": self._unavailable_detail})
        self._announce(
            f"{self.modality.value.capitalize()} input is unavailable"
            + (f": {self._unavailable_detail}." if self._unavailable_detail else "."),
            priority="assertive",
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(available={self._available}, "
            f"active={self._active})"
        )
