"""
gazequest/events/bus.py — Synchronous InputEvent bus.

Delivery is synchronous, in publish order, to a snapshot of the subscribers
registered at publish time. A raising handler is caught and logged as a
subscriber fault; the remaining handlers still receive the event. Nothing is
persisted.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Callable, Optional

from gazequest.core.constants import Modality
from gazequest.core.logger import get_logger
from gazequest.core.models import InputEvent

_log = get_logger()

Handler = Callable[[InputEvent], None]


@dataclass(frozen=True)
class SubscriptionToken:
    """Opaque handle returned by :meth:`InputEventBus.subscribe`."""

    id: int


class InputEventBus:
    """Fan-out of InputEvents to registered handlers."""

    def __init__(self) -> None:
        self._subscribers: dict[SubscriptionToken, tuple[Handler, Optional[frozenset[Modality]]]] = {}
        self._ids = itertools.count(1)
        self.published_count = 0
        self.fault_count = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(
        self,
        handler: Handler,
        modalities: Optional[set[Modality] | frozenset[Modality]] = None,
    ) -> SubscriptionToken:
        """
        Register *handler* for every published event.

        Args:
            handler: Callable ``(event) → None``.
            modalities: Optional filter; only events from these modalities
                are delivered.

        Returns:
            Token for :meth:`unsubscribe`.
        """
        token = SubscriptionToken(next(self._ids))
        self._subscribers[token] = (handler, frozenset(modalities) if modalities else None)
        _log.debug("bus", "subscribed", {
            "token": token.id,
            "modalities": sorted(m.value for m in modalities) if modalities else None,
        })
        return token

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        """Remove a subscription. Returns False if the token was unknown."""
        removed = self._subscribers.pop(token, None) is not None
        if removed:
            _log.debug("bus", "unsubscribed", {"token": token.id})
        return removed

    def publish(self, event: InputEvent) -> None:
        """
        Deliver *event* to every current subscriber.

        Subscribers added or removed by a handler take effect from the next
        publish.
        """
        self.published_count += 1
        snapshot = list(self._subscribers.items())
        for token, (handler, modalities) in snapshot:
            if modalities is not None and event.modality not in modalities:
                continue
            try:
                handler(event)
            except Exception as exc:  # noqa: BLE001
                self.fault_count += 1
                _log.error("bus", "subscriber_fault", {
                    "token": token.id,
                    "event": event.kind.value,
                    "modality": event.modality.value,
                    "error": str(exc),
                })

    def clear(self) -> None:
        self._subscribers.clear()
