"""Outbound events produced by wizard transitions.

Transitions never send emails or analytics themselves. They return
:class:`WizardEvent` values that an :class:`EventDispatcher` drains to the
registered handlers; handler failures are logged and do not affect
navigation.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Callable, Iterable, Mapping

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    FORM_STARTED = "form_started"
    STEP_COMPLETED = "step_completed"
    SERVICES_PRESELECTED = "services_preselected"
    ACCOUNT_CREATED = "account_created"
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_CANCELLED = "payment_cancelled"
    FORM_ABANDONED = "form_abandoned"


@dataclass(frozen=True)
class WizardEvent:
    type: EventType
    session_id: str
    payload: Mapping[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


EventHandler = Callable[[WizardEvent], None]


class EventDispatcher:
    """Fan events out to handlers registered per event type."""

    def __init__(self) -> None:
        self._handlers: dict[EventType | None, list[EventHandler]] = {}
        self._history: deque[WizardEvent] = deque(maxlen=200)

    @property
    def history(self) -> tuple[WizardEvent, ...]:
        return tuple(self._history)

    def register(self, handler: EventHandler, *, event_type: EventType | None = None) -> None:
        """Register ``handler`` for ``event_type`` (``None`` means every event)."""

        self._handlers.setdefault(event_type, []).append(handler)

    def drain(self, events: Iterable[WizardEvent]) -> int:
        """Deliver ``events`` and return how many handler calls failed."""

        failures = 0
        for event in events:
            self._history.append(event)
            handlers = [*self._handlers.get(event.type, []), *self._handlers.get(None, [])]
            for handler in handlers:
                try:
                    handler(event)
                except Exception:
                    failures += 1
                    logger.exception("Event handler failed for %s", event.type)
        return failures


def log_event(event: WizardEvent) -> None:
    """Default handler writing events to the application log."""

    logger.info("wizard event %s session=%s %s", event.type, event.session_id, dict(event.payload))


__all__ = ["EventDispatcher", "EventHandler", "EventType", "WizardEvent", "log_event"]
