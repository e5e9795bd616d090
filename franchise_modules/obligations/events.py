"""
Obligation Events (``franchise_modules.obligations.events``).

Responsibility
--------------
Event type names, the ``ObligationEvent`` payload and an in-process
``ObligationEventPublisher`` that routes events to subscriber callables
(notification senders, dashboards, audit sinks).

Architecture position
---------------------
**Modules layer** -- outbound interface.  ``ObligationService`` publishes
only after its transaction commits, so subscribers never observe a state
that was rolled back.

Dispatch behavior
-----------------
1. Look up subscribers by event type (plus wildcard subscribers).
2. Call them in registration order.
3. A failing subscriber is logged with its traceback and counted; the
   remaining subscribers still run.  The committed obligation change is
   never undone by a subscriber failure.
"""

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from franchise_kernel.logging_config import get_logger

logger = get_logger("modules.obligations.events")

OBLIGATION_CREATED = "obligation.created"
OBLIGATION_PAID = "obligation.paid"
OBLIGATION_OVERDUE = "obligation.overdue"
OBLIGATION_DISPUTED = "obligation.disputed"
OBLIGATION_CANCELLED = "obligation.cancelled"
OBLIGATION_REFUNDED = "obligation.refunded"

EVENT_TYPES = frozenset({
    OBLIGATION_CREATED,
    OBLIGATION_PAID,
    OBLIGATION_OVERDUE,
    OBLIGATION_DISPUTED,
    OBLIGATION_CANCELLED,
    OBLIGATION_REFUNDED,
})

ALL_EVENTS = "*"


@dataclass(frozen=True)
class ObligationEvent:
    """A committed change to an obligation."""
    event_type: str
    obligation_id: UUID
    obligation_number: str
    franchise_id: UUID
    occurred_at: datetime
    actor_id: UUID | None = None
    payload: dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[ObligationEvent], None]


@dataclass
class DispatchResult:
    event_type: str
    notified: int = 0
    failed: int = 0


class ObligationEventPublisher:
    """
    Routes obligation events to subscribers.

    Usage:
        publisher = ObligationEventPublisher()
        publisher.subscribe(OBLIGATION_PAID, send_receipt_email)
        publisher.subscribe(ALL_EVENTS, audit_sink.record)
    """

    def __init__(self):
        self._subscribers: dict[str, list[Subscriber]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: Subscriber) -> None:
        if event_type != ALL_EVENTS and event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown obligation event type: {event_type}")
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: Subscriber) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def subscribers_for(self, event_type: str) -> tuple[Subscriber, ...]:
        return tuple(self._subscribers.get(event_type, ())) + tuple(
            self._subscribers.get(ALL_EVENTS, ())
        )

    def publish(self, event: ObligationEvent) -> DispatchResult:
        result = DispatchResult(event_type=event.event_type)
        for handler in self.subscribers_for(event.event_type):
            handler_name = getattr(handler, "__qualname__", repr(handler))
            try:
                handler(event)
                result.notified += 1
            except Exception:
                result.failed += 1
                logger.error(
                    "obligation_event_subscriber_failed",
                    extra={
                        "event_type": event.event_type,
                        "obligation_id": str(event.obligation_id),
                        "handler": handler_name,
                    },
                    exc_info=True,
                )

        logger.info(
            "obligation_event_published",
            extra={
                "event_type": event.event_type,
                "obligation_id": str(event.obligation_id),
                "obligation_number": event.obligation_number,
                "subscribers_notified": result.notified,
                "subscribers_failed": result.failed,
            },
        )
        return result
