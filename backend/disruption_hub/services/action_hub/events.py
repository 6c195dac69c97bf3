"""
Action Item events

Published by the store after a mutation has committed. Subscribers (e.g. a
real-time push fan-out) register here; the store does not know who listens.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionItemEvent:
    kind: str                      # flag, follow, status, note, guests, notify_guests, notify_team, escalate, delete
    action_item_id: str
    alert_id: str
    user_id: str
    actor_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=datetime.utcnow)


Subscriber = Callable[[ActionItemEvent], None]


class ActionItemEventBus:
    """In-process synchronous publish/subscribe."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def publish(self, event: ActionItemEvent) -> None:
        # The mutation is already committed; a failing subscriber must not undo it
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as e:
                logger.error(f"Event subscriber failed for {event.kind} on {event.action_item_id}: {e}")


event_bus = ActionItemEventBus()
