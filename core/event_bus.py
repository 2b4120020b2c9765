"""
Event bus for billing domain events.

Synchronous in-process pub/sub. Handlers execute immediately in the same
thread as the publisher. Handler errors are logged but never propagate:
the primary operation (store write + audit) has already committed.

A subscription to a base event class also receives its subclasses, so
subscribing to QuoteEvent sees every quote event.
"""

import logging
from typing import Callable, Dict, List, Type

from core.events import BillingEvent

logger = logging.getLogger(__name__)


class EventBus:
    """
    In-process event bus for billing domain events.

    Subscribe by event class or class name, publish by event instance.
    Handlers are called synchronously: most specific class first, then in
    subscription order.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    @staticmethod
    def _key(event_type: str | Type[BillingEvent]) -> str:
        return event_type if isinstance(event_type, str) else event_type.__name__

    def subscribe(self, event_type: str | Type[BillingEvent], callback: Callable):
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Event class, or its name (e.g. 'InvoicePaid')
            callback: Function to call with the event when published
        """
        self._subscribers.setdefault(self._key(event_type), []).append(callback)

    def unsubscribe(self, event_type: str | Type[BillingEvent], callback: Callable) -> bool:
        """Remove a subscription. Returns False if it was not registered."""
        callbacks = self._subscribers.get(self._key(event_type), [])
        if callback in callbacks:
            callbacks.remove(callback)
            return True
        return False

    def _callbacks_for(self, event: BillingEvent) -> List[Callable]:
        callbacks = []
        for cls in type(event).__mro__:
            if not (isinstance(cls, type) and issubclass(cls, BillingEvent)):
                continue
            callbacks.extend(self._subscribers.get(cls.__name__, []))
        return callbacks

    def publish(self, event: BillingEvent):
        """
        Publish an event to every subscriber of its class or a base class.

        Args:
            event: BillingEvent instance to publish
        """
        event_type = type(event).__name__

        for callback in self._callbacks_for(event):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    event.event_id,
                )
