"""
In-memory change notification buses.

One ``ChangeBus`` exists per data domain (expenses, groups, notifications).
A publish carries no payload; it only tells subscribers that the domain's
data changed and they should refetch. Delivery is synchronous, in
registration order, and never interleaves two publishes: a publish issued
from inside a handler is queued until the current delivery finishes.
"""

from __future__ import annotations

from collections import deque
from typing import Callable, Deque, List, Optional

import structlog

logger = structlog.get_logger(__name__)

ChangeHandler = Callable[[], None]


def _handler_name(handler) -> str:
    return getattr(handler, "__qualname__", repr(handler))


class Subscription:
    """Handle returned by :meth:`ChangeBus.subscribe`."""

    def __init__(self, bus: "ChangeBus", handler: ChangeHandler):
        self._bus = bus
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        """Stop delivery to this handler. Safe to call more than once."""
        if not self.active:
            return
        self.active = False
        self._bus._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()


class ChangeBus:
    """Broadcast channel announcing "my underlying data changed"."""

    def __init__(self, name: str):
        self.name = name
        self._subscriptions: List[Subscription] = []
        self._pending: Deque[int] = deque()
        self._delivering = False
        self.published_count = 0
        self.delivered_count = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, handler: ChangeHandler) -> Subscription:
        """Register ``handler`` to be called with no arguments on every publish."""
        subscription = Subscription(self, handler)
        self._subscriptions.append(subscription)
        logger.debug(
            "Change bus subscription added", bus=self.name, subscribers=self.subscriber_count
        )
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            return
        logger.debug(
            "Change bus subscription removed", bus=self.name, subscribers=self.subscriber_count
        )

    def publish(self) -> None:
        """Announce a change to every current subscriber."""
        self.published_count += 1
        self._pending.append(self.published_count)

        if self._delivering:
            # Re-entrant publish: the outer loop below delivers it next.
            logger.debug("Change signal queued", bus=self.name, sequence=self.published_count)
            return

        self._delivering = True
        try:
            while self._pending:
                self._deliver(self._pending.popleft())
        finally:
            self._delivering = False

    def _deliver(self, sequence: int) -> None:
        # Snapshot: handlers subscribed during this delivery start with the next signal.
        targets = list(self._subscriptions)
        logger.debug(
            "Delivering change signal", bus=self.name, sequence=sequence, targets=len(targets)
        )

        for subscription in targets:
            if not subscription.active:
                continue
            try:
                subscription.handler()
                self.delivered_count += 1
            except Exception as e:
                logger.error(
                    "Change handler failed",
                    bus=self.name,
                    sequence=sequence,
                    handler=_handler_name(subscription.handler),
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def clear(self) -> None:
        """Cancel every subscription."""
        for subscription in list(self._subscriptions):
            subscription.unsubscribe()


class ChangeBusRegistry:
    """The process-scoped set of buses, one per data domain."""

    def __init__(self):
        self.expenses = ChangeBus("expenses")
        self.groups = ChangeBus("groups")
        self.notifications = ChangeBus("notifications")

    def all(self) -> List[ChangeBus]:
        return [self.expenses, self.groups, self.notifications]

    def close(self) -> None:
        for bus in self.all():
            bus.clear()


_registry: Optional[ChangeBusRegistry] = None


def get_change_buses() -> ChangeBusRegistry:
    """Get the process-wide bus registry, creating it on first use."""
    global _registry
    if _registry is None:
        _registry = ChangeBusRegistry()
    return _registry


def reset_change_buses() -> None:
    """Tear down the process-wide registry. The next call to get_change_buses starts fresh."""
    global _registry
    if _registry is not None:
        _registry.close()
    _registry = None
