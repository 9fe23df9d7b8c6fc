"""Publish/subscribe hooks for device notifications.

Each hook keeps its subscribers as an immutable tuple of handles. ``emit``
walks a snapshot of that tuple, so handlers may subscribe or unsubscribe
(from any thread, or from inside a handler) while a dispatch is running.
A handle removed mid-dispatch is skipped; one added mid-dispatch sees the
next emission.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[T], None]


class Subscription(Generic[T]):
    """Handle returned by :meth:`EventHook.subscribe`.

    Call it, or use it as a context manager, to unsubscribe.
    """

    __slots__ = ("_hook", "handler", "active")

    def __init__(self, hook: EventHook[T], handler: Handler) -> None:
        self._hook = hook
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        self._hook._remove(self)

    __call__ = unsubscribe

    def __enter__(self) -> Subscription[T]:
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()


class EventHook(Generic[T]):
    """A named notification channel with any number of subscribers."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._subscriptions: tuple[Subscription[T], ...] = ()

    def __len__(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, handler: Handler) -> Subscription[T]:
        subscription = Subscription(self, handler)
        with self._lock:
            self._subscriptions = self._subscriptions + (subscription,)
        return subscription

    def unsubscribe(self, handler: Handler) -> bool:
        """Remove every subscription of ``handler``. Returns whether any existed."""
        with self._lock:
            matches = [s for s in self._subscriptions if s.handler == handler]
        for subscription in matches:
            self._remove(subscription)
        return bool(matches)

    def _remove(self, subscription: Subscription[T]) -> None:
        with self._lock:
            subscription.active = False
            self._subscriptions = tuple(
                s for s in self._subscriptions if s is not subscription
            )

    def emit(self, payload: T) -> None:
        """Deliver ``payload`` to every current subscriber, in subscription order."""
        for subscription in self._subscriptions:
            if not subscription.active:
                continue
            try:
                subscription.handler(payload)
            except Exception:
                logger.exception("Handler for '%s' failed", self.name)
