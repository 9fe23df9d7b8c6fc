"""Frame classification: the awaited reply versus unsolicited events.

The board has no request ids. While a command is outstanding the first
reply-shaped frame (see :func:`is_reply_candidate`) belongs to it; every
other frame, including INPUT_EVENT pushes and stray replies nobody is
waiting for, goes to the ``frames`` subscribers.
"""

from __future__ import annotations

import asyncio
import logging

from ..events import EventHook, Handler, Subscription
from .parser import is_reply_candidate

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Routes incoming frames to the one reply waiter or to subscribers.

    Only the event loop that owns the client may call ``expect_reply``,
    ``release_reply`` and ``dispatch``. Subscribing is thread safe.
    """

    def __init__(self) -> None:
        self.frames: EventHook[str] = EventHook("frames")
        self._waiter: asyncio.Future[str] | None = None

    def subscribe(self, handler: Handler) -> Subscription[str]:
        return self.frames.subscribe(handler)

    @property
    def awaiting_reply(self) -> bool:
        return self._waiter is not None and not self._waiter.done()

    def expect_reply(self) -> asyncio.Future[str]:
        """Register the one-shot waiter for the next reply frame.

        Must be called before the command is written so a fast reply
        cannot slip past.

        Raises:
            RuntimeError: If another reply is still awaited.
        """
        if self.awaiting_reply:
            raise RuntimeError("A reply is already awaited")
        self._waiter = asyncio.get_running_loop().create_future()
        return self._waiter

    def release_reply(self, waiter: asyncio.Future[str]) -> None:
        """Unregister ``waiter``; cancels it if it never resolved."""
        if self._waiter is waiter:
            self._waiter = None
        if not waiter.done():
            waiter.cancel()

    def dispatch(self, frame: str) -> bool:
        """Classify one frame.

        Returns:
            True if the frame satisfied the reply waiter (and was consumed),
            False if it was published to subscribers.
        """
        waiter = self._waiter
        if waiter is not None and not waiter.done() and is_reply_candidate(frame):
            waiter.set_result(frame)
            logger.debug("Reply: %s", frame)
            return True

        logger.debug("Event: %s", frame)
        self.frames.emit(frame)
        return False
