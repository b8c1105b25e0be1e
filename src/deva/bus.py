"""Event Bus - in-process publish/subscribe channel shared by agents.

This module provides the EventBus class which is the only channel agents
use to reach each other:
- talk/listen/once/ignore by string topic
- Synchronous delivery in subscription order
- Awaitable handler results scheduled on the running event loop

A parent agent hands its bus to every child, so one bus instance is shared
by reference across a whole agent tree.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


class EventBus:
    """Topic keyed publish/subscribe channel.

    Example:
        bus = EventBus()
        bus.listen("state", lambda event: print(event["state"]))
        bus.talk("state", {"state": "START"})
    """

    def __init__(self, max_listeners: int = 0):
        """Initialize bus.

        Args:
            max_listeners: Per-topic subscriber count above which a warning is
                logged (0 disables the check)
        """
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)
        self._max_listeners = max_listeners
        self._warned: set[str] = set()
        self._tasks: set[asyncio.Future] = set()

    @property
    def max_listeners(self) -> int:
        return self._max_listeners

    def set_max_listeners(self, count: int) -> None:
        self._max_listeners = count or 0

    # Subscription API
    def listen(self, topic: str, handler: Handler) -> None:
        """Subscribe ``handler`` to every delivery on ``topic``."""
        self._subscribers[topic].append(handler)
        self._check_leak(topic)

    def once(self, topic: str, handler: Handler) -> None:
        """Subscribe ``handler`` for a single delivery on ``topic``."""

        def wrapper(payload: Any) -> Any:
            self._remove(topic, wrapper)
            return handler(payload)

        wrapper.listener = handler  # type: ignore[attr-defined]
        self.listen(topic, wrapper)

    def ignore(self, topic: str, handler: Handler) -> None:
        """Remove a subscription made with ``listen`` or ``once``.

        Only the most recent matching registration is removed.
        """
        handlers = self._subscribers.get(topic)
        if not handlers:
            return
        for existing in reversed(handlers):
            if existing is handler or getattr(existing, "listener", None) is handler:
                self._remove(topic, existing)
                return

    def talk(self, topic: str, payload: Any = None) -> bool:
        """Publish ``payload`` to ``topic``.

        Returns:
            True if the topic had at least one subscriber
        """
        handlers = self._subscribers.get(topic)
        if not handlers:
            return False
        # Snapshot so once-wrappers can unsubscribe while we iterate
        for handler in list(handlers):
            try:
                result = handler(payload)
            except Exception:
                logger.exception("[deva] Listener failed on topic %s", topic)
                continue
            if inspect.isawaitable(result):
                self._schedule(topic, result)
        return True

    # Diagnostics
    def listener_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def topics(self) -> list[str]:
        return [topic for topic, handlers in self._subscribers.items() if handlers]

    def clear(self, topic: Optional[str] = None) -> None:
        """Drop all subscriptions, or only those of ``topic``."""
        if topic is None:
            self._subscribers.clear()
            self._warned.clear()
        else:
            self._subscribers.pop(topic, None)
            self._warned.discard(topic)

    async def drain(self) -> None:
        """Wait for scheduled handler coroutines, including ones they spawn."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Internal wiring
    def _remove(self, topic: str, handler: Handler) -> None:
        handlers = self._subscribers.get(topic)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._subscribers[topic]

    def _check_leak(self, topic: str) -> None:
        count = len(self._subscribers[topic])
        if self._max_listeners and count > self._max_listeners and topic not in self._warned:
            self._warned.add(topic)
            logger.warning(
                "[deva] Possible listener leak: %d listeners on %s (max %d)",
                count,
                topic,
                self._max_listeners,
            )

    def _schedule(self, topic: str, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning("[deva] No running event loop; dropped async handler on %s", topic)
            return

        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)

        def _done(fut: asyncio.Future) -> None:
            self._tasks.discard(fut)
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                logger.error(
                    "[deva] Async listener failed on topic %s: %s",
                    topic,
                    exc,
                    exc_info=exc,
                )

        task.add_done_callback(_done)


__all__ = ["EventBus", "Handler"]
