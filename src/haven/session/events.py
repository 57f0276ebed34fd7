"""Host event bus: connectivity, visibility and activity signals.

The host (a desktop shell, a web bridge, a test) publishes what it observes
here; the session manager subscribes instead of touching any global listeners.
"""

import inspect
import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"
HIDDEN = "hidden"
VISIBLE = "visible"
ACTIVITY = "activity"
UNLOAD = "unload"
SESSION_EXPIRED = "session_expired"

EventCallback = Callable[..., Any]


class HostEvents:
    """Callback registry with a point-in-time connectivity flag."""

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._subscribers: dict[str, list[EventCallback]] = defaultdict(list)

    @property
    def online(self) -> bool:
        return self._online

    def subscribe(self, event: str, callback: EventCallback) -> None:
        """Register a callback (sync or async) for an event."""
        self._subscribers[event].append(callback)

    def unsubscribe(self, event: str, callback: EventCallback) -> None:
        """Remove a callback; unknown callbacks are ignored."""
        callbacks = self._subscribers.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def subscribers(self, event: str) -> list[EventCallback]:
        return list(self._subscribers.get(event, []))

    async def emit(self, event: str, **payload: Any) -> int:
        """Deliver an event to its subscribers in registration order.

        Returns:
            Number of callbacks invoked.
        """
        callbacks = self.subscribers(event)
        logger.debug("Emitting %s to %d subscriber(s)", event, len(callbacks))
        for callback in callbacks:
            result = callback(**payload)
            if inspect.isawaitable(result):
                await result
        return len(callbacks)

    async def set_online(self, online: bool) -> bool:
        """Record connectivity, emitting online/offline only on a transition.

        Returns:
            True if the state changed.
        """
        if online == self._online:
            return False
        self._online = online
        await self.emit(ONLINE if online else OFFLINE)
        return True
