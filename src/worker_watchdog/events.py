"""
Application-level event bus.

The hosting application subscribes here for the few things this package
surfaces: worker updates, progress, errors and an abandoned registration.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable

from .logger import get_logger

_LOGGER = get_logger("events")

Event = dict[str, Any]
Handler = Callable[[Event], None]

# ─── Topics ───
WORKER_UPDATE_AVAILABLE = "worker.update_available"
WORKER_PROGRESS = "worker.progress"
WORKER_ERROR = "worker.error"
WORKER_UPDATED = "worker.updated"
REGISTRATION_FAILED = "worker.registration_failed"
TAB_BROADCAST = "tab.broadcast"


class EventBus:
    """In-process event bus with topic routing."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> None:
        """Subscribe a handler to a topic ("*" for all)."""
        self._subscribers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._subscribers.get(topic, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, topic: str, event: Event) -> None:
        """Publish an event to a topic. Handler failures are logged, never raised."""
        handlers = list(self._subscribers.get(topic, []))
        handlers.extend(self._subscribers.get("*", []))
        for handler in handlers:
            try:
                handler({"topic": topic, **event})
            except Exception as exc:
                _LOGGER.error("EventBus handler failed for topic '%s': %s", topic, exc)
