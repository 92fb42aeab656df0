"""Cross-tab and worker-to-page messaging.

Best effort only: nothing here affects polling, and every failure is logged
and dropped.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING, Any

from .events import (
    TAB_BROADCAST,
    WORKER_ERROR,
    WORKER_PROGRESS,
    WORKER_UPDATE_AVAILABLE,
    WORKER_UPDATED,
    EventBus,
)
from .logger import get_logger

if TYPE_CHECKING:
    from .registry import WorkerRegistry

_LOGGER = get_logger("notifier")

DEFAULT_CHANNEL = "worker-updates"

Message = dict[str, Any]


class BroadcastHub:
    """Named broadcast channels shared by every notifier in the process."""

    def __init__(self) -> None:
        self._channels: dict[str, list[CrossTabNotifier]] = defaultdict(list)

    def join(self, channel: str, notifier: CrossTabNotifier) -> None:
        if notifier not in self._channels[channel]:
            self._channels[channel].append(notifier)

    def leave(self, channel: str, notifier: CrossTabNotifier) -> None:
        members = self._channels.get(channel, [])
        if notifier in members:
            members.remove(notifier)

    def members(self, channel: str) -> list[CrossTabNotifier]:
        return list(self._channels.get(channel, []))

    def publish(self, channel: str, message: Message, sender: CrossTabNotifier) -> int:
        """Deliver to every member except the sender. Returns the delivery count."""
        delivered = 0
        for member in self.members(channel):
            if member is sender:
                continue
            try:
                member.receive(message)
                delivered += 1
            except Exception:
                _LOGGER.exception("Broadcast delivery failed on channel '%s'", channel)
        return delivered


# The worker registry is shared process wide, so is the broadcast medium
default_hub = BroadcastHub()


class CrossTabNotifier:
    """Relay worker messages to the page and between controller instances ("tabs")."""

    def __init__(
        self,
        events: EventBus,
        hub: BroadcastHub | None = None,
        channel: str = DEFAULT_CHANNEL,
    ) -> None:
        self.events = events
        self.hub = hub if hub is not None else default_hub
        self.channel = channel
        self._open = False
        self._registry: WorkerRegistry | None = None

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self.hub.join(self.channel, self)
        self._open = True

    def attach(self, registry: WorkerRegistry) -> None:
        """Listen for worker messages and controller changes until `close()`."""
        # Recorded first so close() also undoes a half-finished attach
        self._registry = registry
        registry.add_message_listener(self.handle_worker_message)
        registry.add_controller_listener(self.handle_controller_change)

    def close(self) -> None:
        self.hub.leave(self.channel, self)
        self._open = False

        registry, self._registry = self._registry, None
        if registry is None:
            return
        try:
            registry.remove_message_listener(self.handle_worker_message)
            registry.remove_controller_listener(self.handle_controller_change)
        except Exception:
            _LOGGER.exception("Failed to detach worker listeners")

    def broadcast(self, message: Message) -> int:
        if not self._open:
            return 0
        return self.hub.publish(self.channel, message, sender=self)

    def receive(self, message: Message) -> None:
        """Message from another tab: surface it locally, never re-broadcast."""
        _LOGGER.debug("Broadcast message received: %s", message)
        self.events.publish(TAB_BROADCAST, {"message": message})

    def handle_worker_message(self, data: Any) -> None:
        """Dispatch a `{"method": ..., "params": ...}` message posted by the worker."""
        if not isinstance(data, dict) or not data.get("method"):
            return

        params = data.get("params")

        match data["method"]:
            case "update":
                _LOGGER.info("Update available: %s", params)
                self.events.publish(WORKER_UPDATE_AVAILABLE, {"params": params})
                self.broadcast(data)
            case "progress":
                if params:
                    self.events.publish(WORKER_PROGRESS, {"params": params})
                    self.broadcast(data)
            case "error":
                _LOGGER.error("Worker error: %s", params)
                self.events.publish(WORKER_ERROR, {"params": params})
            case _:
                pass  # unknown message type

    def handle_controller_change(self) -> None:
        _LOGGER.info("Worker updated; reloading may be required")
        self.events.publish(WORKER_UPDATED, {})
