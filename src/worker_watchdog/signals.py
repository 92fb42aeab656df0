"""Environment signal relay.

Every signal (connectivity, visibility, battery, save-data) arrives as a
message on one ordered queue. A single consumer task applies each message to
the `SignalSnapshot` and then notifies subscribers, so handler ordering is the
arrival order and no two handlers ever interleave.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable

from .capabilities import (
    BatteryCapability,
    HostEnvironment,
    NetworkInformation,
    ObservableNetworkInformation,
    probe_battery,
    probe_network_information,
)
from .config import Config
from .logger import get_logger

_LOGGER = get_logger("signals")


class SignalKind(Enum):
    """Environmental facts that influence scheduling."""

    ONLINE = auto()
    OFFLINE = auto()
    HIDDEN = auto()  # tab/process moved to the background
    VISIBLE = auto()  # back in the foreground
    BATTERY_LEVEL = auto()  # value: charge ratio 0.0–1.0
    SAVE_DATA = auto()  # value: bool


@dataclass(frozen=True)
class SignalEvent:
    kind: SignalKind
    value: float | bool | None = None

    @classmethod
    def online(cls) -> SignalEvent:
        return cls(SignalKind.ONLINE)

    @classmethod
    def offline(cls) -> SignalEvent:
        return cls(SignalKind.OFFLINE)

    @classmethod
    def hidden(cls) -> SignalEvent:
        return cls(SignalKind.HIDDEN)

    @classmethod
    def visible(cls) -> SignalEvent:
        return cls(SignalKind.VISIBLE)

    @classmethod
    def battery(cls, level: float) -> SignalEvent:
        return cls(SignalKind.BATTERY_LEVEL, level)

    @classmethod
    def save_data(cls, enabled: bool) -> SignalEvent:
        return cls(SignalKind.SAVE_DATA, enabled)


@dataclass
class SignalSnapshot:
    """Derived booleans read by the scheduler on every arming decision."""

    backgrounded: bool = False
    low_battery: bool = False
    data_saving: bool = False
    battery_level: float | None = None


SignalListener = Callable[[SignalEvent, SignalSnapshot], None]


class SignalMonitor:
    """Subscribe to environment events and report simple facts.

    Has no retry or interval logic and never touches the network.
    """

    def __init__(self, environment: HostEnvironment | None = None) -> None:
        self.environment = environment or HostEnvironment()
        self.snapshot = SignalSnapshot()
        self._queue: asyncio.Queue[SignalEvent] = asyncio.Queue()
        self._listeners: list[SignalListener] = []
        self._consumer: asyncio.Task[None] | None = None
        self._battery: BatteryCapability | None = None
        self._network: NetworkInformation | None = None

    @property
    def running(self) -> bool:
        return self._consumer is not None

    def subscribe(self, listener: SignalListener) -> None:
        self._listeners.append(listener)

    def post(self, event: SignalEvent) -> None:
        """Queue an event. Safe to call from any callback on the loop."""
        self._queue.put_nowait(event)

    def start(self) -> None:
        """Start consuming events and attach optional capabilities.

        Must be called from a running event loop.
        """
        if self._consumer is not None:
            return

        self._consumer = asyncio.get_running_loop().create_task(self._consume())

        self._battery = probe_battery(self.environment)
        if self._battery is not None:
            if self._battery.level is not None:
                self.post(SignalEvent.battery(self._battery.level))
            self._battery.add_level_listener(self._on_battery_level)
        else:
            _LOGGER.debug("Battery capability unavailable")

        # save-data is read once; later changes only arrive if the host reports them
        self._network = probe_network_information(self.environment)
        if self._network is not None:
            self.post(SignalEvent.save_data(bool(self._network.save_data)))
            if isinstance(self._network, ObservableNetworkInformation):
                self._network.add_change_listener(self._on_save_data)
        else:
            _LOGGER.debug("Network information capability unavailable")

    def stop(self) -> None:
        if self._battery is not None:
            self._battery.remove_level_listener(self._on_battery_level)
            self._battery = None

        if isinstance(self._network, ObservableNetworkInformation):
            self._network.remove_change_listener(self._on_save_data)
        self._network = None

        if self._consumer is not None:
            self._consumer.cancel()
            self._consumer = None

    async def drain(self) -> None:
        """Wait until every queued event has been applied.

        Returns at once when the monitor is stopped; queued events then stay
        queued until the next `start()`.
        """
        if not self.running:
            return
        await self._queue.join()

    # ------------------------------------------------------------------
    # Capability callbacks
    # ------------------------------------------------------------------

    def _on_battery_level(self, level: float) -> None:
        self.post(SignalEvent.battery(level))

    def _on_save_data(self, enabled: bool) -> None:
        self.post(SignalEvent.save_data(enabled))

    # ------------------------------------------------------------------
    # Single consumer
    # ------------------------------------------------------------------

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self._apply(event)
            finally:
                self._queue.task_done()

    def _apply(self, event: SignalEvent) -> None:
        snapshot = self.snapshot

        match event.kind:
            case SignalKind.HIDDEN:
                snapshot.backgrounded = True
            case SignalKind.VISIBLE:
                snapshot.backgrounded = False
            case SignalKind.BATTERY_LEVEL:
                snapshot.battery_level = float(event.value)
                snapshot.low_battery = snapshot.battery_level < Config.LOW_BATTERY_THRESHOLD
            case SignalKind.SAVE_DATA:
                snapshot.data_saving = bool(event.value)
            case _:
                pass  # connectivity is tracked by the poller's RetryState

        _LOGGER.debug("Signal %s applied → %s", event.kind.name, snapshot)

        for listener in list(self._listeners):
            try:
                listener(event, snapshot)
            except Exception:
                _LOGGER.exception("Signal listener failed for %s", event.kind.name)
