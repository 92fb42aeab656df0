"""Optional host capabilities and the runtime probes that discover them.

Each capability is a small protocol. A probe returns the capability when the
host provides a conforming object, otherwise ``None``; consumers branch on
presence instead of poking at attributes.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Protocol, runtime_checkable

import psutil

from .logger import get_logger

if TYPE_CHECKING:
    from .registry import WorkerRegistry

_LOGGER = get_logger("capabilities")

LevelListener = Callable[[float], None]
SaveDataListener = Callable[[bool], None]


@runtime_checkable
class BatteryCapability(Protocol):
    """Battery status: current charge ratio plus level-change notifications."""

    @property
    def level(self) -> float | None: ...

    def add_level_listener(self, listener: LevelListener) -> None: ...

    def remove_level_listener(self, listener: LevelListener) -> None: ...


@runtime_checkable
class NetworkInformation(Protocol):
    """Network information exposing the user's data-saving preference."""

    @property
    def save_data(self) -> bool: ...


@runtime_checkable
class ObservableNetworkInformation(NetworkInformation, Protocol):
    """Network information that also reports save-data changes."""

    def add_change_listener(self, listener: SaveDataListener) -> None: ...

    def remove_change_listener(self, listener: SaveDataListener) -> None: ...


@dataclass
class HostEnvironment:
    """What the hosting process offers: a worker registry and optional capabilities."""

    registry: WorkerRegistry | None = None
    battery: object | None = None
    network_information: object | None = None


def probe_battery(env: HostEnvironment) -> BatteryCapability | None:
    if isinstance(env.battery, BatteryCapability):
        return env.battery
    return None


def probe_network_information(env: HostEnvironment) -> NetworkInformation | None:
    if isinstance(env.network_information, NetworkInformation):
        return env.network_information
    return None


def _sensors_battery():
    # Not every platform build of psutil ships battery sensors
    sensors_battery = getattr(psutil, "sensors_battery", None)
    if sensors_battery is None:
        return None
    return sensors_battery()


@dataclass
class StaticNetworkInformation:
    """Fixed save-data preference, e.g. read once from the environment."""

    save_data: bool = False


class PsutilBattery:
    """
    Battery capability backed by ``psutil.sensors_battery()``.

    psutil has no change events, so the level is sampled on the running
    event loop while at least one listener is attached.
    """

    def __init__(self, sample_interval_s: float = 60.0):
        self.sample_interval_s = sample_interval_s
        self._listeners: list[LevelListener] = []
        self._task: asyncio.Task[None] | None = None
        self._level = self._read()

    @staticmethod
    def _read() -> float | None:
        battery = _sensors_battery()
        if battery is None:
            return None
        return battery.percent / 100.0

    @property
    def level(self) -> float | None:
        return self._level

    def add_level_listener(self, listener: LevelListener) -> None:
        self._listeners.append(listener)
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._sample())

    def remove_level_listener(self, listener: LevelListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
        if not self._listeners and self._task is not None:
            self._task.cancel()
            self._task = None

    async def _sample(self) -> None:
        while True:
            await asyncio.sleep(self.sample_interval_s)
            level = self._read()
            if level is None or level == self._level:
                continue
            self._level = level
            for listener in list(self._listeners):
                listener(level)


def probe_host_battery() -> PsutilBattery | None:
    """Return a psutil-backed battery if this machine reports one."""
    if _sensors_battery() is None:
        _LOGGER.debug("No battery reported by host; battery signal disabled")
        return None
    return PsutilBattery()
