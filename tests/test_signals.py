import asyncio
import pytest
from unittest.mock import MagicMock, patch
from worker_watchdog.capabilities import (
    HostEnvironment,
    PsutilBattery,
    StaticNetworkInformation,
    probe_battery,
    probe_host_battery,
    probe_network_information,
)
from worker_watchdog.signals import SignalEvent, SignalKind, SignalMonitor


# ========
# FIXTURES
# ========

class FakeBattery:
    def __init__(self, level):
        self.level = level
        self.listeners = []

    def add_level_listener(self, listener):
        self.listeners.append(listener)

    def remove_level_listener(self, listener):
        self.listeners.remove(listener)

    def change(self, level):
        self.level = level
        for listener in list(self.listeners):
            listener(level)


class FakeConnection:
    """Network information that reports save-data changes"""

    def __init__(self, save_data=False):
        self.save_data = save_data
        self.listeners = []

    def add_change_listener(self, listener):
        self.listeners.append(listener)

    def remove_change_listener(self, listener):
        self.listeners.remove(listener)


# ===============================
# TEST GROUP: Capability Probing
# ===============================
@pytest.mark.parametrize(
    "environment, has_battery, has_network",
    [
        # ⚪ Bare host
        (HostEnvironment(), False, False),

        # 🔋 Battery only
        (HostEnvironment(battery=FakeBattery(0.5)), True, False),

        # 📶 Network information only
        (HostEnvironment(network_information=StaticNetworkInformation()), False, True),

        # ❌ Objects that do not satisfy the capability are treated as absent
        (HostEnvironment(battery=object(), network_information="4g"), False, False),
    ],
)
def test_capability_probes(environment, has_battery, has_network):
    assert (probe_battery(environment) is not None) is has_battery
    assert (probe_network_information(environment) is not None) is has_network


@patch("worker_watchdog.capabilities.psutil.sensors_battery", return_value=None)
def test_host_without_battery(mock_sensors):
    assert probe_host_battery() is None


@patch("worker_watchdog.capabilities.psutil.sensors_battery")
def test_psutil_battery_level(mock_sensors):
    mock_sensors.return_value = MagicMock(percent=42.0)

    battery = probe_host_battery()

    assert isinstance(battery, PsutilBattery)
    assert battery.level == pytest.approx(0.42)


# ===========================
# TEST GROUP: Signal Relay
# ===========================
@pytest.mark.asyncio
async def test_events_update_snapshot_in_order():
    monitor = SignalMonitor()
    seen = []
    monitor.subscribe(lambda event, snapshot: seen.append((event.kind, snapshot.backgrounded)))
    monitor.start()
    try:
        monitor.post(SignalEvent.hidden())
        monitor.post(SignalEvent.offline())
        monitor.post(SignalEvent.visible())
        monitor.post(SignalEvent.online())
        await monitor.drain()
    finally:
        monitor.stop()

    assert seen == [
        (SignalKind.HIDDEN, True),
        (SignalKind.OFFLINE, True),
        (SignalKind.VISIBLE, False),
        (SignalKind.ONLINE, False),
    ]


@pytest.mark.parametrize(
    "level, low_battery",
    [
        (0.80, False),   # 🔋 healthy
        (0.15, False),   # 🔋 threshold is exclusive
        (0.14, True),    # 🪫 low
        (0.0, True),     # 🪫 empty
    ],
)
@pytest.mark.asyncio
async def test_battery_threshold(level, low_battery):
    monitor = SignalMonitor()
    monitor.start()
    try:
        monitor.post(SignalEvent.battery(level))
        await monitor.drain()
    finally:
        monitor.stop()

    assert monitor.snapshot.low_battery is low_battery
    assert monitor.snapshot.battery_level == level


@pytest.mark.asyncio
async def test_start_seeds_and_follows_capabilities():
    battery = FakeBattery(0.10)
    connection = FakeConnection(save_data=True)
    monitor = SignalMonitor(HostEnvironment(battery=battery, network_information=connection))

    monitor.start()
    try:
        await monitor.drain()
        assert monitor.snapshot.low_battery
        assert monitor.snapshot.data_saving

        battery.change(0.90)
        connection.listeners[0](False)
        await monitor.drain()

        assert not monitor.snapshot.low_battery
        assert not monitor.snapshot.data_saving
    finally:
        monitor.stop()

    # Listeners are detached on stop
    assert battery.listeners == []
    assert connection.listeners == []


@pytest.mark.asyncio
async def test_failing_listener_does_not_block_others():
    monitor = SignalMonitor()
    received = []

    def broken(event, snapshot):
        raise RuntimeError("listener bug")

    monitor.subscribe(broken)
    monitor.subscribe(lambda event, snapshot: received.append(event.kind))
    monitor.start()
    try:
        monitor.post(SignalEvent.save_data(True))
        await monitor.drain()
    finally:
        monitor.stop()

    assert received == [SignalKind.SAVE_DATA]


@pytest.mark.asyncio
async def test_drain_after_stop_returns_and_keeps_queue():
    """Events posted while stopped wait for the next start()"""
    monitor = SignalMonitor()
    monitor.start()
    monitor.stop()

    monitor.post(SignalEvent.hidden())
    await asyncio.wait_for(monitor.drain(), timeout=1)
    assert monitor.snapshot.backgrounded is False

    monitor.start()
    try:
        await asyncio.wait_for(monitor.drain(), timeout=1)
    finally:
        monitor.stop()

    assert monitor.snapshot.backgrounded is True
