import asyncio
import logging
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from worker_watchdog.bootstrap import (
    cleanup,
    discover_runtime_capabilities,
    initialize,
    validate_config,
)
from worker_watchdog.capabilities import HostEnvironment, StaticNetworkInformation
from worker_watchdog.config import WorkerConfig
from worker_watchdog.errors import ConfigError, SecurityError
from worker_watchdog.events import REGISTRATION_FAILED, WORKER_UPDATE_AVAILABLE, EventBus
from worker_watchdog.notifier import BroadcastHub
from worker_watchdog.registry import InProcessWorkerRegistry


WORKER_SOURCE = "worker_watchdog.registry:heartbeat_worker"


# ========
# FIXTURES
# ========

@pytest.fixture
def worker_config():
    """Registration only; polling disabled"""
    return WorkerConfig(worker_source=WORKER_SOURCE, max_retries=0)


@pytest.fixture
def bus():
    events = EventBus()
    events.seen = []
    events.subscribe("*", events.seen.append)
    return events


def mock_registry(register_side_effect=None):
    registry = MagicMock()
    registry.register = AsyncMock(side_effect=register_side_effect, return_value=MagicMock(scope="worker"))
    registry.controller = object()
    return registry


# ==========================
# TEST GROUP: Early Exits
# ==========================
@pytest.mark.asyncio
async def test_file_origin_skips_initialization(bus):
    config = WorkerConfig(worker_source=WORKER_SOURCE, origin="file:///srv/app/index.html")
    registry = mock_registry()

    assert await initialize(config, HostEnvironment(registry=registry), events=bus) is None

    registry.register.assert_not_awaited()
    assert bus.seen == []


@pytest.mark.asyncio
async def test_missing_registry_is_not_an_error(worker_config, bus):
    assert await initialize(worker_config, HostEnvironment(), events=bus) is None
    assert bus.seen == []


# ==============================
# TEST GROUP: Initialization
# ==============================
@pytest.mark.asyncio
async def test_initialize_wires_worker_messages(worker_config, bus):
    registry = InProcessWorkerRegistry()
    hub = BroadcastHub()

    result = await initialize(worker_config, HostEnvironment(registry=registry), events=bus, hub=hub)
    try:
        assert result is not None
        assert result.manager.notifier.is_open
        assert hub.members(result.manager.notifier.channel) == [result.manager.notifier]

        registry.deliver_message({"method": "update", "params": {"version": "2"}})
        await asyncio.sleep(0)

        assert WORKER_UPDATE_AVAILABLE in [event["topic"] for event in bus.seen]
    finally:
        await cleanup(result.manager, unregister=True)

    assert hub.members("worker-updates") == []
    assert await registry.registrations() == []


@pytest.mark.asyncio
async def test_under_test_waits_for_harness(bus):
    config = WorkerConfig(worker_source=WORKER_SOURCE, under_test=True)
    registry = mock_registry()

    with patch("worker_watchdog.bootstrap.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        result = await initialize(config, HostEnvironment(registry=registry), events=bus)

    mock_sleep.assert_awaited_once_with(1.0)
    assert result is not None
    await cleanup(result.manager)


@pytest.mark.asyncio
async def test_messaging_failure_is_not_fatal(worker_config, bus):
    registry = mock_registry()
    registry.add_message_listener.side_effect = RuntimeError("no message channel")

    result = await initialize(worker_config, HostEnvironment(registry=registry), events=bus)

    assert result is not None
    assert result.manager.notifier is None
    await cleanup(result.manager)


@pytest.mark.asyncio
async def test_registration_failure_is_published(worker_config, bus):
    registry = mock_registry(SecurityError("Worker source is outside the allowed scope"))

    assert await initialize(worker_config, HostEnvironment(registry=registry), events=bus) is None

    assert len(bus.seen) == 1
    event = bus.seen[0]
    assert event["topic"] == REGISTRATION_FAILED
    assert "outside the allowed scope" in event["message"]
    assert isinstance(event["error"], SecurityError)
    assert event["timestamp"].endswith("+00:00")


# ================================
# TEST GROUP: Cleanup / Listener Detach
# ================================
@pytest.mark.asyncio
async def test_cleanup_detaches_worker_listeners(worker_config, bus):
    """After cleanup no worker message reaches the bus, and cycles never stack listeners"""
    registry = InProcessWorkerRegistry()
    hub = BroadcastHub()

    for _ in range(3):
        result = await initialize(worker_config, HostEnvironment(registry=registry), events=bus, hub=hub)
        assert result is not None
        assert len(registry._message_listeners) == 1
        assert len(registry._controller_listeners) == 1
        await cleanup(result.manager)

    assert registry._message_listeners == []
    assert registry._controller_listeners == []

    bus.seen.clear()
    registry.deliver_message({"method": "progress", "params": {"done": 9}})
    await asyncio.sleep(0)
    assert bus.seen == []

    for registration in await registry.registrations():
        await registration.unregister()


@pytest.mark.asyncio
async def test_partial_wiring_is_undone(worker_config, bus):
    registry = mock_registry()
    registry.add_controller_listener.side_effect = RuntimeError("no controller events")

    result = await initialize(worker_config, HostEnvironment(registry=registry), events=bus)

    assert result is not None
    assert result.manager.notifier is None
    added = registry.add_message_listener.call_args.args[0]
    registry.remove_message_listener.assert_called_once_with(added)
    await cleanup(result.manager)


# ==============================
# TEST GROUP: Startup Checks
# ==============================
def test_validate_config_only_warns(caplog):
    """Anything that constructs is accepted; odd values are logged"""
    config = WorkerConfig(worker_source=WORKER_SOURCE, health_check_path="/health", base_interval=1_000, max_retries=0)

    validate_config(config)

    warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
    assert any("MAX_RETRIES=0" in w for w in warnings)
    assert any("shorter than the probe timeout" in w for w in warnings)


@pytest.mark.asyncio
async def test_non_http_health_check_fails_at_construction_not_initialize(bus):
    with pytest.raises(ConfigError):
        WorkerConfig(worker_source=WORKER_SOURCE, origin="ftp://example.com/", health_check_path="/health")

    # A file: origin is accepted and skipped without raising
    config = WorkerConfig(worker_source=WORKER_SOURCE, origin="file:///srv/app/index.html", health_check_path="/health")
    assert await initialize(config, HostEnvironment(registry=mock_registry()), events=bus) is None
    assert bus.seen == []


def test_discover_runtime_capabilities():
    config = WorkerConfig(worker_source=WORKER_SOURCE)
    environment = HostEnvironment(
        registry=mock_registry(),
        network_information=StaticNetworkInformation(save_data=True),
    )

    capabilities = discover_runtime_capabilities(config, environment)

    assert capabilities.worker_registry_available
    assert capabilities.network_information_available
    assert not capabilities.battery_available
    assert not capabilities.file_origin


@pytest.mark.asyncio
async def test_cleanup_without_manager_is_a_no_op():
    await cleanup(None)
