# ─── Future imports ───
from __future__ import annotations

# ─── Standard library imports ───
import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone

# ─── Project imports ───
from .capabilities import HostEnvironment, probe_battery, probe_network_information
from .config import Config, WorkerConfig
from .events import REGISTRATION_FAILED, EventBus
from .logger import get_logger
from .manager import WorkerManager
from .notifier import BroadcastHub, CrossTabNotifier
from .registry import Registration


logger = get_logger("bootstrap")


@dataclass(frozen=True)
class EnvCapabilities:
    """
    Observed runtime capabilities derived at startup.

    These represent what the host actually offers,
    not what the config asks for in theory.
    """
    worker_registry_available: bool
    battery_available: bool
    network_information_available: bool
    file_origin: bool


@dataclass
class InitResult:
    manager: WorkerManager
    registration: Registration


def validate_config(config: WorkerConfig) -> None:
    """
    Flag questionable-but-workable control-loop settings.

    Hard invariants are enforced when `WorkerConfig` is built, so nothing
    here raises once a manager can be constructed.
    """
    if config.max_retries == 0:
        logger.warning("MAX_RETRIES=0; transient registration failures will not be retried")

    if config.polling_enabled and config.base_interval < Config.PROBE_TIMEOUT_S * 1000:
        logger.warning(
            f"BASE_INTERVAL_MS={config.base_interval} is shorter than the probe timeout "
            f"({Config.PROBE_TIMEOUT_S * 1000:.0f}ms); a slow endpoint sets the real cadence"
        )


def discover_runtime_capabilities(config: WorkerConfig, environment: HostEnvironment) -> EnvCapabilities:
    """
    Probe the host for the worker registry and optional signal sources.

    Missing capabilities are logged for visibility but never fatal.
    """
    capabilities = EnvCapabilities(
        worker_registry_available=environment.registry is not None,
        battery_available=probe_battery(environment) is not None,
        network_information_available=probe_network_information(environment) is not None,
        file_origin=config.origin_scheme == "file",
    )

    if not capabilities.battery_available:
        logger.debug("Battery signal unavailable; low-battery slowdown disabled")
    if not capabilities.network_information_available:
        logger.debug("Network information unavailable; save-data slowdown disabled")

    return capabilities


def print_summary(config: WorkerConfig, capabilities: EnvCapabilities) -> None:
    logger.info("===== Runtime Summary =====")
    for key, value in config.summary().items():
        logger.info(f"{key + ':':<30} {value}")
    logger.info(f"{'battery signal:':<30} {capabilities.battery_available}")
    logger.info(f"{'save-data signal:':<30} {capabilities.network_information_available}")
    logger.info("===========================")


async def initialize(
    config: WorkerConfig,
    environment: HostEnvironment,
    events: EventBus | None = None,
    hub: BroadcastHub | None = None,
) -> InitResult | None:
    """
    Bring up a worker manager for the hosting application.

    Returns None, without raising, when the host cannot run workers
    (file: origin, no registry) or when registration is abandoned; the
    latter is also published as `worker.registration_failed`.
    """
    capabilities = discover_runtime_capabilities(config, environment)

    if capabilities.file_origin:
        logger.info("Workers are not available for file: origins; skipping")
        return None

    if config.under_test:
        await asyncio.sleep(Config.TEST_HARNESS_SETTLE_S)

    if not capabilities.worker_registry_available:
        logger.info("No worker registry in this host; skipping")
        return None

    validate_config(config)
    print_summary(config, capabilities)

    events = events if events is not None else EventBus()
    manager = WorkerManager(config, environment)

    try:
        registration = await manager.register()
    except Exception as exc:
        logger.exception("Worker initialization failed")
        _notify_registration_failure(events, exc)
        manager.close()
        return None

    if registration is None:
        logger.error("Failed to register worker")
        _notify_registration_failure(events, manager.registration_controller.last_error)
        manager.close()
        return None

    if environment.registry.controller is not None:
        manager.notifier = _setup_event_driven_updates(environment, events, hub)

    return InitResult(manager=manager, registration=registration)


def _setup_event_driven_updates(
    environment: HostEnvironment,
    events: EventBus,
    hub: BroadcastHub | None,
) -> CrossTabNotifier | None:
    """
    Wire worker → page messages, controller changes and cross-tab broadcasts.

    Best effort: a failure leaves polling untouched.
    """
    notifier = CrossTabNotifier(events, hub)
    try:
        notifier.attach(environment.registry)
        notifier.open()
    except Exception:
        logger.exception("Event-driven updates unavailable; continuing without them")
        notifier.close()
        return None
    return notifier


def _notify_registration_failure(events: EventBus, error: BaseException | None) -> None:
    message = str(error) if isinstance(error, Exception) and str(error) else "Unknown error"
    events.publish(
        REGISTRATION_FAILED,
        {
            "message": message,
            "error": error,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
    logger.error(f"Worker registration failed: {message}")


async def cleanup(manager: WorkerManager | None, unregister: bool = False) -> None:
    """Stop polling and signal tracking; optionally unregister every worker."""
    if manager is None:
        return

    if unregister:
        await manager.unregister()
    else:
        manager.close()
