# --- Standard library imports ---
import sys
import signal
import asyncio

# --- Project imports ---
from .config import Config, WorkerConfig
from .logger import get_logger, resolve_level, setup_logging
from .capabilities import HostEnvironment, StaticNetworkInformation, probe_host_battery
from .events import EventBus, REGISTRATION_FAILED, WORKER_ERROR, WORKER_UPDATED
from .registry import InProcessWorkerRegistry
from .bootstrap import cleanup, initialize


async def supervise(config: WorkerConfig, environment: HostEnvironment) -> int:
    """
    Run one worker manager until SIGINT / SIGTERM.

    Responsibilities:
        - Register the worker and start the adaptive health-check loop.
        - Surface application events (failures, worker errors, updates) in the log.
        - Stop polling and signal tracking on shutdown.

    Returns:
        Process exit code: 0 on clean shutdown, 1 when registration was abandoned.
    """

    logger = get_logger("supervisor")

    events = EventBus()
    failed = False

    def on_failure(event):
        nonlocal failed
        failed = True
        logger.error(f"🚫 Registration abandoned at {event['timestamp']}: {event['message']}")

    events.subscribe(REGISTRATION_FAILED, on_failure)
    events.subscribe(WORKER_ERROR, lambda event: logger.warning(f"Worker reported: {event['params']}"))
    events.subscribe(WORKER_UPDATED, lambda event: logger.info("🔁 Worker controller changed"))

    result = await initialize(config, environment, events=events)
    if result is None:
        return 1 if failed else 0

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info(f"✅ Worker active ({result.registration.scope}); Ctrl+C to stop")

    try:
        await stop.wait()
    finally:
        logger.info(f"📊 Telemetry {result.manager.telemetry()}")
        await cleanup(result.manager, unregister=True)

    return 0


def main():
    """
    Entry point for the worker supervisor.

    Configures logging, assembles the host environment and runs the
    supervisor on a fresh event loop.
    """

    # Setup logging policy
    setup_logging(level=resolve_level(Config.LOG_LEVEL), log_timing=Config.LOG_TIMING)
    logger = get_logger("main")
    logger.info("🚀 Starting worker watchdog")
    logger.debug(f"Python version: {sys.version}")

    config = WorkerConfig.from_env()

    environment = HostEnvironment(
        registry=None,
        battery=probe_host_battery(),
        network_information=StaticNetworkInformation(save_data=Config.SAVE_DATA),
    )

    async def run() -> int:
        # The registry binds to the running loop
        environment.registry = InProcessWorkerRegistry()
        return await supervise(config, environment)

    sys.exit(asyncio.run(run()))

if __name__ == "__main__":
    main()
