# ─── Future imports ───
from __future__ import annotations

# ─── Standard library imports ───
import random
from typing import Callable

# ─── Project imports ───
from .capabilities import HostEnvironment
from .config import WorkerConfig
from .logger import get_logger
from .notifier import CrossTabNotifier
from .poller import AdaptivePoller
from .probe import HealthProbe
from .registration import RegistrationController
from .registry import Registration
from .scheduling_policy import SchedulingPolicy
from .signals import SignalEvent, SignalMonitor
from .telemetry import TelemetryCounters


class WorkerManager:
    """
    One worker controller: registration, signal monitoring and the adaptive
    poller wired together around a single immutable config.

    Every instance owns its config, retry state and counters; several
    managers (one per "tab") can run side by side against one registry.
    """

    def __init__(
        self,
        config: WorkerConfig,
        environment: HostEnvironment | None = None,
        probe: HealthProbe | None = None,
        rng: Callable[[], float] = random.random,
    ):
        self.config = config
        self.environment = environment or HostEnvironment()
        self.logger = get_logger("manager")

        self.counters = TelemetryCounters(enabled=config.telemetry_enabled)
        self.policy = SchedulingPolicy(config, rng=rng)
        self.signals = SignalMonitor(self.environment)

        if probe is None and config.polling_enabled:
            probe = HealthProbe(config.health_check_url)
        self.probe = probe

        self.poller = AdaptivePoller(config, self.probe, self.signals, self.counters, self.policy)
        self.registration_controller = RegistrationController(
            config, self.environment.registry, self.counters, self.policy
        )
        self.registration: Registration | None = None
        self.notifier: CrossTabNotifier | None = None

    async def register(self) -> Registration | None:
        """Register the worker and, on success, start polling if configured."""
        registration = await self.registration_controller.register()
        if registration is not None:
            self.registration = registration
            self.start_polling()
        return registration

    def start_polling(self) -> None:
        self.signals.start()
        self.poller.start()

    def stop_polling(self) -> None:
        """Stop the poll loop; signal tracking keeps running."""
        self.poller.stop()

    def post_signal(self, event: SignalEvent) -> None:
        self.signals.post(event)

    def telemetry(self) -> dict[str, int]:
        return self.counters.snapshot()

    def close(self) -> None:
        self.poller.stop()
        self.signals.stop()
        if self.notifier is not None:
            self.notifier.close()
            self.notifier = None
        if self.probe is not None:
            self.probe.close()

    async def unregister(self) -> int:
        """
        Stop everything and unregister every worker in the registry.

        Returns:
            Number of registrations removed.
        """
        self.close()

        registry = self.environment.registry
        if registry is None:
            return 0

        removed = 0
        for registration in await registry.registrations():
            if await registration.unregister():
                removed += 1

        self.registration = None
        self.logger.info(f"Unregistered {removed} worker(s)")
        return removed
