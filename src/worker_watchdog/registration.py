# ─── Future imports ───
from __future__ import annotations

# ─── Standard library imports ───
import asyncio
from enum import Enum, auto

# ─── Project imports ───
from .config import Config, WorkerConfig
from .errors import ActivationTimeout, is_permanent
from .logger import get_logger
from .registry import Registration, WorkerRegistry
from .scheduling_policy import SchedulingPolicy
from .telemetry import tlog, TelemetryCounters


class RegistrationState(Enum):
    """
    • INIT         : nothing attempted yet
    • REGISTERING  : registry call in progress
    • ACTIVATING   : registered, waiting for the worker to take control
    • ACTIVE       : registered and controlling
    • BACKOFF      : transient failure, waiting to retry
    • FAILED       : gave up (permanent error or retries exhausted)
    • UNSUPPORTED  : host has no worker registry
    """
    INIT = auto()
    REGISTERING = auto()
    ACTIVATING = auto()
    ACTIVE = auto()
    BACKOFF = auto()
    FAILED = auto()
    UNSUPPORTED = auto()

    def __str__(self) -> str:
        return self.name

REGISTRATION_EMOJI = {
    RegistrationState.INIT:        "⚪",
    RegistrationState.REGISTERING: "🟡",
    RegistrationState.ACTIVATING:  "🟡",
    RegistrationState.ACTIVE:      "💚",
    RegistrationState.BACKOFF:     "🟠",
    RegistrationState.FAILED:      "🔴",
    RegistrationState.UNSUPPORTED: "⚫",
}


class RegistrationController:
    """
    Background-worker registration with bounded retries.

    Responsibilities:
    • Register the worker and wait (bounded) for it to take control
    • Classify failures as permanent (never retried) or transient
    • Retry transient failures with the poller's backoff formula
    • Record one telemetry event per outcome

    Nothing raised by the registry escapes `register()`; callers only
    ever see a registration or None.
    """

    def __init__(
        self,
        config: WorkerConfig,
        registry: WorkerRegistry | None,
        telemetry: TelemetryCounters,
        policy: SchedulingPolicy | None = None,
        activation_timeout_s: float = Config.ACTIVATION_TIMEOUT_S,
    ):
        # ─── Dependencies / Configuration ───
        self.config = config
        self.registry = registry
        self.telemetry = telemetry
        self.policy = policy or SchedulingPolicy(config)
        self.activation_timeout_s = activation_timeout_s
        self.logger = get_logger("registration")

        # ─── Runtime State ───
        self.state = RegistrationState.INIT
        self.attempts: int = 0
        self.retries: int = 0
        self.last_error: BaseException | None = None

    async def register(self) -> Registration | None:
        """
        Returns:
            The registration once the worker controls the host,
            or None when registration is unsupported or abandoned.
        """
        if self.registry is None:
            self.logger.error("Worker registry is not available in this host")
            self.telemetry.record("registration_unsupported")
            self.telemetry.record("registration_failed")
            self._transition(RegistrationState.UNSUPPORTED)
            return None

        self.attempts = 0
        self.retries = 0

        while True:
            try:
                registration = await self._attempt()
            except Exception as exc:
                self.last_error = exc
                self.logger.error(f"Worker registration failed: {type(exc).__name__}: {exc}")
                self.telemetry.record("registration_failed")

                if is_permanent(exc):
                    self._transition(RegistrationState.FAILED, primary=type(exc).__name__, meta="permanent")
                    return None

                if self.retries >= self.config.max_retries:
                    self._transition(
                        RegistrationState.FAILED,
                        primary="retries exhausted",
                        meta=f"attempts={self.attempts}",
                    )
                    return None

                await self._backoff()
                continue

            self.telemetry.record("registration_success")
            self._transition(
                RegistrationState.ACTIVE,
                primary=getattr(registration, "scope", "worker"),
                meta=f"attempts={self.attempts}",
            )
            return registration

    async def _attempt(self) -> Registration:
        self.attempts += 1
        self._transition(RegistrationState.REGISTERING, primary=self.config.worker_source)
        registration = await self.registry.register(self.config.worker_source)

        if self.registry.controller is None:
            self._transition(RegistrationState.ACTIVATING)
            try:
                async with asyncio.timeout(self.activation_timeout_s):
                    await self.registry.wait_for_controller()
            except TimeoutError as err:
                self.telemetry.record("activation_timeout")
                raise ActivationTimeout(
                    f"Timeout waiting for worker controller ({self.activation_timeout_s:.0f}s)",
                    source=self.config.worker_source,
                    attempt=self.attempts,
                ) from err

        return registration

    async def _backoff(self) -> None:
        self.retries += 1
        delay_ms = self.policy.backoff_delay(self.retries)
        self.telemetry.record("registration_retry")
        self._transition(
            RegistrationState.BACKOFF,
            primary=f"retry in {delay_ms}ms",
            meta=f"attempt {self.retries}/{self.config.max_retries}",
        )
        await asyncio.sleep(delay_ms / 1000)

    def _transition(
        self,
        state: RegistrationState,
        primary: str = "—--",
        meta: str | None = None,
    ) -> None:
        self.state = state
        tlog(self.logger, REGISTRATION_EMOJI[state], "REGISTRATION", str(state), primary=primary, meta=meta)
