# ─── Future imports ───
from __future__ import annotations

# ─── Standard library imports ───
import time
import asyncio
from dataclasses import dataclass

# ─── Project imports ───
from .config import WorkerConfig
from .telemetry import tlog, TelemetryCounters
from .logger import get_logger
from .probe import HealthProbe, ProbeResult
from .poller_fsm import PollerFSM, PollerState, ProbeOutcome, RetryState, POLLER_EMOJI
from .scheduling_policy import SchedulingPolicy
from .signals import SignalEvent, SignalKind, SignalMonitor, SignalSnapshot


@dataclass
class InFlightProbe:
    """The single live probe: its task doubles as the cancellation handle."""
    task: asyncio.Task
    deadline: float   # loop time

    def abort(self) -> None:
        self.task.cancel()


class AdaptivePoller:
    """
    Perpetual health-check loop with an adaptive interval.

    Responsibilities:
    • Own the one poll timer and the one in-flight probe
    • Turn probe outcomes into RetryState updates (backoff, Retry-After, reset)
    • Scale the armed delay by the live SignalSnapshot
    • Pause while offline, resume from base_interval when back online

    Non-responsibilities:
    • No registration logic
    • No signal collection (reads SignalMonitor facts only)

    All state is mutated on the event loop: timer callbacks, probe
    completion and the signal consumer never run concurrently.
    """

    def __init__(
        self,
        config: WorkerConfig,
        probe: HealthProbe | None,
        signals: SignalMonitor,
        telemetry: TelemetryCounters,
        policy: SchedulingPolicy | None = None,
    ):
        # ─── Dependencies / Configuration ───
        self.config = config
        self.probe = probe
        self.signals = signals
        self.telemetry = telemetry
        self.policy = policy or SchedulingPolicy(config)
        self.logger = get_logger("poller")

        # ─── Runtime State ───
        self.retry_state = RetryState(next_interval=config.base_interval)
        self.fsm = PollerFSM()
        self.scheduled_delay: int | None = None   # last armed delay (ms)

        # ─── Handles (at most one of each) ───
        self._timer: asyncio.TimerHandle | None = None
        self._in_flight: InFlightProbe | None = None

        # start() requested and not yet stop()ped
        self._enabled = False

        signals.subscribe(self._on_signal)

    # ──────────────────────────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────────────────────────

    @property
    def state(self) -> PollerState:
        return self.fsm.state

    @property
    def in_flight(self) -> InFlightProbe | None:
        return self._in_flight

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start(self) -> None:
        """
        Arm the first cycle. Must be called from a running event loop.

        No-op when polling is disabled, already running, or offline (the
        loop then starts on the next `online` signal).
        """
        if self.probe is None:
            self.logger.info("Health check disabled (no health_check_path configured)")
            return

        self._enabled = True

        if self.retry_state.is_offline:
            self.logger.info("Offline at start; polling resumes when connectivity returns")
            return

        if self.state is not PollerState.IDLE:
            return

        self._schedule()
        tlog(
            self.logger,
            POLLER_EMOJI[PollerState.SCHEDULED],
            "POLLER",
            "STARTED",
            primary=f"first={self.scheduled_delay}ms",
            meta=f"url={self.probe.url}",
        )

    def stop(self) -> None:
        """
        Clear the pending timer and abort any in-flight probe.

        No network traffic happens after this returns until `start()`.
        """
        was_running = self.state is not PollerState.IDLE
        self._enabled = False
        self._halt()
        if was_running:
            tlog(self.logger, POLLER_EMOJI[PollerState.IDLE], "POLLER", "STOPPED")

    # ──────────────────────────────────────────────────────────────
    # Outcome handling
    # ──────────────────────────────────────────────────────────────

    def record_outcome(self, result: ProbeResult) -> None:
        """
        Apply one probe outcome to RetryState.

        Signal multipliers are not applied here; they only scale the delay
        at arming time.
        """
        rs = self.retry_state

        match result.outcome:
            case ProbeOutcome.SUCCESS:
                if rs.retry_count:
                    tlog(
                        self.logger,
                        "🟢",
                        "POLLER",
                        "RECOVERED",
                        primary=f"HTTP {result.status}",
                        meta=f"after {rs.retry_count} retries",
                    )
                rs.retry_count = 0
                rs.next_interval = self.policy.base_interval
                self.telemetry.record("poll_success")

            case ProbeOutcome.CLIENT_ERROR:
                # Not the same failure class as server/network errors:
                # slow down, but leave retry accounting alone
                self.logger.warning(f"Poll failed with client error: HTTP {result.status}")
                self.telemetry.record("poll_client_error")
                rs.next_interval = self.policy.doubled(rs.next_interval)

            case ProbeOutcome.SERVER_ERROR:
                self.logger.warning(f"Poll failed with server error: HTTP {result.status}")
                self.telemetry.record("poll_server_error")
                rs.retry_count += 1
                if result.retry_after_s is not None:
                    rs.next_interval = self.policy.clamp(result.retry_after_s * 1000)
                else:
                    rs.next_interval = self.policy.backoff_delay(rs.retry_count)

            case ProbeOutcome.TIMEOUT | ProbeOutcome.NETWORK_ERROR:
                event = "poll_timeout" if result.outcome is ProbeOutcome.TIMEOUT else "poll_network_error"
                self.telemetry.record(event)
                rs.retry_count += 1
                rs.next_interval = self.policy.backoff_delay(rs.retry_count)

        if result.outcome is not ProbeOutcome.SUCCESS:
            tlog(
                self.logger,
                "🔴" if result.outcome.is_transport_failure else "🟡",
                "POLLER",
                f"BACKOFF {result.outcome.name}",
                primary=f"next={rs.next_interval}ms",
                meta=f"retries={rs.retry_count}",
            )

    # ──────────────────────────────────────────────────────────────
    # Timer / probe plumbing
    # ──────────────────────────────────────────────────────────────

    def _schedule(self) -> None:
        delay = self.policy.effective_delay(
            self.retry_state.next_interval, self.signals.snapshot
        )

        if self._timer is not None:
            self._timer.cancel()

        self._timer = asyncio.get_running_loop().call_later(delay / 1000, self._fire)
        self.scheduled_delay = delay
        self.fsm.transition(PollerState.SCHEDULED)
        self.logger.debug(f"💤 Next health check in {delay} ms")

    def _halt(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if self._in_flight is not None:
            self._in_flight.abort()
            self._in_flight = None

        if self.state is not PollerState.IDLE:
            self.fsm.transition(PollerState.IDLE)
        self.scheduled_delay = None

    def _fire(self) -> None:
        self._timer = None

        if self.retry_state.is_offline:
            # No traffic while offline; keep the cadence without mutating state
            self.telemetry.record("poll_skipped_offline")
            self._schedule()
            return

        if self._in_flight is not None:
            self.logger.error("Poll timer fired while a probe is still in flight")
            return

        loop = asyncio.get_running_loop()
        self.fsm.transition(PollerState.PROBING)
        self.retry_state.last_attempt_time = time.monotonic()
        task = loop.create_task(self._run_probe())
        self._in_flight = InFlightProbe(task=task, deadline=loop.time() + self.probe.timeout_s)

    async def _run_probe(self) -> None:
        try:
            result = await self.probe.check()
        except asyncio.CancelledError:
            self.logger.debug("Health probe aborted")
            raise
        except Exception as e:
            self.logger.exception("Unexpected error from health probe")
            result = ProbeResult(ProbeOutcome.NETWORK_ERROR, error=e.__class__.__name__)
        finally:
            # Clear only our own handle; stop()/start() may have replaced it
            if self._in_flight is not None and self._in_flight.task is asyncio.current_task():
                self._in_flight = None

        self.record_outcome(result)

        if self._enabled and self.state is PollerState.PROBING:
            self._schedule()

    # ──────────────────────────────────────────────────────────────
    # Signals
    # ──────────────────────────────────────────────────────────────

    def _on_signal(self, event: SignalEvent, snapshot: SignalSnapshot) -> None:
        rs = self.retry_state

        match event.kind:
            case SignalKind.OFFLINE:
                if rs.is_offline:
                    return
                rs.is_offline = True
                self._halt()
                tlog(self.logger, "🔌", "POLLER", "PAUSED", primary="offline")

            case SignalKind.ONLINE:
                if not rs.is_offline:
                    return
                rs.is_offline = False
                # Full reset, independent of any pending backoff
                rs.retry_count = 0
                rs.next_interval = self.policy.base_interval
                if self._enabled and self.state is PollerState.IDLE:
                    self._schedule()
                    tlog(
                        self.logger,
                        "🛜",
                        "POLLER",
                        "RESUMED",
                        primary=f"next={self.scheduled_delay}ms",
                    )

            case SignalKind.HIDDEN | SignalKind.VISIBLE:
                # Re-arm the pending timer so the new multiplier applies now;
                # an in-flight probe picks it up when it reschedules
                if self.state is PollerState.SCHEDULED:
                    self._schedule()
                    self.logger.info(
                        f"{'Backgrounded' if snapshot.backgrounded else 'Foregrounded'}; "
                        f"next health check in {self.scheduled_delay} ms"
                    )

            case _:
                pass  # battery / save-data apply at the next arming decision
