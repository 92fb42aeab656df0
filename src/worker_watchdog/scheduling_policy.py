# ─── Future imports ───
from __future__ import annotations

# ─── Standard library imports ───
import random
from typing import Callable

# ─── Project imports ───
from .config import Config, WorkerConfig
from .signals import SignalSnapshot


# --- Jitter constants ---
# delay + delay * JITTER_SPREAD * (U - 0.5)  →  factor in [0.875, 1.125)
JITTER_SPREAD = 0.25


class SchedulingPolicy:
    """
    Interval arithmetic for the poll loop and registration retries.

    Pure computation: holds no retry state of its own. Every value returned
    by `clamp()`, `backoff_delay()` and `effective_delay()` lies within
    [base_interval, max_interval].
    """

    def __init__(
        self,
        config: WorkerConfig,
        rng: Callable[[], float] = random.random,
    ):
        self.base_interval = config.base_interval
        self.max_interval = config.max_interval
        self.data_saving_factor = config.data_saving_factor
        self.rng = rng

    def clamp(self, delay_ms: float) -> int:
        return int(max(self.base_interval, min(round(delay_ms), self.max_interval)))

    def exponential_delay(self, retry_count: int) -> int:
        """
        Unjittered backoff: base * 2^retry_count, capped at max_interval.
        """
        return min(self.base_interval * 2 ** max(0, retry_count), self.max_interval)

    def jittered(self, delay_ms: float) -> float:
        return delay_ms + delay_ms * JITTER_SPREAD * (self.rng() - 0.5)

    def backoff_delay(self, retry_count: int) -> int:
        return self.clamp(self.jittered(self.exponential_delay(retry_count)))

    def doubled(self, interval_ms: int) -> int:
        """Conservative slow-down for client errors (no retry accounting)."""
        return self.clamp(interval_ms * 2)

    def effective_delay(self, next_interval: int, snapshot: SignalSnapshot) -> int:
        """
        Returns the delay actually used to arm the poll timer.

        Each active signal scales the interval independently; the combined
        result is capped at max_interval.
        """
        delay = next_interval

        if snapshot.backgrounded:
            delay *= Config.BACKGROUND_FACTOR

        if snapshot.low_battery:
            delay *= Config.LOW_BATTERY_FACTOR

        if snapshot.data_saving:
            delay *= self.data_saving_factor

        return self.clamp(delay)
