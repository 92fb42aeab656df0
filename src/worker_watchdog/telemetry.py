# ─── Future imports ───
from __future__ import annotations

# ─── Standard library imports ───
import logging
from collections import Counter

# ─── Project imports ───
from .logger import get_logger


# Counters log on their first occurrence and then every N occurrences
TELEMETRY_LOG_EVERY = 100


def tlog(
    logger: logging.Logger,
    emoji: str,
    subsystem: str,
    state: str,
    primary: str = "—--",
    meta: str | None = None,
) -> None:
    """
    Emit a standardized telemetry log "tlog" line.

    Format:
        SUBSYSTEM STATE PRIMARY | meta data
    """
    msg = f"{subsystem:<12} {state:<20} {primary:<16}"
    if meta:
        msg += f" | {meta}"

    logger.info(f"{emoji} {msg}", stacklevel=2)


class TelemetryCounters:
    """
    Event-name → occurrence counters for one manager's lifetime.

    Recording is a no-op when telemetry is disabled. Counters are only
    reset by constructing a new instance.
    """

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self._counts: Counter[str] = Counter()
        self.logger = get_logger("telemetry")

    def record(self, event: str) -> None:
        if not self.enabled:
            return

        previous = self._counts[event]
        self._counts[event] = previous + 1

        if previous % TELEMETRY_LOG_EVERY == 0:
            tlog(
                self.logger,
                "📈",
                "TELEMETRY",
                event.upper(),
                primary=f"count={previous + 1}",
            )

    def count(self, event: str) -> int:
        return self._counts[event]

    def snapshot(self) -> dict[str, int]:
        """Return a copy of the counters; callers cannot mutate the originals."""
        return dict(self._counts)

    def __contains__(self, event: str) -> bool:
        return event in self._counts
