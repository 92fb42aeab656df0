# --- Standard library imports ---
from dataclasses import dataclass
from enum import Enum, auto


class PollerState(Enum):
    IDLE = auto()
    SCHEDULED = auto()
    PROBING = auto()

    def __str__(self) -> str:
        return self.name


class ProbeOutcome(Enum):
    SUCCESS = auto()
    CLIENT_ERROR = auto()
    SERVER_ERROR = auto()
    TIMEOUT = auto()
    NETWORK_ERROR = auto()

    @property
    def is_transport_failure(self) -> bool:
        return self in (ProbeOutcome.TIMEOUT, ProbeOutcome.NETWORK_ERROR)


POLLER_EMOJI = {
    PollerState.IDLE:      "⚪",
    PollerState.SCHEDULED: "💤",
    PollerState.PROBING:   "🛜",
}

# Legal edges of the poll loop
_TRANSITIONS = {
    PollerState.IDLE:      {PollerState.SCHEDULED},
    PollerState.SCHEDULED: {PollerState.PROBING, PollerState.SCHEDULED, PollerState.IDLE},
    PollerState.PROBING:   {PollerState.SCHEDULED, PollerState.IDLE},
}


@dataclass
class RetryState:
    """
    Mutable retry bookkeeping, owned by exactly one poller.

    Invariant: base_interval <= next_interval <= max_interval after any update.
    """
    next_interval: int
    retry_count: int = 0
    last_attempt_time: float | None = None
    is_offline: bool = False


class PollerFSM:
    """
    Tiny poll-loop state machine.

    Invariants:
      - IDLE is left only through SCHEDULED
      - PROBING is entered only from SCHEDULED (one probe per armed timer)
      - FSM does not perform network I/O, it only validates edges
    """

    def __init__(self):
        self.state = PollerState.IDLE

    def transition(self, target: PollerState) -> PollerState:
        """
        Move to `target`, raising on an edge the loop must never take.
        """
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal poller transition {self.state} → {target}")
        self.state = target
        return self.state
