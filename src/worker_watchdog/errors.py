"""Error taxonomy for worker registration and configuration.

Probe failures are not exceptions: they are classified into
`ProbeOutcome` values and absorbed by the poller.
"""

from __future__ import annotations


class WorkerWatchdogError(Exception):
    """Base exception for all worker_watchdog errors."""


class ConfigError(WorkerWatchdogError, ValueError):
    """Raised when a configuration violates a control-loop invariant."""


class RegistrationError(WorkerWatchdogError):
    """Raised when the worker registry rejects or fails a registration.

    Carries the worker source and attempt number for log context.
    """

    def __init__(
        self,
        message: str,
        source: str | None = None,
        attempt: int | None = None,
    ) -> None:
        self.source = source
        self.attempt = attempt
        super().__init__(message)

    def __str__(self) -> str:
        context_parts = []
        if self.source:
            context_parts.append(f"source={self.source}")
        if self.attempt is not None:
            context_parts.append(f"attempt={self.attempt}")
        if context_parts:
            return f"{super().__str__()} ({', '.join(context_parts)})"
        return super().__str__()


class PermanentRegistrationFailure(RegistrationError):
    """Capability unsupported or denied. Never retried."""


class SecurityError(PermanentRegistrationFailure):
    """The registry refused the worker source (outside the allowed scope)."""


class NotSupportedError(PermanentRegistrationFailure):
    """The registry cannot run this kind of worker source."""


class TransientRegistrationFailure(RegistrationError):
    """Any recoverable registration failure; retried with backoff."""


class ActivationTimeout(TransientRegistrationFailure):
    """The worker registered but never became the active controller in time."""


# Registries outside this package may raise their own exception types;
# classification falls back to the class name.
PERMANENT_ERROR_NAMES = frozenset({"SecurityError", "NotSupportedError"})


def is_permanent(exc: BaseException) -> bool:
    """Return True if a registration error must not be retried."""
    if isinstance(exc, PermanentRegistrationFailure):
        return True
    return type(exc).__name__ in PERMANENT_ERROR_NAMES
