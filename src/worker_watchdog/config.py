# ─── Future imports ───
from __future__ import annotations

# ─── Standard library imports ───
import os
from dataclasses import dataclass
from urllib.parse import urljoin, urlparse

# ─── Third-party imports ───
from dotenv import load_dotenv

# ─── Project imports ───
from .errors import ConfigError


# Load .env once
load_dotenv()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    """Centralized config for the worker supervisor, read from the environment"""

    # --- Worker ---
    WORKER_SOURCE = os.getenv(
        "WORKER_SOURCE", "worker_watchdog.registry:heartbeat_worker"
    )
    WORKER_ORIGIN = os.getenv("WORKER_ORIGIN", "http://localhost/")

    # --- Polling Policy ---
    HEALTH_CHECK_PATH = os.getenv("HEALTH_CHECK_PATH") or None
    MAX_RETRIES = _env_int("MAX_RETRIES", 5)
    BASE_INTERVAL_MS = _env_int("BASE_INTERVAL_MS", 30_000)
    MAX_INTERVAL_MS = _env_int("MAX_INTERVAL_MS", 300_000)
    DATA_SAVING_FACTOR = _env_int("DATA_SAVING_FACTOR", 2)

    # --- Timeouts (NOT user configurable) ---
    ACTIVATION_TIMEOUT_S = 10.0
    PROBE_TIMEOUT_S = 5.0
    TEST_HARNESS_SETTLE_S = 1.0

    # --- Signal thresholds (NOT user configurable) ---
    LOW_BATTERY_THRESHOLD = 0.15
    BACKGROUND_FACTOR = 4
    LOW_BATTERY_FACTOR = 2

    # --- Observability Policy ---
    TELEMETRY_ENABLED = _env_flag("TELEMETRY_ENABLED")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_TIMING = _env_flag("LOG_TIMING")

    # --- Host hints ---
    SAVE_DATA = _env_flag("SAVE_DATA")

    # --- Test harness ---
    UNDER_TEST = _env_flag("UNDER_TEST")


@dataclass(frozen=True)
class WorkerConfig:
    """
    Immutable per-controller configuration.

    Created once per manager instance and never mutated. Durations are
    milliseconds; a missing health-check path disables polling entirely.
    """

    worker_source: str
    health_check_path: str | None = None
    origin: str = "http://localhost/"
    max_retries: int = 5
    base_interval: int = 30_000
    max_interval: int = 300_000
    telemetry_enabled: bool = False
    data_saving_factor: int = 2
    under_test: bool = False

    def __post_init__(self) -> None:
        if not self.worker_source:
            raise ConfigError("worker_source must not be empty")
        if self.max_retries < 0:
            raise ConfigError(f"max_retries must be >= 0 (got {self.max_retries})")
        if self.base_interval <= 0:
            raise ConfigError(
                f"base_interval must be positive (got {self.base_interval}ms)"
            )
        if self.base_interval > self.max_interval:
            raise ConfigError(
                f"base_interval ({self.base_interval}ms) exceeds "
                f"max_interval ({self.max_interval}ms)"
            )
        if self.data_saving_factor < 1:
            raise ConfigError(
                f"data_saving_factor must be >= 1 (got {self.data_saving_factor})"
            )

        # file: origins never start a manager, so their URL is never probed
        url = self.health_check_url
        if (
            url is not None
            and self.origin_scheme != "file"
            and urlparse(url).scheme not in ("http", "https")
        ):
            raise ConfigError(f"Health check URL must be http(s), got {url!r}")

    @classmethod
    def from_env(cls) -> WorkerConfig:
        """Build a config from the environment-backed `Config` values."""
        return cls(
            worker_source=Config.WORKER_SOURCE,
            health_check_path=Config.HEALTH_CHECK_PATH,
            origin=Config.WORKER_ORIGIN,
            max_retries=Config.MAX_RETRIES,
            base_interval=Config.BASE_INTERVAL_MS,
            max_interval=Config.MAX_INTERVAL_MS,
            telemetry_enabled=Config.TELEMETRY_ENABLED,
            data_saving_factor=Config.DATA_SAVING_FACTOR,
            under_test=Config.UNDER_TEST,
        )

    # ─── Derived values ───

    @property
    def polling_enabled(self) -> bool:
        return bool(self.health_check_path)

    @property
    def health_check_url(self) -> str | None:
        if not self.health_check_path:
            return None
        return urljoin(self.origin, self.health_check_path)

    @property
    def origin_scheme(self) -> str:
        return urlparse(self.origin).scheme

    def summary(self) -> dict[str, int | str | bool | None]:
        """
        Return a structured summary of the effective configuration.
        Useful for startup diagnostics.
        """
        return {
            "worker_source": self.worker_source,
            "health_check_url": self.health_check_url,
            "max_retries": self.max_retries,
            "base_interval_ms": self.base_interval,
            "max_interval_ms": self.max_interval,
            "data_saving_factor": self.data_saving_factor,
            "telemetry_enabled": self.telemetry_enabled,
        }
