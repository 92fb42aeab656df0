# ─── Future imports ───
from __future__ import annotations

# ─── Standard library imports ───
import re
import time
import asyncio
from dataclasses import dataclass

# ─── Third-party imports ───
import requests

# ─── Project imports ───
from .config import Config
from .logger import get_logger
from .poller_fsm import ProbeOutcome


logger = get_logger("probe")

PROBE_HEADERS = {"Cache-Control": "no-cache"}

# Retry-After is honoured only as a plain count of seconds
_RETRY_AFTER_SECONDS = re.compile(r"^\d+$")


@dataclass(frozen=True)
class ProbeResult:
    outcome: ProbeOutcome
    status: int | None = None
    retry_after_s: int | None = None
    elapsed_ms: float = 0.0
    error: str | None = None


def parse_retry_after(value: str | None) -> int | None:
    """
    Parse a Retry-After header as a non-negative integer number of seconds.

    HTTP-date values, negatives, fractions and garbage all return None so the
    caller falls back to exponential backoff.
    """
    if value is None:
        return None
    value = value.strip()
    if not _RETRY_AFTER_SECONDS.match(value):
        return None
    return int(value)


def classify_status(status: int) -> ProbeOutcome:
    """
    Map an HTTP status to a probe outcome.

    Anything below 400 counts as healthy (same cut-off as `Response.ok`).
    """
    if status < 400:
        return ProbeOutcome.SUCCESS
    if status < 500:
        return ProbeOutcome.CLIENT_ERROR
    return ProbeOutcome.SERVER_ERROR


class HealthProbe:
    """
    Issues one health-check GET per call.

    The blocking request runs in the loop's default executor and is bounded by
    both the requests timeout and an `asyncio.timeout` on the awaiting side.
    Cancelling the awaiting task abandons the request; its result is never
    applied.

    `check()` never raises (except on cancellation): every failure is
    reported as a `ProbeResult`.
    """

    def __init__(
        self,
        url: str,
        timeout_s: float = Config.PROBE_TIMEOUT_S,
        session: requests.Session | None = None,
    ):
        self.url = url
        self.timeout_s = timeout_s
        self.session = session

    def _get(self) -> requests.Response:
        if self.session is not None:
            return self.session.get(self.url, headers=PROBE_HEADERS, timeout=self.timeout_s)

        # An abandoned request may still be running in its worker thread,
        # so each check owns its connection pool
        with requests.Session() as session:
            return session.get(self.url, headers=PROBE_HEADERS, timeout=self.timeout_s)

    async def check(self) -> ProbeResult:
        loop = asyncio.get_running_loop()
        start = time.perf_counter()

        try:
            async with asyncio.timeout(self.timeout_s):
                resp = await loop.run_in_executor(None, self._get)

        except (TimeoutError, requests.Timeout):
            logger.warning(f"Health probe timed out after {self.timeout_s:.0f}s ({self.url})")
            return ProbeResult(ProbeOutcome.TIMEOUT, elapsed_ms=self._elapsed_ms(start))

        except requests.RequestException as e:
            logger.warning(f"Health probe failed ({e.__class__.__name__}) ({self.url})")
            return ProbeResult(
                ProbeOutcome.NETWORK_ERROR,
                elapsed_ms=self._elapsed_ms(start),
                error=e.__class__.__name__,
            )

        except Exception as e:
            logger.exception("Unexpected error during health probe")
            return ProbeResult(
                ProbeOutcome.NETWORK_ERROR,
                elapsed_ms=self._elapsed_ms(start),
                error=e.__class__.__name__,
            )

        elapsed_ms = self._elapsed_ms(start)
        logger.timing(f"Timing | {'health probe':<20} [{elapsed_ms:8.1f} ms]")

        return ProbeResult(
            outcome=classify_status(resp.status_code),
            status=resp.status_code,
            retry_after_s=parse_retry_after(resp.headers.get("Retry-After")),
            elapsed_ms=elapsed_ms,
        )

    def close(self) -> None:
        if self.session is not None:
            self.session.close()

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.perf_counter() - start) * 1000
