import asyncio
import pytest
from worker_watchdog.config import WorkerConfig
from worker_watchdog.poller_fsm import ProbeOutcome
from worker_watchdog.probe import ProbeResult


WORKER_SOURCE = "worker_watchdog.registry:heartbeat_worker"


# ========
# FIXTURES
# ========

class FakeProbe:
    """Stands in for HealthProbe: replays queued results, then reports healthy"""

    def __init__(self, *results, url="http://localhost/health", timeout_s=5.0):
        self.url = url
        self.timeout_s = timeout_s
        self.results = list(results)
        self.calls = 0
        self.closed = False

    async def check(self):
        self.calls += 1
        if self.results:
            return self.results.pop(0)
        return ProbeResult(ProbeOutcome.SUCCESS, status=200)

    def close(self):
        self.closed = True


class HangingProbe(FakeProbe):
    """A probe whose request never completes"""

    async def check(self):
        self.calls += 1
        await asyncio.Event().wait()


async def wait_until(predicate, timeout=1.0):
    """Yield to the loop until `predicate()` holds"""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


@pytest.fixture
def fast_config():
    """Millisecond intervals so real timers fire inside a test"""
    return WorkerConfig(
        worker_source=WORKER_SOURCE,
        health_check_path="/health",
        base_interval=10,
        max_interval=1_000,
        max_retries=3,
        telemetry_enabled=True,
    )


@pytest.fixture
def config():
    """Production-like intervals; timers never fire during a test"""
    return WorkerConfig(
        worker_source=WORKER_SOURCE,
        health_check_path="/health",
        base_interval=30_000,
        max_interval=300_000,
        max_retries=5,
        telemetry_enabled=True,
    )
