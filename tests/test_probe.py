import time
import pytest
import requests
import responses
from unittest.mock import MagicMock, patch
from worker_watchdog.poller_fsm import ProbeOutcome
from worker_watchdog.probe import HealthProbe, classify_status, parse_retry_after


URL = "http://localhost/health"


# ===============================
# TEST GROUP: Retry-After Parsing
# ===============================
# Function: parse_retry_after()
# -----------------------------
@pytest.mark.parametrize(
    "header, expected",
    [
        # ✅ Plain seconds
        ("60", 60),
        ("0", 0),
        (" 120 ", 120),

        # ❌ Anything that is not a non-negative integer falls back to backoff
        ("-5", None),
        ("1.5", None),
        ("Wed, 21 Oct 2015 07:28:00 GMT", None),
        ("soon", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_retry_after(header, expected):
    assert parse_retry_after(header) == expected


# ==================================
# TEST GROUP: Status Classification
# ==================================
@pytest.mark.parametrize(
    "status, expected",
    [
        (200, ProbeOutcome.SUCCESS),
        (204, ProbeOutcome.SUCCESS),
        (304, ProbeOutcome.SUCCESS),       # 🔁 redirects/not-modified count as healthy
        (400, ProbeOutcome.CLIENT_ERROR),
        (404, ProbeOutcome.CLIENT_ERROR),
        (429, ProbeOutcome.CLIENT_ERROR),
        (500, ProbeOutcome.SERVER_ERROR),
        (503, ProbeOutcome.SERVER_ERROR),
    ],
)
def test_classify_status(status, expected):
    assert classify_status(status) is expected


# ===========================
# TEST GROUP: Health Probe GET
# ===========================
# Function: HealthProbe.check()
# -----------------------------
@pytest.mark.asyncio
async def test_probe_success_sends_no_cache():
    probe = HealthProbe(URL)
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, URL, status=200)

        result = await probe.check()

        assert result.outcome is ProbeOutcome.SUCCESS
        assert result.status == 200
        assert result.retry_after_s is None
        assert rsps.calls[0].request.headers["Cache-Control"] == "no-cache"
        assert rsps.calls[0].request.body is None
    probe.close()


@pytest.mark.asyncio
async def test_probe_server_error_carries_retry_after():
    probe = HealthProbe(URL)
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, URL, status=503, headers={"Retry-After": "60"})

        result = await probe.check()

    assert result.outcome is ProbeOutcome.SERVER_ERROR
    assert result.status == 503
    assert result.retry_after_s == 60


@pytest.mark.parametrize(
    "error, expected",
    [
        # ⏱️ Transport-level timeout
        (requests.exceptions.ConnectTimeout("connect timed out"), ProbeOutcome.TIMEOUT),
        (requests.exceptions.ReadTimeout("read timed out"), ProbeOutcome.TIMEOUT),

        # 🔌 No route / refused
        (requests.exceptions.ConnectionError("refused"), ProbeOutcome.NETWORK_ERROR),
    ],
)
@pytest.mark.asyncio
async def test_probe_transport_failures(error, expected):
    probe = HealthProbe(URL)
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, URL, body=error)

        result = await probe.check()

    assert result.outcome is expected
    assert result.status is None


@pytest.mark.asyncio
async def test_probe_deadline_enforced_on_the_loop():
    """A request that outlives the deadline is reported as a timeout"""
    session = MagicMock()
    session.get.side_effect = lambda *args, **kwargs: time.sleep(0.3)
    probe = HealthProbe(URL, timeout_s=0.05, session=session)

    result = await probe.check()

    assert result.outcome is ProbeOutcome.TIMEOUT
    session.get.assert_called_once()


@pytest.mark.asyncio
async def test_probe_unexpected_error_never_raises():
    session = MagicMock()
    session.get.side_effect = ValueError("boom")
    probe = HealthProbe(URL, session=session)

    result = await probe.check()

    assert result.outcome is ProbeOutcome.NETWORK_ERROR
    assert result.error == "ValueError"


# ===============================
# TEST GROUP: Connection Ownership
# ===============================
@pytest.mark.asyncio
async def test_each_check_uses_its_own_session():
    """An abandoned request never shares a connection pool with the next check"""
    created = []

    def new_session():
        session = MagicMock()
        session.__enter__.return_value = session
        session.get.return_value = MagicMock(status_code=200, headers={})
        created.append(session)
        return session

    probe = HealthProbe(URL)
    with patch("worker_watchdog.probe.requests.Session", side_effect=new_session):
        first = await probe.check()
        second = await probe.check()

    assert first.outcome is ProbeOutcome.SUCCESS
    assert second.outcome is ProbeOutcome.SUCCESS
    assert len(created) == 2
    for session in created:
        session.get.assert_called_once()
        session.__exit__.assert_called_once()


@pytest.mark.parametrize("injected", [True, False])
def test_close_only_closes_injected_session(injected):
    session = MagicMock() if injected else None
    probe = HealthProbe(URL, session=session)

    with patch("worker_watchdog.probe.requests.Session") as factory:
        probe.close()

    factory.assert_not_called()
    if injected:
        session.close.assert_called_once()
