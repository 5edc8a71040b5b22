"""Tests for the host dispatcher and the shared client factory."""

import asyncio
import logging
import ssl

import httpx
import pytest
import respx

from replayer.config import Config
from replayer.dispatcher import HostDispatcher, build_client, create_ssl_context
from replayer.metrics import Metrics
from replayer.models import ReplayRequest


def _requests(*urls):
    return [ReplayRequest(url=u, enqueued_at=100.0) for u in urls]


class FakeClock:
    def __init__(self, start=1000.0, step=0.25):
        self.now = start
        self.step = step

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


@pytest.mark.asyncio
async def test_dispatch_collects_status_codes():
    metrics = Metrics()
    with respx.mock:
        respx.get("http://h1/nitro/api/a").mock(return_value=httpx.Response(200))
        respx.get("http://h2/nitro/api/b").mock(return_value=httpx.Response(404))
        respx.get("http://h1/nitro/api/c").mock(return_value=httpx.Response(503))
        async with httpx.AsyncClient() as client:
            dispatcher = HostDispatcher(client, metrics)
            outcomes = await dispatcher.dispatch(_requests(
                "http://h1/nitro/api/a", "http://h2/nitro/api/b", "http://h1/nitro/api/c",
            ))

    assert [o.response_code for o in outcomes] == [200, 404, 503]
    assert not any(o.failed for o in outcomes)
    assert metrics.replayed == 3
    assert metrics.errors == 0
    assert metrics.status_codes == {200: 1, 404: 1, 503: 1}


@pytest.mark.asyncio
async def test_http_errors_are_logged_at_debug(caplog):
    caplog.set_level(logging.DEBUG, logger="replayer.dispatcher")
    with respx.mock:
        respx.get("http://h1/nitro/api/a").mock(return_value=httpx.Response(500))
        async with httpx.AsyncClient() as client:
            await HostDispatcher(client).dispatch(_requests("http://h1/nitro/api/a"))

    records = [r for r in caplog.records if r.name == "replayer.dispatcher"]
    assert len(records) == 1
    assert records[0].levelno == logging.DEBUG
    assert records[0].getMessage().startswith("RESPONSE: ")
    assert "500 http://h1/nitro/api/a" in records[0].getMessage()


@pytest.mark.asyncio
async def test_transport_error_is_recorded_not_raised(caplog):
    caplog.set_level(logging.DEBUG, logger="replayer.dispatcher")
    metrics = Metrics()
    with respx.mock:
        respx.get("http://down/nitro/api/a").mock(
            side_effect=httpx.ConnectError("connection refused")
        )
        respx.get("http://up/nitro/api/b").mock(return_value=httpx.Response(200))
        async with httpx.AsyncClient() as client:
            outcomes = await HostDispatcher(client, metrics).dispatch(
                _requests("http://down/nitro/api/a", "http://up/nitro/api/b")
            )

    failed, ok = outcomes
    assert failed.failed is True
    assert failed.response_code is None
    assert failed.error_message == "connection refused"
    assert ok.response_code == 200
    assert metrics.replayed == 2
    assert metrics.errors == 1

    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert len(errors) == 1
    message = errors[0].getMessage()
    assert message.startswith("ERROR: ")
    assert "UNDEF http://down/nitro/api/a connection refused" in message


@pytest.mark.asyncio
async def test_timeout_is_a_transport_error():
    with respx.mock:
        respx.get("http://slow/nitro/api/a").mock(side_effect=httpx.ReadTimeout("timed out"))
        async with httpx.AsyncClient() as client:
            (outcome,) = await HostDispatcher(client).dispatch(_requests("http://slow/nitro/api/a"))
    assert outcome.failed
    assert outcome.error_message == "timed out"


@pytest.mark.asyncio
async def test_outcome_timestamps_bracket_the_request():
    clock = FakeClock(start=1000.0, step=0.25)
    with respx.mock:
        respx.get("http://h1/nitro/api/a").mock(return_value=httpx.Response(200))
        async with httpx.AsyncClient() as client:
            (outcome,) = await HostDispatcher(client, time_func=clock).dispatch(
                _requests("http://h1/nitro/api/a")
            )
    assert outcome.started_at == 1000.0
    assert outcome.finished_at == 1000.25
    assert outcome.duration == pytest.approx(0.25)


@pytest.mark.asyncio
async def test_batch_is_fully_fanned_out():
    active = 0
    peak = 0

    async def handler(request):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.05)
        active -= 1
        return httpx.Response(200)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        outcomes = await HostDispatcher(client).dispatch(
            _requests(*[f"http://h/nitro/api/{i}" for i in range(8)])
        )

    assert len(outcomes) == 8
    assert peak == 8
    # dispatch only returns once every request has resolved
    assert active == 0


@pytest.mark.asyncio
async def test_empty_batch():
    async with httpx.AsyncClient() as client:
        assert await HostDispatcher(client).dispatch([]) == []


@pytest.mark.asyncio
async def test_outcomes_follow_batch_order_not_completion_order():
    async def handler(request):
        # first request answers last
        delay = 0.05 if request.url.path.endswith("/0") else 0.0
        await asyncio.sleep(delay)
        return httpx.Response(200)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        outcomes = await HostDispatcher(client).dispatch(
            _requests("http://h/nitro/api/0", "http://h/nitro/api/1")
        )
    assert [o.request.url for o in outcomes] == ["http://h/nitro/api/0", "http://h/nitro/api/1"]


class TestClientFactory:
    def test_unverified_context(self):
        ctx = create_ssl_context(verify=False)
        assert ctx.verify_mode == ssl.CERT_NONE
        assert ctx.check_hostname is False

    def test_verified_context(self):
        ctx = create_ssl_context()
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        assert ctx.check_hostname is True

    def test_bad_cert_file_raises(self, tmp_path):
        pem = tmp_path / "client.pem"
        pem.write_text("not a certificate")
        with pytest.raises(ssl.SSLError):
            create_ssl_context(cert=str(pem))

    @pytest.mark.asyncio
    async def test_build_client_defaults(self):
        client = build_client(Config())
        try:
            assert isinstance(client, httpx.AsyncClient)
            assert client.timeout == httpx.Timeout(None)
            assert client.follow_redirects is False
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_build_client_request_timeout(self):
        client = build_client(Config(request_timeout=2.5))
        try:
            assert client.timeout == httpx.Timeout(2.5)
        finally:
            await client.aclose()
