"""Concurrent replay of a shaped batch against the destination hosts."""

import asyncio
import logging
import ssl
import time

import httpx

from replayer.models import ReplayOutcome, ReplayRequest

logger = logging.getLogger(__name__)


def create_ssl_context(cert: str | None = None, verify: bool = True) -> ssl.SSLContext:
    """Client SSL context, optionally presenting a PEM client certificate."""
    ctx = ssl.create_default_context()
    if not verify:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    if cert:
        ctx.load_cert_chain(certfile=cert)
    return ctx


def build_client(config) -> httpx.AsyncClient:
    """Create the shared client used for every replay.

    Proxy settings come from the environment (``trust_env``). With no
    request timeout configured, replays wait for the destination indefinitely.
    """
    return httpx.AsyncClient(
        verify=create_ssl_context(config.cert, config.verify_tls),
        timeout=httpx.Timeout(config.request_timeout),
        follow_redirects=False,
        trust_env=True,
    )


class HostDispatcher:
    """Fires every request of a batch at once and waits for all of them."""

    def __init__(self, client: httpx.AsyncClient, metrics=None, time_func=None):
        self._client = client
        self._metrics = metrics
        self._time_func = time_func or time.time

    async def dispatch(self, batch: list[ReplayRequest]) -> list[ReplayOutcome]:
        if not batch:
            return []
        return list(await asyncio.gather(*(self._replay_one(r) for r in batch)))

    async def _replay_one(self, request: ReplayRequest) -> ReplayOutcome:
        started = self._time_func()
        code = None
        error = None
        try:
            response = await self._client.get(request.url)
            code = response.status_code
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # No response, so no status code to report.
            error = str(e) or type(e).__name__
        outcome = ReplayOutcome(
            request=request,
            started_at=started,
            finished_at=self._time_func(),
            response_code=code,
            error_message=error,
        )
        self._record(outcome)
        return outcome

    def _record(self, outcome: ReplayOutcome):
        if self._metrics is not None:
            self._metrics.record_outcome(outcome)
        if outcome.failed:
            code = outcome.response_code if outcome.response_code is not None else "UNDEF"
            logger.error("ERROR: %.6f %.6f %.6f %s %s %s",
                         outcome.started_at, outcome.finished_at, outcome.duration,
                         code, outcome.request.url, outcome.error_message)
        else:
            logger.debug("RESPONSE: %.6f %.6f %.6f %s %s",
                         outcome.started_at, outcome.finished_at, outcome.duration,
                         outcome.response_code, outcome.request.url)
