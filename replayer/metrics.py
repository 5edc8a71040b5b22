"""Replay counters and periodic reporting."""

import asyncio
import logging
import time
from collections import Counter

logger = logging.getLogger(__name__)


class Metrics:
    """Process-lifetime counters for the replayer.

    All mutation happens on the event loop thread, so no lock is taken.
    """

    def __init__(self, time_func=None):
        self._time_func = time_func or time.time
        self.start_time: float = self._time_func()
        self.received: int = 0
        self.skipped: int = 0
        self.replayed: int = 0
        self.errors: int = 0
        self.status_codes: Counter = Counter()

    def record_received(self):
        self.received += 1

    def record_skipped(self):
        self.skipped += 1

    def record_outcome(self, outcome):
        """Account for one resolved replay attempt."""
        self.replayed += 1
        if outcome.failed:
            self.errors += 1
        elif outcome.response_code is not None:
            self.status_codes[outcome.response_code] += 1

    def snapshot(self, now: float | None = None) -> dict:
        """Read-only view of the counters with rates since start."""
        if now is None:
            now = self._time_func()
        elapsed = max(now - self.start_time, 0.0)
        return {
            "elapsed": elapsed,
            "received": self.received,
            "skipped": self.skipped,
            "replayed": self.replayed,
            "errors": self.errors,
            "rate_received": self.received / elapsed if elapsed else 0.0,
            "rate_replayed": self.replayed / elapsed if elapsed else 0.0,
        }

    def summary(self) -> dict:
        snap = self.snapshot()
        snap["status_codes"] = dict(sorted(self.status_codes.items()))
        return snap


def format_snapshot(snap: dict, buffered: int | None = None) -> str:
    line = (
        f"Elapsed: {snap['elapsed']:.2f}, "
        f"Received: {snap['received']} ({snap['rate_received']:.2f}/s), "
        f"Skipped: {snap['skipped']}, "
        f"Replayed: {snap['replayed']} ({snap['rate_replayed']:.2f}/s), "
        f"Errors: {snap['errors']}"
    )
    if buffered is not None:
        line += f", Buffered: {buffered}"
    return line


class MetricsReporter:
    """Logs a metrics line every ``interval`` seconds until stopped."""

    def __init__(self, metrics: Metrics, interval: float = 1.0, queue=None):
        self._metrics = metrics
        self._interval = interval
        self._queue = queue
        self._stop_event = asyncio.Event()

    def report(self):
        buffered = len(self._queue) if self._queue is not None else None
        logger.info(format_snapshot(self._metrics.snapshot(), buffered))

    async def run(self):
        try:
            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                except asyncio.TimeoutError:
                    self.report()
        except asyncio.CancelledError:
            pass

    def stop(self):
        self._stop_event.set()
