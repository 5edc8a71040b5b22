"""Intake: host rotation and the per-second request buffer."""

import logging
import math

from replayer.models import ReplayRequest

logger = logging.getLogger(__name__)


class HostPool:
    """Round-robin rotation over destination base URLs."""

    def __init__(self, hosts):
        self._hosts = [h.rstrip("/") for h in hosts]
        if not self._hosts:
            raise ValueError("HostPool needs at least one host")
        self._index = 0

    @property
    def hosts(self) -> list[str]:
        return list(self._hosts)

    @property
    def index(self) -> int:
        return self._index

    def next_host(self) -> str:
        """Return the host under the cursor and advance it."""
        host = self._hosts[self._index]
        self._index = (self._index + 1) % len(self._hosts)
        return host


class IntakeQueue:
    """Buffers replay requests in buckets keyed by their arrival second."""

    def __init__(self):
        self._buckets: dict[int, list[ReplayRequest]] = {}
        self._size = 0

    def __len__(self) -> int:
        return self._size

    @property
    def bucket_count(self) -> int:
        return len(self._buckets)

    @property
    def oldest_bucket(self) -> int | None:
        return min(self._buckets) if self._buckets else None

    def enqueue(self, url: str, host_base_url: str, now: float) -> ReplayRequest:
        request = ReplayRequest(url=host_base_url + url, enqueued_at=now)
        self._buckets.setdefault(math.floor(now), []).append(request)
        self._size += 1
        return request

    def drain_eligible(self, now: float, lag: float) -> list[ReplayRequest]:
        """Remove and return every bucket at least ``lag`` seconds old, oldest first."""
        drained: list[ReplayRequest] = []
        for ts in sorted(self._buckets):
            if now - ts < lag:
                # keys are ascending, so every later bucket is younger still
                break
            drained.extend(self._buckets.pop(ts))
        self._size -= len(drained)
        return drained


class Intake:
    """Feeds raw lines through extraction into the queue and counts them."""

    def __init__(self, extractor, host_pool: HostPool, queue: IntakeQueue, metrics,
                 limit: int | None = None, on_limit=None):
        self._extractor = extractor
        self._host_pool = host_pool
        self._queue = queue
        self._metrics = metrics
        self._limit = limit
        self._on_limit = on_limit
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        self._closed = True

    def submit(self, line: str, now: float) -> ReplayRequest | None:
        """Process one line. Returns the queued request, or None if skipped."""
        if self._closed:
            return None
        path = self._extractor.extract(line)
        if path is None:
            self._metrics.record_skipped()
            return None

        request = self._queue.enqueue(path, self._host_pool.next_host(), now)
        self._metrics.record_received()

        if self._limit and self._metrics.received >= self._limit:
            logger.info("Request limit %d reached, closing intake", self._limit)
            self._closed = True
            if self._on_limit:
                self._on_limit()
        return request
