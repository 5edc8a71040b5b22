"""Driving scheduler: intake, replay ticks and metrics reporting on one event loop."""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from replayer.config import Config
from replayer.dispatcher import HostDispatcher, build_client
from replayer.extractor import LineExtractor
from replayer.intake import HostPool, Intake, IntakeQueue
from replayer.metrics import Metrics, MetricsReporter, format_snapshot
from replayer.shaper import ReplayShaper
from replayer.sources import create_source

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass
class ReplayContext:
    """Everything one replay run owns, handed to each component explicitly."""

    config: Config
    metrics: Metrics
    host_pool: HostPool
    extractor: LineExtractor
    shaper: ReplayShaper
    queue: IntakeQueue = field(default_factory=IntakeQueue)

    @classmethod
    def from_config(cls, config: Config, time_func=None) -> "ReplayContext":
        return cls(
            config=config,
            metrics=Metrics(time_func=time_func),
            host_pool=HostPool(config.hosts),
            extractor=LineExtractor.from_config(config),
            shaper=ReplayShaper.from_config(config),
        )


class ReplayScheduler:
    """State machine: RUNNING -> DRAINING -> STOPPED.

    - RUNNING: lines are taken from the source, replay ticks and metrics
      reports fire every ``tick_interval`` / ``report_interval`` seconds.
    - DRAINING: intake is closed (end of input, inactivity timeout or request
      limit). Ticks keep replaying what is still buffered.
    - STOPPED: the queue is empty and no batch is in flight, or a stop was
      requested. Terminal.
    """

    def __init__(self, config: Config, source=None, client=None, context=None, time_func=None):
        self.config = config
        self._time_func = time_func or time.time
        self.context = context or ReplayContext.from_config(config, time_func=self._time_func)
        self._source = source
        self._client = client
        self._owns_client = client is None
        self.state = SchedulerState.RUNNING
        self.intake = Intake(
            self.context.extractor,
            self.context.host_pool,
            self.context.queue,
            self.context.metrics,
            limit=config.limit,
            on_limit=self.begin_drain,
        )
        self.dispatcher: HostDispatcher | None = None
        self.reporter = MetricsReporter(
            self.context.metrics, config.report_interval, queue=self.context.queue
        )
        self._stopped = asyncio.Event()
        self._in_flight: set[asyncio.Task] = set()
        self.ticks_run = 0
        self.ticks_skipped = 0

    def begin_drain(self):
        if self.state is not SchedulerState.RUNNING:
            return
        self.intake.close()
        self.state = SchedulerState.DRAINING
        logger.info("Intake closed, draining %d buffered request(s)", len(self.context.queue))
        self._check_idle()

    def stop(self):
        if self.state is SchedulerState.STOPPED:
            return
        logger.info("Stopping replayer")
        self.intake.close()
        self.state = SchedulerState.STOPPED
        self._stopped.set()

    def _check_idle(self):
        if (self.state is SchedulerState.DRAINING
                and len(self.context.queue) == 0
                and not self._in_flight):
            self.state = SchedulerState.STOPPED
            self._stopped.set()

    async def _consume(self):
        async with contextlib.aclosing(self._source.lines()) as lines:
            async for line in lines:
                self.intake.submit(line, self._time_func())
                if self.intake.closed:
                    break
        self.begin_drain()

    def _intake_done(self, task: asyncio.Task):
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Intake failed: %s", exc)
            self.begin_drain()

    def tick(self) -> asyncio.Task | None:
        """Run one replay tick; returns the dispatch task, if one was started."""
        if self.state is SchedulerState.STOPPED:
            return None
        if self._in_flight:
            self.ticks_skipped += 1
            logger.warning("Previous replay batch still in flight, skipping tick")
            return None

        eligible = self.context.queue.drain_eligible(self._time_func(), self.config.lag)
        batch = self.context.shaper.shape(eligible)
        self.ticks_run += 1
        if not batch:
            self._check_idle()
            return None

        task = asyncio.create_task(self.dispatcher.dispatch(batch))
        self._in_flight.add(task)
        task.add_done_callback(self._batch_done)
        return task

    def _batch_done(self, task: asyncio.Task):
        self._in_flight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Replay batch failed: %r", task.exception())
        self._check_idle()

    async def _tick_loop(self):
        while self.state is not SchedulerState.STOPPED:
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.config.tick_interval)
            except asyncio.TimeoutError:
                self.tick()

    async def run(self) -> dict:
        """Run until STOPPED and return the final metrics summary."""
        if self._source is None:
            self._source = create_source(self.config)
        if self._client is None:
            self._client = build_client(self.config)
        self.dispatcher = HostDispatcher(self._client, self.context.metrics, self._time_func)

        logger.info("Replaying to %s (lag=%ss, load=%s, maxrate=%s, limit=%s)",
                    ", ".join(self.context.host_pool.hosts), self.config.lag,
                    self.config.load, self.config.maxrate or "none",
                    self.config.limit or "none")

        consumer = asyncio.create_task(self._consume())
        consumer.add_done_callback(self._intake_done)
        reporter = asyncio.create_task(self.reporter.run())
        ticker = asyncio.create_task(self._tick_loop())
        try:
            await self._stopped.wait()
        finally:
            self.state = SchedulerState.STOPPED
            self.reporter.stop()
            for task in (consumer, ticker):
                task.cancel()
            await asyncio.gather(consumer, ticker, reporter, return_exceptions=True)
            if self._in_flight:
                # in-flight replays resolve on their own (bounded by the client timeout)
                await asyncio.gather(*self._in_flight, return_exceptions=True)
            if self._owns_client:
                await self._client.aclose()

        summary = self.context.metrics.summary()
        logger.info("Finished: %s", format_snapshot(summary, len(self.context.queue)))
        if summary["status_codes"]:
            logger.info("Status codes: %s", summary["status_codes"])
        return summary
